"""Error taxonomy for Nitro decoding.

- Decoder failures derive from `NitroError` (a `ValueError`) and abort the
  file being decoded.
- `UnresolvedReference` is not raised; the assembler records it on the Model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class NitroError(ValueError):
    pass


class MalformedContainer(NitroError):
    """Bad magic, length or pointer.

    `offset` is the absolute byte offset where the problem was found.
    """

    def __init__(
        self,
        message: str,
        *,
        offset: int = 0,
        expected: Optional[object] = None,
        found: Optional[object] = None,
    ):
        self.offset = int(offset)
        self.expected = expected
        self.found = found
        detail = f"{message} at 0x{self.offset:x}"
        if expected is not None or found is not None:
            detail += f" (expected {expected!r}, found {found!r})"
        super().__init__(detail)


class SectionNotFound(NitroError, LookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"section not found: {name}")


class UnsupportedFormat(NitroError):
    pass


class InterpreterFault(NitroError):
    pass


class KindMismatch(NitroError):
    def __init__(self, claimed: str, actual: str):
        self.claimed = claimed
        self.actual = actual
        super().__init__(f"container is {actual!r}, caller claimed {claimed!r}")


@dataclass(frozen=True)
class UnresolvedReference:
    kind: str
    source: str
    name: str
    detail: str = ""

    def __str__(self) -> str:
        msg = f"unresolved {self.kind} {self.name!r} referenced by {self.source!r}"
        if self.detail:
            msg += f": {self.detail}"
        return msg

"""Exporter configuration."""

from __future__ import annotations

import json
from dataclasses import dataclass

UP_AXES = ("X_UP", "Y_UP", "Z_UP")


@dataclass(frozen=True)
class ExportOptions:
    # Images inline (data URIs / GLB buffer views) instead of sibling PNGs.
    embed_images: bool = True
    # glTF only: write one GLB container instead of .gltf + .bin.
    binary: bool = True
    up_axis: str = "Y_UP"
    frame_rate: float = 60.0
    # Prefix for sibling image references, e.g. "textures/".
    image_dir: str = ""

    def __post_init__(self) -> None:
        if self.up_axis not in UP_AXES:
            raise ValueError(f"unknown up axis: {self.up_axis!r}")
        if not self.frame_rate > 0.0:
            raise ValueError(f"frame rate must be positive: {self.frame_rate!r}")

    def to_json(self) -> str:
        return json.dumps(
            {
                "v": 1,
                "embed_images": bool(self.embed_images),
                "binary": bool(self.binary),
                "up_axis": str(self.up_axis),
                "frame_rate": float(self.frame_rate),
                "image_dir": str(self.image_dir),
            },
            separators=(",", ":"),
            sort_keys=True,
        )


def export_options_from_json(s: str) -> ExportOptions:
    obj = json.loads(s)
    if not isinstance(obj, dict):
        raise ValueError("export options json must be an object")
    v = int(obj.get("v", 1))
    if v != 1:
        raise ValueError(f"unsupported export options version: {v}")
    for key in ("embed_images", "binary"):
        if key in obj and not isinstance(obj[key], bool):
            raise ValueError(f"export option {key} must be a boolean")
    try:
        frame_rate = float(obj.get("frame_rate", 60.0))
    except (TypeError, ValueError):
        raise ValueError("export option frame_rate must be a number") from None
    return ExportOptions(
        embed_images=obj.get("embed_images", True),
        binary=obj.get("binary", True),
        up_axis=str(obj.get("up_axis", "Y_UP")).strip().upper(),
        frame_rate=frame_rate,
        image_dir=str(obj.get("image_dir", "")).strip(),
    )

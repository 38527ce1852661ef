"""Nintendo DS Nitro 3D asset decoding (BMD0/BTX0/BCA0/BTP0/BTA0) with COLLADA and glTF export."""

__version__ = "0.1.0"

from .core.assemble import AssembleOptions, ModelBuilder, assemble
from .core.container import read_container
from .convert.collada import export_collada
from .convert.gltf import export, export_glb, export_gltf
from .convert.images import export_images
from .convert.options import ExportOptions
from .errors import (
    InterpreterFault,
    KindMismatch,
    MalformedContainer,
    NitroError,
    SectionNotFound,
    UnresolvedReference,
    UnsupportedFormat,
)

__all__ = [
    "AssembleOptions",
    "ExportOptions",
    "InterpreterFault",
    "KindMismatch",
    "MalformedContainer",
    "ModelBuilder",
    "NitroError",
    "SectionNotFound",
    "UnresolvedReference",
    "UnsupportedFormat",
    "assemble",
    "export",
    "export_collada",
    "export_glb",
    "export_gltf",
    "export_images",
    "read_container",
]

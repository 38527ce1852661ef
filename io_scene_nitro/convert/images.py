"""PNG encoding of decoded textures."""

from __future__ import annotations

import io
from typing import Dict

from PIL import Image

from ..core.types import Model, Texture


def image_filename(texture: Texture) -> str:
    return f"{texture.name}.png"


def encode_png(texture: Texture) -> bytes:
    img = Image.frombytes("RGBA", (texture.width, texture.height), texture.rgba)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def export_images(model: Model) -> Dict[str, bytes]:
    """Sibling PNG files for every texture the model uses, keyed by file name."""
    return {image_filename(t): encode_png(t) for t in model.textures}

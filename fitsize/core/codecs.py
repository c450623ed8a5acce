from __future__ import annotations

import io
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from PIL import Image, ImageOps, features

from .errors import DecodeError, EncoderUnavailableError
from .sizing import round_half_up


@dataclass(frozen=True)
class CodecInfo:
    name: str
    pil_format: str
    pil_feature: str
    mime: str
    ext: str
    quality_sensitive: bool


CODECS: dict[str, CodecInfo] = {
    "jpeg": CodecInfo("jpeg", "JPEG", "jpg", "image/jpeg", ".jpg", True),
    "webp": CodecInfo("webp", "WEBP", "webp", "image/webp", ".webp", True),
    # PNG has no quality knob; every probe of a quality search gives the same size.
    "png": CodecInfo("png", "PNG", "zlib", "image/png", ".png", False),
}

DEFAULT_CODEC = "jpeg"


def get_codec(name: str) -> CodecInfo:
    info = CODECS.get((name or "").strip().lower())
    if info is None:
        raise EncoderUnavailableError(f"unsupported codec: {name!r}")
    return info


class PillowCodec:
    """Decoder and encoder capability backed by Pillow.

    The search only talks to `decode`/`encode`, so tests can swap in any object
    with the same three methods (see tests/fakes.py).
    """

    resample = Image.Resampling.LANCZOS

    def check(self, codec: str) -> CodecInfo:
        info = get_codec(codec)
        if not features.check(info.pil_feature):
            raise EncoderUnavailableError(f"{info.pil_format} support is not compiled into Pillow")
        return info

    def decode(self, data: bytes) -> Image.Image:
        if not data:
            raise DecodeError("empty input")
        try:
            im = Image.open(io.BytesIO(data))
            im.load()
        except Exception as e:
            # Plugins raise several exception types on malformed input.
            raise DecodeError(str(e) or "not an image") from e
        return im

    def prepare(self, image: Image.Image, info: CodecInfo) -> Image.Image:
        """Apply EXIF orientation and convert once to a mode the codec can write."""

        surface = ImageOps.exif_transpose(image)
        if info.pil_format == "JPEG":
            # JPEG has no alpha channel.
            if surface.mode not in ("RGB", "L"):
                surface = surface.convert("RGB")
        elif surface.mode not in ("RGB", "RGBA", "L", "LA"):
            has_alpha = "A" in surface.mode or "transparency" in surface.info
            surface = surface.convert("RGBA" if has_alpha else "RGB")
        return surface

    @contextmanager
    def open_surface(self, data: bytes, codec: str) -> Iterator[Image.Image]:
        """Decode `data` once and hold the surface for the length of a session."""

        info = self.check(codec)
        image = self.decode(data)
        try:
            surface = self.prepare(image, info)
            try:
                yield surface
            finally:
                if surface is not image:
                    surface.close()
        finally:
            image.close()

    def encode(self, surface: Image.Image, width: int, height: int, quality: float, codec: str) -> bytes:
        info = get_codec(codec)
        frame = surface
        if surface.size != (width, height):
            frame = surface.resize((int(width), int(height)), resample=self.resample)
        try:
            buf = io.BytesIO()
            frame.save(buf, format=info.pil_format, **_save_options(info, quality))
            return buf.getvalue()
        finally:
            if frame is not surface:
                frame.close()


def _save_options(info: CodecInfo, quality: float) -> dict[str, Any]:
    q = min(1.0, max(0.0, float(quality)))
    if info.pil_format == "JPEG":
        # Pillow recommends staying at or below 95.
        return {"quality": 1 + round_half_up(q * 94), "optimize": True, "progressive": True}
    if info.pil_format == "WEBP":
        return {"quality": round_half_up(q * 100)}
    return {"optimize": True}

"""Pillow-backed codec: decode uploaded bytes and encode them to a target format."""
import importlib
import logging
from io import BytesIO

from PIL import Image

from compressor.config import WEBP_METHOD
from compressor.conversion.models import CodecError, FormatTag

logger = logging.getLogger("compressor.codec")

# Pillow plugin modules that must be imported before a format can be written
_PLUGIN_MODULES = {
    FormatTag.JXL: "pillow_jxl",
}


class PillowCodec:
    """Encodes image bytes with Pillow. Every failure surfaces as CodecError."""

    def __init__(self, webp_method: int = WEBP_METHOD):
        self.webp_method = webp_method
        self._loaded_plugins: set[str] = set()

    def _ensure_plugin(self, fmt: FormatTag) -> None:
        module = _PLUGIN_MODULES.get(fmt)
        if module is None or module in self._loaded_plugins:
            return
        try:
            importlib.import_module(module)
        except ImportError as e:
            raise CodecError(f"{fmt.value.upper()} encoding is not available: {e}") from e
        self._loaded_plugins.add(module)
        logger.info("Loaded Pillow plugin %s for %s", module, fmt.value)

    def _save_kwargs(self, fmt: FormatTag, quality: int) -> dict:
        if fmt is FormatTag.JPEG:
            return {"format": "JPEG", "quality": quality, "optimize": True}
        if fmt is FormatTag.PNG:
            return {"format": "PNG", "optimize": True}
        if fmt is FormatTag.WEBP:
            return {"format": "WEBP", "quality": quality, "method": self.webp_method}
        if fmt is FormatTag.AVIF:
            return {"format": "AVIF", "quality": quality}
        return {"format": "JXL", "quality": quality}

    def encode(self, data: bytes, fmt: FormatTag, quality: int) -> bytes:
        self._ensure_plugin(fmt)
        try:
            with Image.open(BytesIO(data)) as img:
                img.load()
                if fmt is FormatTag.JPEG and img.mode not in ("RGB", "L"):
                    work = img.convert("RGB")
                elif img.mode not in ("RGB", "RGBA", "L", "LA"):
                    work = img.convert("RGBA" if "transparency" in img.info else "RGB")
                else:
                    work = img
                out = BytesIO()
                work.save(out, **self._save_kwargs(fmt, quality))
        except Exception as e:
            raise CodecError(str(e) or type(e).__name__) from e
        return out.getvalue()

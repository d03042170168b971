"""Conversion request/result models."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class FormatTag(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    JXL = "jxl"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["FormatTag"]:
        """Return the tag for value (case-insensitive) or None when unsupported."""
        try:
            return cls(normalize_format(value))
        except ValueError:
            return None

    @classmethod
    def values(cls) -> list[str]:
        return [tag.value for tag in cls]


class Outcome(str, Enum):
    COMPLETE = "Complete"
    UNSUPPORTED_FORMAT = "Unsupported Format"
    FAILED = "Error"


class NoFilesProvided(ValueError):
    """Raised when a batch is submitted with zero items."""

    def __init__(self, message: str = "No images uploaded."):
        super().__init__(message)


class CodecError(Exception):
    """Decode or encode failure for a single image."""


def normalize_format(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def output_name_for(original_name: str, target_format: str) -> str:
    """stem(original_name) + "." + extension of the requested format."""
    stem = Path(original_name or "").stem
    # "a." has no extension; drop the bare trailing dot
    if len(stem) > 1 and stem.endswith("."):
        stem = stem[:-1]
    return f"{stem}.{normalize_format(target_format)}"


@dataclass(frozen=True)
class ConversionRequest:
    """One image to convert. Input comes from input_bytes or a staging file on disk."""

    original_name: str
    target_format: str
    quality: int
    input_bytes: Optional[bytes] = field(default=None, repr=False)
    staging_path: Optional[Path] = None

    def __post_init__(self):
        if self.input_bytes is None and self.staging_path is None:
            raise ValueError("ConversionRequest needs input_bytes or staging_path")

    @property
    def output_name(self) -> str:
        return output_name_for(self.original_name, self.target_format)

    @property
    def original_size(self) -> int:
        if self.input_bytes is not None:
            return len(self.input_bytes)
        try:
            return self.staging_path.stat().st_size
        except OSError:
            return 0

    def read_input(self) -> bytes:
        if self.input_bytes is not None:
            return self.input_bytes
        return self.staging_path.read_bytes()


@dataclass
class ConversionResult:
    original_name: str
    output_name: str
    original_size: int
    output_size: int
    outcome: Outcome
    message: Optional[str] = None
    payload: Optional[bytes] = field(default=None, repr=False, compare=False)

    @property
    def is_complete(self) -> bool:
        return self.outcome is Outcome.COMPLETE

    def to_dict(self) -> dict:
        """Per-item report for API clients. Payload bytes are never included."""
        return {
            "name": self.original_name,
            "outputName": self.output_name,
            "originalSize": self.original_size,
            "compressedSize": self.output_size,
            "status": self.outcome.value,
            "errorMessage": self.message,
        }

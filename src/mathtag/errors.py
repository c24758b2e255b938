"""Domain errors raised by the decoding pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class MathTagError(Exception):
    """Base error for every stage of embedded-source recovery."""

    message: str

    def __str__(self) -> str:
        return self.message


class DecodeError(MathTagError):
    """Payload text is not valid base64."""


class DecompressionError(MathTagError):
    """A decompression candidate could not be produced."""


class DecompressionUnavailable(DecompressionError):
    """The raw-deflate primitive is missing from this interpreter."""


class DecompressionFailed(DecompressionError):
    """The raw-deflate primitive rejected the stream."""


@dataclass(slots=True)
class StructuralParseError(MathTagError):
    """Buffer is not a usable binary plist (magic, trailer or offset table)."""

    offset: int | None = None

    def __str__(self) -> str:
        if self.offset is None:
            return self.message
        return f"{self.message} (offset={self.offset})"

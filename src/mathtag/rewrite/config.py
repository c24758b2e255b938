"""Runtime configuration for markdown tag rewriting."""

from __future__ import annotations

from dataclasses import dataclass
import os
import re
from typing import Mapping

from mathtag.decoding.bplist import DEFAULT_MAX_DEPTH
from mathtag.decoding.decompression import DEFAULT_MAX_INFLATED_BYTES


DEFAULT_TAG_NAME = "embedded-meta"
DEFAULT_SOURCE_KEY = "source"
DEFAULT_MAX_PAYLOAD_CHARS = 8 * 1024 * 1024

_TAG_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_:-]*$")


def _parse_int(*, name: str, raw_value: str, minimum: int) -> int:
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw_value!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


@dataclass(frozen=True, slots=True)
class RewriteSettings:
    """Validated settings shared by the rewriter and the CLIs."""

    tag_name: str = DEFAULT_TAG_NAME
    source_key: str = DEFAULT_SOURCE_KEY
    max_inflated_bytes: int = DEFAULT_MAX_INFLATED_BYTES
    max_payload_chars: int = DEFAULT_MAX_PAYLOAD_CHARS
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        if not _TAG_NAME_RE.match(self.tag_name):
            raise ValueError(f"MATHTAG_TAG_NAME is not a valid tag name: {self.tag_name!r}")
        if not self.source_key:
            raise ValueError("MATHTAG_SOURCE_KEY cannot be empty")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RewriteSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        tag_name = source.get("MATHTAG_TAG_NAME", DEFAULT_TAG_NAME).strip()
        source_key = source.get("MATHTAG_SOURCE_KEY", DEFAULT_SOURCE_KEY).strip()

        max_inflated_raw = source.get("MATHTAG_MAX_INFLATED_BYTES", str(DEFAULT_MAX_INFLATED_BYTES)).strip()
        max_payload_raw = source.get("MATHTAG_MAX_PAYLOAD_CHARS", str(DEFAULT_MAX_PAYLOAD_CHARS)).strip()
        max_depth_raw = source.get("MATHTAG_MAX_DEPTH", str(DEFAULT_MAX_DEPTH)).strip()

        return cls(
            tag_name=tag_name,
            source_key=source_key,
            max_inflated_bytes=_parse_int(name="MATHTAG_MAX_INFLATED_BYTES", raw_value=max_inflated_raw, minimum=1024),
            max_payload_chars=_parse_int(name="MATHTAG_MAX_PAYLOAD_CHARS", raw_value=max_payload_raw, minimum=16),
            max_depth=_parse_int(name="MATHTAG_MAX_DEPTH", raw_value=max_depth_raw, minimum=1),
        )

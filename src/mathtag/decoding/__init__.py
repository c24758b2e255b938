"""Payload decoding stages: base64, raw-deflate candidates, binary plist."""

from .bplist import PlistTrailer, parse_bplist
from .decompression import Inflater, decompression_candidates, make_inflater
from .payload import decode_payload

__all__ = [
    "Inflater",
    "PlistTrailer",
    "decode_payload",
    "decompression_candidates",
    "make_inflater",
    "parse_bplist",
]

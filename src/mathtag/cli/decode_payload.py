"""CLI command that decodes a single base64 payload and dumps its plist."""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from mathtag.decoding.bplist import parse_bplist
from mathtag.decoding.decompression import decompression_candidates, make_inflater
from mathtag.decoding.payload import decode_payload
from mathtag.errors import MathTagError
from mathtag.rewrite.config import RewriteSettings
from mathtag.rewrite.extractor import extract_source

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert a decoded plist graph into JSON-compatible values."""

    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    return value


async def inspect_payload(payload: str, settings: RewriteSettings) -> dict[str, object]:
    raw = decode_payload(payload)
    candidates = await decompression_candidates(raw, inflate=make_inflater(max_output=settings.max_inflated_bytes))

    errors: list[str] = []
    for index, candidate in enumerate(candidates):
        try:
            root = parse_bplist(candidate, max_depth=settings.max_depth)
        except MathTagError as exc:
            errors.append(f"candidate {index}: {exc}")
            continue
        return {
            "candidate": index,
            "candidate_count": len(candidates),
            "root": to_jsonable(root),
            "math": extract_source(root, key=settings.source_key),
            "errors": errors,
        }

    return {"candidate": None, "candidate_count": len(candidates), "root": None, "math": None, "errors": errors}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Decode one embedded-metadata payload and print its plist as JSON")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--payload", help="Base64 payload text")
    group.add_argument("--file", help="File containing the base64 payload")
    parser.add_argument("--verbose", action="store_true", help="Log dropped candidates")
    args = parser.parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.DEBUG if args.verbose else logging.WARNING,
    )
    load_dotenv()

    try:
        settings = RewriteSettings.from_env()
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    try:
        payload = args.payload if args.payload is not None else Path(args.file).read_text(encoding="ascii", errors="replace")
        report = asyncio.run(inspect_payload(payload, settings))
    except (MathTagError, OSError) as exc:
        print(json.dumps({"candidate": None, "root": None, "math": None, "errors": [str(exc)]}, ensure_ascii=True, indent=2))
        return 1

    print(json.dumps(report, ensure_ascii=True, indent=2))
    return 0 if report["candidate"] is not None else 1


if __name__ == "__main__":
    raise SystemExit(main())

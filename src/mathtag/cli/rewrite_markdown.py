"""CLI command that rewrites embedded-source tags in markdown files."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
import sys

from charset_normalizer import from_bytes
from dotenv import load_dotenv

from mathtag.rewrite.config import RewriteSettings
from mathtag.rewrite.rewriter import RewriteResult, rewrite_markdown_with_report

logger = logging.getLogger(__name__)

_SUPPORTED_SUFFIXES = {".md", ".markdown"}


def _collect_inputs(target: Path) -> list[Path]:
    if target.is_file():
        return [target]
    if target.is_dir():
        return sorted(path for path in target.rglob("*") if path.is_file() and path.suffix.lower() in _SUPPORTED_SUFFIXES)
    return []


def read_markdown(path: Path) -> tuple[str, str]:
    """Read a markdown file, returning (text, encoding)."""

    raw = path.read_bytes()
    if not raw:
        return "", "utf-8"
    try:
        return raw.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        pass

    best = from_bytes(raw).best()
    if best and best.encoding:
        return raw.decode(best.encoding), best.encoding
    raise ValueError(f"Could not detect encoding of {path}")


async def _rewrite_files(files: list[Path], settings: RewriteSettings) -> tuple[list[tuple[Path, str, RewriteResult]], list[dict[str, str]]]:
    rewritten: list[tuple[Path, str, RewriteResult]] = []
    errors: list[dict[str, str]] = []

    for path in files:
        try:
            text, encoding = read_markdown(path)
        except (OSError, ValueError) as exc:
            errors.append({"source_path": str(path), "error": str(exc)})
            continue
        result = await rewrite_markdown_with_report(text, settings=settings)
        rewritten.append((path, encoding, result))

    return rewritten, errors


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Replace embedded LaTeX source tags in markdown with math notation")
    parser.add_argument("--path", required=True, help="Markdown file or directory")
    parser.add_argument("--in-place", action="store_true", help="Write rewritten markdown back to each file")
    parser.add_argument("--report", action="store_true", help="Print a JSON summary instead of markdown")
    parser.add_argument("--verbose", action="store_true", help="Log per-tag decisions")
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

    source_path = Path(args.path)
    files = _collect_inputs(source_path)
    rewritten, errors = asyncio.run(_rewrite_files(files, settings))
    if not source_path.exists():
        errors.append({"source_path": str(source_path), "error": "Path does not exist"})

    if args.in_place:
        for path, encoding, result in rewritten:
            if not result.rewritten_count:
                continue
            try:
                data = result.markdown.encode(encoding)
            except UnicodeEncodeError as exc:
                errors.append({"source_path": str(path), "error": f"Cannot write back as {encoding}: {exc.reason}"})
                continue
            try:
                path.write_bytes(data)
            except OSError as exc:
                errors.append({"source_path": str(path), "error": str(exc)})

    if args.report:
        payload = {
            "path": str(source_path),
            "processed": len(rewritten),
            "results": [
                {
                    "source_path": str(path),
                    "tag_count": result.tag_count,
                    "rewritten_count": result.rewritten_count,
                    "outcomes": [outcome.to_dict() for outcome in result.outcomes],
                }
                for path, _, result in rewritten
            ],
            "errors": errors,
        }
        print(json.dumps(payload, ensure_ascii=True, indent=2))
    elif not args.in_place:
        for _, _, result in rewritten:
            sys.stdout.write(result.markdown)

    for error in errors:
        logger.error("%s: %s", error["source_path"], error["error"])

    return 0 if not errors else 1


if __name__ == "__main__":
    raise SystemExit(main())

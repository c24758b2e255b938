"""Markdown rewriting: source extraction and tag substitution."""

from mathtag.rewrite.config import RewriteSettings
from mathtag.rewrite.extractor import extract_source, normalize_math
from mathtag.rewrite.rewriter import (
    ExtractionOutcome,
    RewriteResult,
    rewrite_markdown,
    rewrite_markdown_sync,
    rewrite_markdown_with_report,
)

__all__ = [
    "ExtractionOutcome",
    "RewriteResult",
    "RewriteSettings",
    "extract_source",
    "normalize_math",
    "rewrite_markdown",
    "rewrite_markdown_sync",
    "rewrite_markdown_with_report",
]

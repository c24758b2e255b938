"""Replace embedded-metadata tags in markdown with recovered LaTeX math."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import re

from mathtag.decoding.bplist import parse_bplist
from mathtag.decoding.decompression import Inflater, decompression_candidates, make_inflater
from mathtag.decoding.payload import decode_payload
from mathtag.errors import MathTagError
from mathtag.rewrite.config import RewriteSettings
from mathtag.rewrite.extractor import extract_source

logger = logging.getLogger(__name__)

STATUS_REWRITTEN = "rewritten"
STATUS_MISS = "miss"
STATUS_FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ExtractionOutcome:
    """Result of running one tag through decode, inflate, parse and extract."""

    start: int
    end: int
    status: str
    stage: str
    replacement: str | None = None
    error: str | None = None

    @property
    def rewritten(self) -> bool:
        return self.status == STATUS_REWRITTEN

    def to_dict(self) -> dict[str, object]:
        return {
            "start": self.start,
            "end": self.end,
            "status": self.status,
            "stage": self.stage,
            "replacement": self.replacement,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class RewriteResult:
    """Rewritten markdown plus one outcome per tag, in document order."""

    markdown: str
    outcomes: list[ExtractionOutcome] = field(default_factory=list)

    @property
    def tag_count(self) -> int:
        return len(self.outcomes)

    @property
    def rewritten_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.rewritten)


def build_tag_patterns(tag_name: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    """Return (opening-tag detector, full-tag matcher) for a tag literal."""

    name = re.escape(tag_name)
    opening = re.compile(rf"<{name}(?=[\s>/])", re.IGNORECASE)
    full = re.compile(rf"<{name}(?:\s(?:\"[^\"]*\"|'[^']*'|[^'\">])*)?>(?P<payload>.*?)</{name}\s*>", re.IGNORECASE | re.DOTALL)
    return opening, full


async def extract_tag_math(
    payload: str,
    *,
    settings: RewriteSettings,
    inflate: Inflater,
    start: int = 0,
    end: int = 0,
) -> ExtractionOutcome:
    """Run a single payload through every stage and report how far it got."""

    if len(payload) > settings.max_payload_chars:
        return ExtractionOutcome(
            start=start,
            end=end,
            status=STATUS_FAILED,
            stage="decode",
            error=f"Payload longer than {settings.max_payload_chars} characters",
        )

    try:
        raw = decode_payload(payload)
    except MathTagError as exc:
        return ExtractionOutcome(start=start, end=end, status=STATUS_FAILED, stage="decode", error=str(exc))

    candidates = await decompression_candidates(raw, inflate=inflate)
    del raw
    if not candidates:
        return ExtractionOutcome(
            start=start,
            end=end,
            status=STATUS_MISS,
            stage="decompress",
            error="No decompression candidate produced",
        )

    parsed_any = False
    last_error: str | None = None
    while candidates:
        candidate = candidates.pop(0)
        try:
            root = parse_bplist(candidate, max_depth=settings.max_depth)
        except MathTagError as exc:
            last_error = str(exc)
            continue

        parsed_any = True
        math = extract_source(root, key=settings.source_key)
        if math is not None:
            return ExtractionOutcome(start=start, end=end, status=STATUS_REWRITTEN, stage="done", replacement=math)

    if parsed_any:
        return ExtractionOutcome(
            start=start,
            end=end,
            status=STATUS_MISS,
            stage="extract",
            error=f"No usable {settings.source_key!r} string in plist",
        )
    return ExtractionOutcome(start=start, end=end, status=STATUS_FAILED, stage="parse", error=last_error)


async def rewrite_markdown_with_report(
    markdown: str,
    *,
    settings: RewriteSettings | None = None,
    inflate: Inflater | None = None,
) -> RewriteResult:
    """Rewrite every recoverable tag and report the outcome of each one.

    Tags are processed one after another in document order. A tag that
    fails at any stage is copied to the output unchanged.
    """

    config = settings or RewriteSettings()
    opening, full = build_tag_patterns(config.tag_name)
    if not opening.search(markdown):
        return RewriteResult(markdown=markdown)

    inflater = inflate or make_inflater(max_output=config.max_inflated_bytes)
    pieces: list[str] = []
    outcomes: list[ExtractionOutcome] = []
    cursor = 0

    for match in full.finditer(markdown):
        pieces.append(markdown[cursor : match.start()])
        cursor = match.end()

        try:
            outcome = await extract_tag_math(
                match.group("payload"),
                settings=config,
                inflate=inflater,
                start=match.start(),
                end=match.end(),
            )
        except Exception as exc:
            outcome = ExtractionOutcome(
                start=match.start(),
                end=match.end(),
                status=STATUS_FAILED,
                stage="unknown",
                error=f"{type(exc).__name__}: {exc}",
            )

        outcomes.append(outcome)
        if outcome.rewritten and outcome.replacement is not None:
            pieces.append(outcome.replacement)
        else:
            logger.debug("Left tag at %d-%d unchanged (%s at %s): %s", outcome.start, outcome.end, outcome.status, outcome.stage, outcome.error)
            pieces.append(match.group(0))

    pieces.append(markdown[cursor:])
    result = RewriteResult(markdown="".join(pieces), outcomes=outcomes)
    logger.debug("Rewrote %d of %d embedded tags", result.rewritten_count, result.tag_count)
    return result


async def rewrite_markdown(
    markdown: str,
    *,
    settings: RewriteSettings | None = None,
    inflate: Inflater | None = None,
) -> str:
    """Return markdown with recoverable embedded-source tags replaced by math."""

    result = await rewrite_markdown_with_report(markdown, settings=settings, inflate=inflate)
    return result.markdown


def rewrite_markdown_sync(
    markdown: str,
    *,
    settings: RewriteSettings | None = None,
    inflate: Inflater | None = None,
) -> str:
    """Blocking wrapper around :func:`rewrite_markdown` for code without a running loop."""

    return asyncio.run(rewrite_markdown(markdown, settings=settings, inflate=inflate))

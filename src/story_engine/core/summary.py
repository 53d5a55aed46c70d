from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable

from .ports import GenerationPort
from .prompts import SUMMARY_REQUEST_TEMPLATE
from .story_state import add_fact
from .types import (
    GenerationConfig,
    ImportantDetail,
    Session,
    Summary,
    SummaryConfig,
    SummaryKeywords,
    utcnow,
)

logger = logging.getLogger(__name__)

RELEVANCE_LEVELS = ("high", "medium", "low")

_SECTION_RE = re.compile(r"^[#*_\s]*(summary|keywords|important details)[*_\s]*:[*_\s]*(.*)$", re.IGNORECASE)
_KEYWORD_RE = re.compile(
    r"^[-*\s]*(characters|locations|items|concepts|events)\s*:\s*(.*)$",
    re.IGNORECASE,
)
_DETAIL_RE = re.compile(
    r"^-\s*\[?\s*([^\]:]+?)\s*\]?\s*:\s*(.+?)\s+-\s+(.+?)\s*\(\s*relevance\s*:\s*([a-z]+)\s*\)\s*\.?$",
    re.IGNORECASE,
)
_EMPTY_KEYWORDS = {"", "none", "n/a", "na", "-"}


def _split_keywords(raw: str) -> list[str]:
    raw = raw.strip().strip("[]").strip()
    out: list[str] = []
    for part in raw.split(","):
        value = part.strip().strip("[]\"'").strip()
        if value.lower() in _EMPTY_KEYWORDS:
            continue
        out.append(value)
    return out


def parse_important_detail(line: str) -> ImportantDetail | None:
    match = _DETAIL_RE.match(line.strip())
    if not match:
        return None
    relevance = match.group(4).lower()
    if relevance not in RELEVANCE_LEVELS:
        relevance = "low"
    return ImportantDetail(
        type=match.group(1).strip().lower(),
        name=match.group(2).strip(),
        description=match.group(3).strip(),
        relevance=relevance,
    )


def parse_summary_response(text: str | None) -> tuple[str, SummaryKeywords, list[ImportantDetail]]:
    """Parse the summary template into ``(text, keywords, details)``.

    Missing sections fall back to empty values; malformed lines are skipped.
    """
    found: dict[str, list[str]] = {}
    details: list[ImportantDetail] = []
    summary_parts: list[str] = []
    section = ""

    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        header = _SECTION_RE.match(line)
        if header:
            section = header.group(1).lower()
            remainder = header.group(2).strip()
            if section == "summary" and remainder:
                summary_parts.append(remainder)
            continue

        if section == "summary":
            summary_parts.append(line)
        elif section == "keywords":
            match = _KEYWORD_RE.match(line)
            if match:
                found[match.group(1).lower()] = _split_keywords(match.group(2))
        elif section == "important details" and line.startswith("-"):
            detail = parse_important_detail(line)
            if detail is not None:
                details.append(detail)

    return " ".join(summary_parts).strip(), SummaryKeywords(**found), details


class SummaryCompactor:
    """Compresses events since the last summary into a keyword-indexed digest."""

    def __init__(
        self,
        generation: GenerationPort,
        *,
        config: SummaryConfig | None = None,
        generation_config: GenerationConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._generation = generation
        self._config = config or SummaryConfig()
        self._generation_config = generation_config or GenerationConfig(max_output_tokens=1000, temperature=0.7)
        self._clock = clock or utcnow

    @property
    def config(self) -> SummaryConfig:
        return self._config

    def should_compact(self, session: Session) -> bool:
        count = len(session.events)
        return count > 0 and count % self._config.interval == 0

    def pending_events_start(self, session: Session) -> int:
        if not session.summaries:
            return 0
        return min(session.summaries[-1].covered_event_count, len(session.events))

    def build_request(self, session: Session, start: int) -> str:
        events = session.events[start:]
        lines = [f"{index}. {event.type}: {event.description}" for index, event in enumerate(events, start=1)]
        return SUMMARY_REQUEST_TEMPLATE.format(
            title=session.title,
            genre=session.genre,
            current_situation=session.world_state.current_situation,
            events="\n".join(lines),
        )

    async def compact(self, session: Session) -> Summary | None:
        start = self.pending_events_start(session)
        if start >= len(session.events):
            return None

        prompt = self.build_request(session, start)
        try:
            response = await self._generation.generate(prompt, self._generation_config)
        except Exception as exc:
            logger.warning("Summary generation failed for session %s: %s", session.id, exc)
            return None

        text, keywords, details = parse_summary_response(response)
        if not text and not keywords.all() and not details:
            logger.warning("Summary response for session %s had no recognizable sections", session.id)
        return Summary(
            covered_event_count=len(session.events),
            text=text,
            chapter=session.current_chapter,
            keywords=keywords,
            important_details=details,
            created_at=self._clock(),
        )

    def apply(self, session: Session, summary: Summary) -> None:
        """Append ``summary``, close its chapter and record its details as facts."""
        session.summaries.append(summary)
        overflow = len(session.summaries) - self._config.max_summaries
        if overflow > 0:
            del session.summaries[:overflow]
        session.current_chapter = max(session.current_chapter, summary.chapter) + 1
        for detail in summary.important_details:
            fact = f"{detail.name}: {detail.description}" if detail.description else detail.name
            add_fact(session, "detail", fact, source="summary", now=summary.created_at)

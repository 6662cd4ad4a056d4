"""
Similarity matcher: decides which internal record an external item is.

Strategies, first success wins:
  1. exact external id
  2. publish date within the window + body contained in the caption,
     otherwise best bigram (Dice) similarity above the threshold
  3. body contained in the caption, ignoring dates (old/backfilled posts)

Candidates are records the creator wrote or generated (origin != synced).
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Protocol

from creatorsync.schemas import ExternalItem

# Tunable policy, overridable via settings (MATCH_*)
DEFAULT_WINDOW_HOURS = 48.0
DEFAULT_SIMILARITY_THRESHOLD = 0.6
DEFAULT_MIN_BODY_LENGTH = 5

_WHITESPACE_RE = re.compile(r"\s+")


class MatchStrategy(str, Enum):
    exact_id = "exact_id"
    windowed_substring = "windowed_substring"
    windowed_similarity = "windowed_similarity"
    unwindowed_substring = "unwindowed_substring"
    none = "none"


class CandidateLike(Protocol):
    id: int
    external_id: str | None
    body: str | None
    published_at: datetime | None


@dataclass(frozen=True)
class MatchPolicy:
    window_hours: float = DEFAULT_WINDOW_HOURS
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    min_body_length: int = DEFAULT_MIN_BODY_LENGTH

    @classmethod
    def from_settings(cls, settings) -> "MatchPolicy":
        return cls(
            window_hours=settings.match_window_hours,
            similarity_threshold=settings.match_similarity_threshold,
            min_body_length=settings.match_min_body_length,
        )


@dataclass(frozen=True)
class MatchResult:
    record_id: int | None
    strategy: MatchStrategy
    confidence: float

    @property
    def matched(self) -> bool:
        return self.record_id is not None


NO_MATCH = MatchResult(record_id=None, strategy=MatchStrategy.none, confidence=0.0)


def _bigrams(text: str) -> Counter[str]:
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def dice_similarity(first: str, second: str) -> float:
    """Sørensen–Dice coefficient over character bigrams, whitespace ignored.

    1.0 for identical strings, 0.0 when either side has fewer than two chars.
    """
    a = _WHITESPACE_RE.sub("", first)
    b = _WHITESPACE_RE.sub("", second)
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    first_bigrams = _bigrams(a)
    second_bigrams = _bigrams(b)
    overlap = sum((first_bigrams & second_bigrams).values())
    return 2.0 * overlap / (len(a) + len(b) - 2)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalized_body(candidate: CandidateLike) -> str:
    return (candidate.body or "").strip().lower()


def _is_contained(body: str, text: str, min_length: int) -> bool:
    return len(body) > min_length and body in text


def _within_window(candidate: CandidateLike, published_at: datetime, window: timedelta) -> bool:
    if candidate.published_at is None:
        return False
    return abs(_as_utc(published_at) - _as_utc(candidate.published_at)) < window


def match(
    item: ExternalItem,
    candidates: Iterable[CandidateLike],
    *,
    policy: MatchPolicy | None = None,
) -> MatchResult:
    policy = policy or MatchPolicy()
    pool = list(candidates)

    for candidate in pool:
        if candidate.external_id and candidate.external_id == item.external_id:
            return MatchResult(candidate.id, MatchStrategy.exact_id, 1.0)

    # Records already linked to another post are not up for text matching
    unlinked = [c for c in pool if not c.external_id]
    text = item.raw_text.lower()

    if item.published_at is not None:
        window = timedelta(hours=policy.window_hours)
        recent = [c for c in unlinked if _within_window(c, item.published_at, window)]

        for candidate in recent:
            if _is_contained(_normalized_body(candidate), text, policy.min_body_length):
                return MatchResult(candidate.id, MatchStrategy.windowed_substring, 1.0)

        best_id: int | None = None
        best_score = 0.0
        for candidate in recent:
            body = _normalized_body(candidate)
            score = dice_similarity(text, body) if body else 0.0
            if score > best_score:
                best_id, best_score = candidate.id, score
        if best_id is not None and best_score > policy.similarity_threshold:
            return MatchResult(best_id, MatchStrategy.windowed_similarity, best_score)

    for candidate in unlinked:
        if _is_contained(_normalized_body(candidate), text, policy.min_body_length):
            return MatchResult(candidate.id, MatchStrategy.unwindowed_substring, 1.0)

    return NO_MATCH

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from app.core.config import settings
from app.core.config.scoring import get_scoring_float
from app.core.ttl_cache import Clock, TTLCache
from app.normalize.text import (
    compact_text,
    contains_normalized_term,
    dice_coefficient,
    normalize_text,
    token_overlap_ratio,
    tokenize,
)
from app.schemas.career_data import CountryCode, OccupationRow, OccupationWageRow, SkillRow
from app.schemas.career_map import (
    OccupationMatch,
    OccupationResolution,
    OccupationSearchQuery,
    OccupationSearchResponse,
    OccupationWithWage,
    SkillMatch,
    WageSnapshot,
)

from .provider import ReferenceDataProvider

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 6
MAX_LIMIT = 20
INDEX_OCCUPATION_LIMIT = 2500

EXACT_CONFIDENCE = 1.0
ALIAS_EXACT_CONFIDENCE = 0.99
COMPACT_EXACT_CONFIDENCE = 0.98
CANDIDATE_CONTAINS_QUERY_CONFIDENCE = 0.9
QUERY_CONTAINS_CANDIDATE_CONFIDENCE = 0.86
ALIAS_CONTAINS_QUERY_CONFIDENCE = 0.84
QUERY_CONTAINS_ALIAS_CONFIDENCE = 0.82
TOKEN_OVERLAP_FLOOR = 0.45
TOKEN_OVERLAP_CEILING = 0.8
FUZZY_FLOOR = 0.3
FUZZY_CEILING = 0.7
MIN_FUZZY_DICE = 0.35


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, value))


def best_match_threshold() -> float:
    return get_scoring_float("matching.best_match_threshold", 0.72)


@dataclass(frozen=True)
class IndexEntry:
    """Pre-normalized search forms of one reference row."""

    key: str
    label: str
    normalized: str
    compact: str
    tokens: tuple[str, ...]
    aliases: tuple[str, ...]
    compact_aliases: tuple[str, ...]


def _index_entry(key: str, label: str, aliases: Iterable[str]) -> IndexEntry:
    normalized_aliases = tuple(
        dict.fromkeys(alias for alias in (normalize_text(item) for item in aliases) if alias)
    )
    return IndexEntry(
        key=key,
        label=label,
        normalized=normalize_text(label),
        compact=compact_text(label),
        tokens=tuple(tokenize(label)),
        aliases=normalized_aliases,
        compact_aliases=tuple(alias.replace(" ", "") for alias in normalized_aliases),
    )


def score_candidate(query: str, entry: IndexEntry) -> tuple[float, str] | None:
    """Confidence of ``query`` against one indexed row.

    Tiers run from exact title down to bigram similarity; a later tier only
    replaces the result when it is more confident.
    """
    normalized_query = normalize_text(query)
    if not normalized_query or not entry.normalized:
        return None

    best: tuple[float, str] | None = None

    def offer(confidence: float, matched_by: str) -> None:
        nonlocal best
        if confidence > 0 and (best is None or confidence > best[0]):
            best = (round(confidence, 4), matched_by)

    if normalized_query == entry.normalized or tuple(tokenize(normalized_query)) == entry.tokens:
        offer(EXACT_CONFIDENCE, "exact_title")
        return best

    compact_query = normalized_query.replace(" ", "")
    if normalized_query in entry.aliases:
        offer(ALIAS_EXACT_CONFIDENCE, "alias")
    elif compact_query == entry.compact:
        offer(COMPACT_EXACT_CONFIDENCE, "compact_title")
    elif compact_query in entry.compact_aliases:
        offer(COMPACT_EXACT_CONFIDENCE, "alias")

    if contains_normalized_term(entry.normalized, normalized_query):
        offer(CANDIDATE_CONTAINS_QUERY_CONFIDENCE, "title_contains")
    elif contains_normalized_term(normalized_query, entry.normalized):
        offer(QUERY_CONTAINS_CANDIDATE_CONFIDENCE, "title_contains")

    for alias in entry.aliases:
        if contains_normalized_term(alias, normalized_query):
            offer(ALIAS_CONTAINS_QUERY_CONFIDENCE, "alias_contains")
        elif contains_normalized_term(normalized_query, alias):
            offer(QUERY_CONTAINS_ALIAS_CONFIDENCE, "alias_contains")

    overlap = max(
        [token_overlap_ratio(normalized_query, entry.normalized)]
        + [token_overlap_ratio(normalized_query, alias) for alias in entry.aliases]
    )
    if overlap > 0:
        offer(TOKEN_OVERLAP_FLOOR + (TOKEN_OVERLAP_CEILING - TOKEN_OVERLAP_FLOOR) * overlap, "token_overlap")

    dice = max(
        [dice_coefficient(normalized_query, entry.normalized)]
        + [dice_coefficient(normalized_query, alias) for alias in entry.aliases]
    )
    if dice >= MIN_FUZZY_DICE:
        offer(FUZZY_FLOOR + (FUZZY_CEILING - FUZZY_FLOOR) * dice, "fuzzy")

    return best


def score_role_candidate(query: str, occupation: OccupationRow) -> OccupationMatch | None:
    scored = score_candidate(query, _index_entry(occupation.id, occupation.title, occupation.aliases))
    if scored is None:
        return None
    return OccupationMatch(
        occupation_id=occupation.id,
        title=occupation.title,
        region=occupation.region,
        confidence=scored[0],
        matched_by=scored[1],
    )


def score_skill_candidate(query: str, skill: SkillRow) -> SkillMatch | None:
    scored = score_candidate(query, _index_entry(skill.id, skill.name, skill.aliases))
    if scored is None:
        return None
    return SkillMatch(skill_id=skill.id, name=skill.name, confidence=scored[0], matched_by=scored[1])


def pick_best_wage(
    wages: Sequence[OccupationWageRow],
    occupation_region: CountryCode,
    preferred_region: str | None = None,
) -> OccupationWageRow | None:
    """Preferred region first, then the national row, then the most recent row."""
    if not wages:
        return None
    ordered = sorted(wages, key=lambda row: row.last_updated, reverse=True)
    if preferred_region:
        for row in ordered:
            if row.region == preferred_region:
                return row
    national = f"{occupation_region}-NAT"
    for row in ordered:
        if row.region == national:
            return row
    return ordered[0]


def wage_snapshot(row: OccupationWageRow | None) -> WageSnapshot | None:
    if row is None:
        return None
    return WageSnapshot(
        region=row.region,
        low=row.wage_low,
        median=row.wage_median,
        high=row.wage_high,
        currency=row.currency,
        source=row.source,
        source_url=row.source_url,
        last_updated=row.last_updated,
    )


class CareerDataMatcher:
    """Fuzzy search over the reference occupations and skills.

    The per-region occupation index and the skill index are snapshots held in
    a TTL cache; ``invalidate`` drops them before expiry.
    """

    def __init__(
        self,
        provider: ReferenceDataProvider,
        *,
        ttl_seconds: float | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.provider = provider
        ttl = ttl_seconds if ttl_seconds is not None else settings.search_index_ttl_seconds
        self._occupation_cache: TTLCache[tuple[tuple[IndexEntry, OccupationRow], ...]] = TTLCache(ttl, clock=clock)
        self._skill_cache: TTLCache[tuple[tuple[IndexEntry, SkillRow], ...]] = TTLCache(ttl, clock=clock)

    def _occupation_index(self, region: CountryCode | None) -> tuple[tuple[IndexEntry, OccupationRow], ...]:
        def load() -> tuple[tuple[IndexEntry, OccupationRow], ...]:
            rows = self.provider.list_occupations(region, limit=INDEX_OCCUPATION_LIMIT)
            logger.info("occupation_index_built region=%s rows=%s", region or "ALL", len(rows))
            return tuple((_index_entry(row.id, row.title, row.aliases), row) for row in rows)

        return self._occupation_cache.get_or_load(("occupations", region or "ALL"), load)

    def _skill_index(self) -> tuple[tuple[IndexEntry, SkillRow], ...]:
        def load() -> tuple[tuple[IndexEntry, SkillRow], ...]:
            rows = self.provider.list_skills()
            logger.info("skill_index_built rows=%s", len(rows))
            return tuple((_index_entry(row.id, row.name, row.aliases), row) for row in rows)

        return self._skill_cache.get_or_load(("skills",), load)

    def invalidate(self) -> None:
        self._occupation_cache.invalidate()
        self._skill_cache.invalidate()

    def search_occupations(
        self,
        query: str,
        region: CountryCode | None = None,
        limit: int | None = None,
    ) -> list[OccupationMatch]:
        text = (query or "").strip()
        if not text:
            return []
        matches: list[OccupationMatch] = []
        for entry, row in self._occupation_index(region):
            scored = score_candidate(text, entry)
            if scored is None:
                continue
            matches.append(
                OccupationMatch(
                    occupation_id=row.id,
                    title=row.title,
                    region=row.region,
                    confidence=scored[0],
                    matched_by=scored[1],
                )
            )
        matches.sort(key=lambda item: (-item.confidence, item.title.lower()))
        return matches[: clamp_limit(limit)]

    def search_skills(self, query: str, limit: int | None = None) -> list[SkillMatch]:
        text = (query or "").strip()
        if not text:
            return []
        matches: list[SkillMatch] = []
        for entry, row in self._skill_index():
            scored = score_candidate(text, entry)
            if scored is None:
                continue
            matches.append(SkillMatch(skill_id=row.id, name=row.name, confidence=scored[0], matched_by=scored[1]))
        matches.sort(key=lambda item: (-item.confidence, item.name.lower()))
        return matches[: clamp_limit(limit)]

    def resolve_occupation_input(
        self,
        text: str,
        region: CountryCode | None = None,
        limit: int | None = DEFAULT_LIMIT,
    ) -> OccupationResolution:
        suggestions = self.search_occupations(text, region=region, limit=limit)
        best = suggestions[0] if suggestions and suggestions[0].confidence >= best_match_threshold() else None
        return OccupationResolution(input=(text or "").strip(), best_match=best, suggestions=suggestions)

    def search_occupations_with_wages(
        self,
        query: str | None = None,
        region: CountryCode | None = None,
        wage_region: str | None = None,
        limit: int | None = None,
    ) -> OccupationSearchResponse:
        text = (query or "").strip()
        capped = clamp_limit(limit)

        confidence_by_id: dict[str, float] = {}
        if text:
            matches = self.search_occupations(text, region=region, limit=capped)
            by_id = {row.id: row for _, row in self._occupation_index(region)}
            occupations = [by_id[match.occupation_id] for match in matches if match.occupation_id in by_id]
            confidence_by_id = {match.occupation_id: match.confidence for match in matches}
        else:
            occupations = [row for _, row in self._occupation_index(region)][:capped]

        wages_by_id: dict[str, list[OccupationWageRow]] = {}
        if occupations:
            for wage in self.provider.occupation_wages([row.id for row in occupations]):
                wages_by_id.setdefault(wage.occupation_id, []).append(wage)

        items = [
            OccupationWithWage(
                occupation_id=row.id,
                title=row.title,
                region=row.region,
                codes=dict(row.codes),
                source=row.source,
                last_updated=row.last_updated,
                confidence=confidence_by_id.get(row.id),
                wage=wage_snapshot(pick_best_wage(wages_by_id.get(row.id, []), row.region, wage_region)),
            )
            for row in occupations
        ]
        return OccupationSearchResponse(
            query=OccupationSearchQuery(q=text, region=region, wage_region=wage_region, limit=capped),
            count=len(items),
            items=items,
        )


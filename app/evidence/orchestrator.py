from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Sequence

from app.core.config import settings
from app.evidence.adzuna import AdzunaClient
from app.evidence.store import JobQueryRecord, RequirementsStore, RunRecord
from app.requirements.extractor import (
    aggregate_requirements,
    extract_requirements_from_text,
    merge_aggregated_requirements,
)
from app.requirements.llm_enrichment import EnrichmentResult, run_llm_enrichment
from app.schemas.evidence import EvidenceQuery, EvidenceResult
from app.schemas.requirements import (
    AggregatedRequirement,
    ExtractedRequirement,
    PostingRequirementInput,
    RequirementSourceText,
)
from app.services.llm import requirements_model

logger = logging.getLogger(__name__)

HEURISTIC_MODEL = "heuristic-v1"
MIN_USER_POSTING_CHARS = 20

_WHITESPACE_RE = re.compile(r"\s+")

Clock = Callable[[], datetime]
Enricher = Callable[[Sequence[PostingRequirementInput], Sequence[ExtractedRequirement]], EnrichmentResult]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_lookup(value: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", (value or "").strip().lower())


def extract_user_posting_requirements(text: str | None) -> list[AggregatedRequirement]:
    cleaned = (text or "").strip()
    if len(cleaned) <= MIN_USER_POSTING_CHARS:
        return []
    return aggregate_requirements(
        extract_requirements_from_text(RequirementSourceText(text=cleaned, source="user_posting"))
    )


class EvidenceOrchestrator:
    """Read-through cache of market requirement evidence per (role, location, country).

    Market failures fail open: the query is marked ``error`` and the last stored
    rows are returned instead of an exception.
    """

    def __init__(
        self,
        store: RequirementsStore,
        client: AdzunaClient,
        *,
        ttl_hours: int = 72,
        max_pages: int = 2,
        results_per_page: int | None = None,
        fetch_deadline_s: float | None = None,
        clock: Clock | None = None,
        enricher: Enricher | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.ttl = timedelta(hours=ttl_hours if ttl_hours > 0 else 72)
        self.max_pages = max_pages
        self.results_per_page = results_per_page
        self.fetch_deadline_s = fetch_deadline_s
        self._clock = clock or _utc_now
        self._enricher = enricher or run_llm_enrichment

    @property
    def market_configured(self) -> bool:
        return self.client.is_configured

    def is_fresh(self, last_fetched_at: datetime | None) -> bool:
        if last_fetched_at is None:
            return False
        return self._clock() - last_fetched_at <= self.ttl

    def ensure_evidence_requirements(
        self,
        role: str,
        location: str,
        country: str | None = None,
        *,
        use_market_evidence: bool = True,
        user_posting_text: str | None = None,
        force_refresh: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> EvidenceResult:
        role_key = normalize_lookup(role)
        location_key = normalize_lookup(location)
        country_key = normalize_lookup(country) or self.client.country
        user_rows = extract_user_posting_requirements(user_posting_text)
        lookup = EvidenceQuery(role=role_key, location=location_key, country=country_key)

        if not role_key or not location_key:
            return EvidenceResult(
                query=lookup,
                user_posting_requirements=user_rows,
                baseline_only=not user_rows,
            )

        try:
            query = self.store.find_or_create_query(role_key, location_key, country_key)
            current = self.store.get_requirements(query.id)
        except Exception as exc:  # noqa: BLE001 - the store is part of the market path
            logger.warning("evidence_store_unavailable role=%s location=%s: %s", role_key, location_key, exc)
            return EvidenceResult(query=lookup, user_posting_requirements=user_rows, baseline_only=not user_rows)

        # Stored market rows are still served when fetching is off for this request.
        fetch_allowed = use_market_evidence and self.market_configured
        can_use_cache = not force_refresh and self.is_fresh(query.last_fetched_at)
        if current and (can_use_cache or not fetch_allowed):
            return self._result(query, current, user_rows, used_cache=can_use_cache)

        if not fetch_allowed:
            return self._result(query, current, user_rows)

        started_at = self._clock()
        try:
            return self._refresh(query, current, user_rows, started_at, cancel_event)
        except Exception as exc:  # noqa: BLE001
            return self._fail_open_to_cache(query, current, user_rows, started_at, exc)

    def _result(
        self,
        query: JobQueryRecord,
        market_rows: list[AggregatedRequirement],
        user_rows: list[AggregatedRequirement],
        *,
        used_adzuna: bool = False,
        used_cache: bool = False,
        postings_count: int = 0,
        fetched_at: datetime | None = None,
        partial: bool = False,
    ) -> EvidenceResult:
        return EvidenceResult(
            query_id=query.id,
            query=EvidenceQuery(role=query.role, location=query.location, country=query.country),
            market_requirements=market_rows,
            user_posting_requirements=user_rows,
            used_adzuna=used_adzuna,
            used_cache=used_cache,
            postings_count=postings_count,
            baseline_only=not market_rows and not user_rows,
            fetched_at=fetched_at or query.last_fetched_at,
            partial=partial,
        )

    def _extract_market(
        self,
        query_id: int,
        cancel_event: threading.Event | None,
    ) -> tuple[list[AggregatedRequirement], int, EnrichmentResult | None]:
        postings = [
            PostingRequirementInput(posting_id=row.posting_id, description=row.description)
            for row in self.store.get_postings(query_id)
            if row.description and row.description.strip()
        ]
        extracted: list[ExtractedRequirement] = []
        for posting in postings:
            extracted.extend(
                extract_requirements_from_text(
                    RequirementSourceText(text=posting.description, source="adzuna", posting_id=posting.posting_id)
                )
            )
        heuristic = aggregate_requirements(extracted)

        enrichment: EnrichmentResult | None = None
        if postings and not (cancel_event is not None and cancel_event.is_set()):
            enrichment = self._enricher(postings, extracted)
        if enrichment is not None and enrichment.requirements:
            merged = merge_aggregated_requirements(heuristic + aggregate_requirements(enrichment.requirements))
        else:
            merged = merge_aggregated_requirements(heuristic)
        return merged, len(postings), enrichment

    def _run_model(self, enrichment: EnrichmentResult | None) -> str:
        if enrichment is None or enrichment.status in {"disabled", "skipped"}:
            return HEURISTIC_MODEL
        return f"{HEURISTIC_MODEL}+llm:{requirements_model()}:{enrichment.status}"

    def _refresh(
        self,
        query: JobQueryRecord,
        current: list[AggregatedRequirement],
        user_rows: list[AggregatedRequirement],
        started_at: datetime,
        cancel_event: threading.Event | None,
    ) -> EvidenceResult:
        self.store.mark_fetching(query.id)
        paged = self.client.fetch_jobs_paged(
            query.role,
            query.location,
            country=query.country,
            max_pages=self.max_pages,
            results_per_page=self.results_per_page,
            deadline_s=self.fetch_deadline_s,
            cancel_event=cancel_event,
        )
        self.store.upsert_postings(query.id, paged.jobs)
        merged, postings_count, enrichment = self._extract_market(query.id, cancel_event)
        finished_at = self._clock()

        if not paged.completed:
            # Incomplete fetch: report what was aggregated but keep the stored rows and status.
            self.store.mark_idle(query.id)
            self.store.write_run(
                RunRecord(
                    query_id=query.id,
                    started_at=started_at,
                    finished_at=finished_at,
                    postings_count=postings_count,
                    requirements_count=len(merged),
                    model=self._run_model(enrichment),
                    status="partial",
                    error=paged.stop_reason,
                )
            )
            logger.info("evidence_fetch_partial query_id=%s reason=%s", query.id, paged.stop_reason)
            return self._result(
                query,
                merged or current,
                user_rows,
                used_adzuna=paged.pages_fetched > 0,
                postings_count=postings_count,
                partial=True,
            )

        if merged:
            self.store.replace_requirements(query.id, merged)
        self.store.mark_success(query.id, finished_at)
        self.store.write_run(
            RunRecord(
                query_id=query.id,
                started_at=started_at,
                finished_at=finished_at,
                postings_count=postings_count,
                requirements_count=len(merged),
                model=self._run_model(enrichment),
                status="success",
            )
        )
        logger.info(
            "evidence_fetch_success query_id=%s postings=%s requirements=%s",
            query.id,
            postings_count,
            len(merged),
        )
        return self._result(
            query,
            merged or current,
            user_rows,
            used_adzuna=True,
            postings_count=postings_count,
            fetched_at=finished_at,
        )

    def _fail_open_to_cache(
        self,
        query: JobQueryRecord,
        current: list[AggregatedRequirement],
        user_rows: list[AggregatedRequirement],
        started_at: datetime,
        error: Exception,
    ) -> EvidenceResult:
        """Market refresh failed: record it and fall back to the last stored rows."""
        message = str(error) or error.__class__.__name__
        logger.warning("evidence_fetch_failed query_id=%s: %s", query.id, message)
        try:
            self.store.mark_error(query.id, message)
            self.store.write_run(
                RunRecord(
                    query_id=query.id,
                    started_at=started_at,
                    finished_at=self._clock(),
                    postings_count=0,
                    requirements_count=0,
                    model=HEURISTIC_MODEL,
                    status="error",
                    error=message[:1000],
                )
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("evidence_error_record_failed query_id=%s: %s", query.id, exc)
        return self._result(query, current, user_rows, used_cache=bool(current))


@lru_cache(maxsize=1)
def get_default_orchestrator() -> EvidenceOrchestrator:
    return EvidenceOrchestrator(
        RequirementsStore(settings.requirements_db_path),
        AdzunaClient.from_settings(settings),
        ttl_hours=settings.requirements_ttl_hours,
        max_pages=settings.adzuna_max_pages,
        results_per_page=settings.adzuna_results_per_page,
        fetch_deadline_s=settings.adzuna_fetch_deadline_s,
    )

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)

ADZUNA_BASE_URL = "https://api.adzuna.com/v1/api/jobs"
MAX_RESULTS_PER_PAGE = 100
MAX_PAGES = 5
ERROR_BODY_CHARS = 240


class AdzunaError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class AdzunaJob:
    provider_job_id: str
    title: str | None = None
    company: str | None = None
    location: str | None = None
    description: str | None = None
    category: str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    contract_type: str | None = None
    posted_at: str | None = None
    source_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    provider: str = "adzuna"


@dataclass(slots=True)
class AdzunaSearchResult:
    jobs: list[AdzunaJob]
    page: int
    count: int


@dataclass(slots=True)
class PagedFetchResult:
    jobs: list[AdzunaJob]
    pages_fetched: int
    completed: bool
    stop_reason: str


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _nested_str(row: dict[str, Any], key: str, field_name: str) -> str | None:
    nested = row.get(key)
    if not isinstance(nested, dict):
        return None
    value = nested.get(field_name)
    if value is None:
        return None
    return str(value).strip() or None


def _finite_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_job(row: Any) -> AdzunaJob | None:
    if not isinstance(row, dict):
        return None
    raw_id = row.get("id") or row.get("adref") or row.get("redirect_url")
    if not raw_id:
        return None
    provider_job_id = str(raw_id).strip()
    if not provider_job_id:
        return None

    return AdzunaJob(
        provider_job_id=provider_job_id,
        title=_clean_str(row.get("title")),
        company=_nested_str(row, "company", "display_name"),
        location=_nested_str(row, "location", "display_name"),
        description=_clean_str(row.get("description")),
        category=_nested_str(row, "category", "label"),
        salary_min=_finite_number(row.get("salary_min")),
        salary_max=_finite_number(row.get("salary_max")),
        contract_type=_clean_str(row.get("contract_type")),
        posted_at=row.get("created") if isinstance(row.get("created"), str) else None,
        source_url=row.get("redirect_url") if isinstance(row.get("redirect_url"), str) else None,
        raw=row,
    )


class AdzunaClient:
    """Thin job-search client. Paging is bounded by page count, a deadline and a cancel event."""

    def __init__(
        self,
        *,
        app_id: str | None,
        app_key: str | None,
        country: str = "ca",
        results_per_page: int = 50,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.app_id = (app_id or "").strip()
        self.app_key = (app_key or "").strip()
        self.country = (country or "ca").strip().lower()
        self.results_per_page = results_per_page
        self.timeout_s = timeout_s
        self._transport = transport
        self._clock = clock or time.monotonic

    @classmethod
    def from_settings(cls, config: Settings | None = None, **kwargs: Any) -> "AdzunaClient":
        config = config or settings
        return cls(
            app_id=config.adzuna_app_id,
            app_key=config.adzuna_app_key,
            country=config.adzuna_country,
            results_per_page=config.adzuna_results_per_page,
            timeout_s=config.adzuna_timeout_s,
            **kwargs,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.app_id and self.app_key)

    def fetch_jobs(
        self,
        role: str,
        location: str,
        *,
        country: str | None = None,
        page: int = 1,
        results_per_page: int | None = None,
    ) -> AdzunaSearchResult:
        if not self.is_configured:
            raise AdzunaError("Adzuna credentials are not configured.")

        target_country = (country or self.country).strip().lower()
        page = max(1, page)
        per_page = max(1, min(MAX_RESULTS_PER_PAGE, results_per_page or self.results_per_page))
        params = {
            "app_id": self.app_id,
            "app_key": self.app_key,
            "what": role.strip(),
            "where": location.strip(),
            "results_per_page": str(per_page),
            "content_type": "application/json",
        }
        url = f"{ADZUNA_BASE_URL}/{target_country}/search/{page}"

        try:
            with httpx.Client(
                timeout=self.timeout_s,
                transport=self._transport,
                headers={"Accept": "application/json"},
            ) as client:
                response = client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise AdzunaError(f"Adzuna request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            body = response.text[:ERROR_BODY_CHARS]
            raise AdzunaError(
                f"Adzuna request failed ({response.status_code}): {body}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise AdzunaError(f"Adzuna returned invalid JSON: {exc}") from exc

        results = data.get("results") if isinstance(data, dict) else None
        jobs = [job for job in (normalize_job(row) for row in results or []) if job is not None]
        count = _finite_number(data.get("count")) if isinstance(data, dict) else None
        return AdzunaSearchResult(jobs=jobs, page=page, count=int(count) if count is not None else len(jobs))

    def fetch_jobs_paged(
        self,
        role: str,
        location: str,
        *,
        country: str | None = None,
        max_pages: int = 2,
        results_per_page: int | None = None,
        deadline_s: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PagedFetchResult:
        pages = max(1, min(MAX_PAGES, max_pages))
        started = self._clock()
        collected: list[AdzunaJob] = []
        fetched = 0

        for page in range(1, pages + 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("adzuna_fetch_cancelled role=%s page=%s", role, page)
                return PagedFetchResult(collected, fetched, completed=False, stop_reason="cancelled")
            if deadline_s is not None and self._clock() - started >= deadline_s:
                logger.warning("adzuna_fetch_deadline role=%s page=%s deadline_s=%s", role, page, deadline_s)
                return PagedFetchResult(collected, fetched, completed=False, stop_reason="deadline")

            result = self.fetch_jobs(
                role,
                location,
                country=country,
                page=page,
                results_per_page=results_per_page,
            )
            fetched += 1
            collected.extend(result.jobs)
            if not result.jobs:
                return PagedFetchResult(collected, fetched, completed=True, stop_reason="empty_page")

        return PagedFetchResult(collected, fetched, completed=True, stop_reason="max_pages")

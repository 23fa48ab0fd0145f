from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.core.rate_limit import rate_limit
from app.schemas.career_data import CountryCode
from app.schemas.career_map import OccupationSearchResponse, SkillSearchResponse
from app.taxonomy import CareerDataMatcher, ReferenceDataError, get_default_matcher
from app.taxonomy.matcher import clamp_limit

logger = logging.getLogger(__name__)

router = APIRouter()


def _query_failed(exc: ReferenceDataError) -> HTTPException:
    logger.error("career_map_query_failed: %s", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "QUERY_FAILED", "message": "Unable to read the reference dataset."},
    )


def _region(value: str | None) -> CountryCode | None:
    normalized = (value or "").strip().upper()
    if normalized in {"CA", "US"}:
        return normalized  # type: ignore[return-value]
    return None


@router.get("/career-map/occupations", response_model=OccupationSearchResponse)
@rate_limit()
def search_occupations(
    request: Request,
    q: str = "",
    region: str | None = None,
    wage_region: str | None = Query(default=None, alias="wageRegion"),
    limit: int | None = None,
    matcher: CareerDataMatcher = Depends(get_default_matcher),
):
    _ = request
    wage = (wage_region or "").strip().upper() or None
    try:
        return matcher.search_occupations_with_wages(q, region=_region(region), wage_region=wage, limit=limit)
    except ReferenceDataError as exc:
        raise _query_failed(exc) from exc


@router.get("/career-map/skills", response_model=SkillSearchResponse)
@rate_limit()
def search_skills(
    request: Request,
    q: str = "",
    limit: int | None = None,
    matcher: CareerDataMatcher = Depends(get_default_matcher),
):
    _ = request
    text = q.strip()
    try:
        items = matcher.search_skills(text, limit=clamp_limit(limit))
    except ReferenceDataError as exc:
        raise _query_failed(exc) from exc
    return SkillSearchResponse(q=text, count=len(items), items=items)

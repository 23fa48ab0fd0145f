from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.schemas.career_data import CountryCode
from app.schemas.planner import CareerPlannerRequest, CareerPlannerResponse, PlannerInput, RoleResolution
from app.services.planner_service import (
    CareerPlannerService,
    PlannerInputError,
    get_default_planner_service,
    validate_planner_input,
)
from app.taxonomy import CareerDataMatcher, ReferenceDataError, get_default_matcher

logger = logging.getLogger(__name__)

router = APIRouter()

_WORK_REGION_LOCATIONS = {
    "ca": "Canada",
    "remote-ca": "Canada",
    "us": "United States",
    "remote-us": "Remote (US)",
    "either": "Open to either (US/CA)",
}
_WORK_REGION_COUNTRIES: dict[str, CountryCode] = {
    "ca": "CA",
    "remote-ca": "CA",
    "us": "US",
    "remote-us": "US",
}


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _location_from_work_region(work_region: str) -> str:
    return _WORK_REGION_LOCATIONS.get(work_region.lower(), "United States")


def normalize_request(payload: CareerPlannerRequest) -> PlannerInput:
    """Fold the older form field names into one planner input."""
    not_sure_mode = bool(payload.recommend_mode if payload.recommend_mode is not None else payload.not_sure_mode)
    experience = "\n".join(
        part
        for part in (_clean(payload.experience_text), f"Skills: {', '.join(payload.skills)}" if payload.skills else "")
        if part
    )
    work_region = _clean(payload.work_region)
    location = _clean(payload.location) or (_location_from_work_region(work_region) if work_region else "")
    return PlannerInput(
        current_role=_clean(payload.current_role_text) or _clean(payload.current_role),
        target_role=None if not_sure_mode else (_clean(payload.target_role_text) or _clean(payload.target_role) or None),
        not_sure_mode=not_sure_mode,
        skills=payload.skills,
        experience_text=experience,
        location=location or None,
        timeline=_clean(payload.timeline) or _clean(payload.timeline_bucket) or None,
        education=_clean(payload.education) or _clean(payload.education_level) or None,
        user_posting_text=_clean(payload.user_posting_text) or None,
        use_market_evidence=payload.use_market_evidence,
    )


def _role_region(payload: CareerPlannerRequest) -> CountryCode | None:
    return _WORK_REGION_COUNTRIES.get(_clean(payload.work_region).lower())


@router.post("/career-planner", response_model=CareerPlannerResponse)
@rate_limit(settings.planner_rate_limit)
def career_planner(
    request: Request,
    payload: CareerPlannerRequest,
    service: CareerPlannerService = Depends(get_default_planner_service),
    matcher: CareerDataMatcher = Depends(get_default_matcher),
):
    _ = request
    planner_input = normalize_request(payload)
    try:
        validate_planner_input(planner_input)
    except PlannerInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "INVALID_INPUT", "message": str(exc)},
        ) from exc

    region = _role_region(payload)
    try:
        current = matcher.resolve_occupation_input(planner_input.current_role, region=region)
        target = (
            None
            if planner_input.not_sure_mode
            else matcher.resolve_occupation_input(planner_input.target_role or "", region=region)
        )
        resolved = planner_input.model_copy(
            update={
                "resolved_current_role": (
                    current.best_match.title if current.best_match else planner_input.current_role
                )
                or "Career transition",
                "resolved_target_role": target.best_match.title if target is not None and target.best_match else None,
            }
        )
        analysis = service.generate(resolved)
    except PlannerInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "INVALID_INPUT", "message": str(exc)},
        ) from exc
    except ReferenceDataError as exc:
        logger.error("career_planner_query_failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "QUERY_FAILED", "message": "Unable to read the reference dataset."},
        ) from exc

    return CareerPlannerResponse(
        **analysis.legacy.model_dump(),
        report=analysis.report,
        role_resolution=RoleResolution(current=current, target=target),
        scoring=analysis.scoring_snapshot,
    )

from __future__ import annotations

from fastapi import APIRouter, Request

from app.core.rate_limit import rate_limit
from app.requirements.extractor import aggregate_requirements, extract_requirements_from_text
from app.schemas.requirements import RequirementExtractRequest, RequirementExtractResponse, RequirementSourceText

router = APIRouter()


@router.post("/requirements/extract", response_model=RequirementExtractResponse)
@rate_limit()
def extract_requirements(request: Request, payload: RequirementExtractRequest):
    _ = request
    extracted = extract_requirements_from_text(
        RequirementSourceText(text=payload.text, source=payload.source, posting_id=payload.posting_id)
    )
    rows = aggregate_requirements(extracted)
    return RequirementExtractResponse(count=len(rows), requirements=rows)

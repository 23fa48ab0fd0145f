from __future__ import annotations

from typing import Sequence

from app.requirements.extractor import aggregate_requirements, extract_requirements_from_text
from app.schemas.career_data import OccupationRequirementRow, OccupationRow, TradeRequirementRow
from app.schemas.requirements import AggregatedRequirement, RequirementSourceText

BASELINE_SOURCE = "onet"
MAX_BASELINE_SKILLS = 5


def baseline_posting_id(occupation_id: str) -> str:
    return f"{BASELINE_SOURCE}:{occupation_id}"


def build_baseline_text(
    requirement_row: OccupationRequirementRow | None,
    skills: Sequence[tuple[str, float]],
    trades: Sequence[TradeRequirementRow],
) -> str:
    lines: list[str] = []
    if requirement_row is not None:
        lines.extend(f"{cert} required" for cert in requirement_row.certs_licenses)
        if requirement_row.notes:
            lines.append(requirement_row.notes.strip())

    for trade in trades:
        hours = f"Complete {trade.hours} apprenticeship hours and hold" if trade.hours else "Hold"
        lines.append(f"{hours} the {trade.trade_code} Certificate of Qualification in {trade.province}")
        if trade.exam_required:
            lines.append(f"Pass the {trade.trade_code} certification exam")

    ranked = sorted(skills, key=lambda item: (-item[1], item[0].lower()))[:MAX_BASELINE_SKILLS]
    lines.extend(f"Perform {name.lower()} tasks in day-to-day work" for name, _ in ranked)
    return "\n".join(line for line in lines if line)


def build_baseline_requirements(
    occupation: OccupationRow,
    requirement_row: OccupationRequirementRow | None,
    skills: Sequence[tuple[str, float]],
    trades: Sequence[TradeRequirementRow] = (),
) -> list[AggregatedRequirement]:
    """Requirements implied by the reference dataset for one occupation, tagged ``onet``."""
    text = build_baseline_text(requirement_row, skills, trades)
    if not text:
        return []
    extracted = extract_requirements_from_text(
        RequirementSourceText(text=text, source=BASELINE_SOURCE, posting_id=baseline_posting_id(occupation.id))
    )
    return aggregate_requirements(extracted)

from __future__ import annotations

from typing import Iterable, Protocol

from app.schemas.career_data import (
    CountryCode,
    FxRateRow,
    OccupationRequirementRow,
    OccupationRow,
    OccupationSkillRow,
    OccupationWageRow,
    SkillRow,
    TradeRequirementRow,
)


class ReferenceDataError(RuntimeError):
    """The reference dataset could not be read or failed validation."""


class ReferenceDataProvider(Protocol):
    def list_skills(self) -> list[SkillRow]:
        """All skills ordered by name."""

    def list_occupations(self, region: CountryCode | None = None, limit: int | None = None) -> list[OccupationRow]:
        """Occupations for a region (all regions when None), ordered by title."""

    def occupation_skills(self, occupation_ids: Iterable[str]) -> list[OccupationSkillRow]:
        ...

    def occupation_requirements(self, occupation_ids: Iterable[str]) -> list[OccupationRequirementRow]:
        ...

    def occupation_wages(self, occupation_ids: Iterable[str]) -> list[OccupationWageRow]:
        ...

    def trade_requirements(self, province: str | None = None) -> list[TradeRequirementRow]:
        ...

    def latest_fx_rate(self) -> FxRateRow | None:
        """Most recent USD/CAD rate."""

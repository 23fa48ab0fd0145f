from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

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

from .provider import ReferenceDataError, ReferenceDataProvider

RowT = TypeVar("RowT", bound=BaseModel)

DEFAULT_DATA_DIR = Path(__file__).with_name("data")

_FILES: dict[str, type[BaseModel]] = {
    "occupations.json": OccupationRow,
    "skills.json": SkillRow,
    "occupation_skills.json": OccupationSkillRow,
    "occupation_requirements.json": OccupationRequirementRow,
    "occupation_wages.json": OccupationWageRow,
    "trade_requirements.json": TradeRequirementRow,
    "fx_rates.json": FxRateRow,
}


class LocalReferenceData(ReferenceDataProvider):
    """Reference dataset read from JSON files, validated row by row on first access."""

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        self._tables: dict[str, list[Any]] = {}
        self._lock = threading.Lock()

    def _table(self, filename: str, model: type[RowT]) -> list[RowT]:
        with self._lock:
            cached = self._tables.get(filename)
            if cached is None:
                cached = self._load(filename, model)
                self._tables[filename] = cached
        return cached

    def _load(self, filename: str, model: type[RowT]) -> list[RowT]:
        path = self.data_dir / filename
        if not path.exists():
            raise ReferenceDataError(f"Reference data file not found: '{path}'")
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise ReferenceDataError(f"Failed to read reference data '{path}': {exc}") from exc
        if not isinstance(raw, list):
            raise ReferenceDataError(f"Invalid reference data '{path}': expected a JSON array.")

        rows: list[RowT] = []
        for index, item in enumerate(raw):
            try:
                rows.append(model.model_validate(item))
            except ValidationError as exc:
                raise ReferenceDataError(f"Invalid row {index} in '{path}': {exc}") from exc
        return rows

    def reload(self) -> None:
        with self._lock:
            self._tables.clear()

    def list_skills(self) -> list[SkillRow]:
        return sorted(self._table("skills.json", SkillRow), key=lambda row: row.name.lower())

    def list_occupations(self, region: CountryCode | None = None, limit: int | None = None) -> list[OccupationRow]:
        rows = [
            row
            for row in self._table("occupations.json", OccupationRow)
            if region is None or row.region == region
        ]
        rows.sort(key=lambda row: row.title.lower())
        return rows[:limit] if limit is not None else rows

    def occupation_skills(self, occupation_ids: Iterable[str]) -> list[OccupationSkillRow]:
        wanted = set(occupation_ids)
        return [row for row in self._table("occupation_skills.json", OccupationSkillRow) if row.occupation_id in wanted]

    def occupation_requirements(self, occupation_ids: Iterable[str]) -> list[OccupationRequirementRow]:
        wanted = set(occupation_ids)
        return [
            row
            for row in self._table("occupation_requirements.json", OccupationRequirementRow)
            if row.occupation_id in wanted
        ]

    def occupation_wages(self, occupation_ids: Iterable[str]) -> list[OccupationWageRow]:
        wanted = set(occupation_ids)
        return [row for row in self._table("occupation_wages.json", OccupationWageRow) if row.occupation_id in wanted]

    def trade_requirements(self, province: str | None = None) -> list[TradeRequirementRow]:
        rows = self._table("trade_requirements.json", TradeRequirementRow)
        if province is None:
            return list(rows)
        return [row for row in rows if row.province.upper() == province.upper()]

    def latest_fx_rate(self) -> FxRateRow | None:
        rows = self._table("fx_rates.json", FxRateRow)
        if not rows:
            return None
        return max(rows, key=lambda row: row.as_of_date)

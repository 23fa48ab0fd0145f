from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CountryCode = Literal["CA", "US"]
Currency = Literal["CAD", "USD"]


def coerce_string_list(value: Any) -> list[str]:
    """Accept a list or a JSON-encoded list; a bare string becomes a single item."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return []
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError:
            return [trimmed]
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if item is not None and str(item).strip()]
        return [trimmed]
    return []


class ReferenceRow(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class OccupationRow(ReferenceRow):
    kind: Literal["occupation"] = "occupation"
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    region: CountryCode
    aliases: list[str] = Field(default_factory=list)
    codes: dict[str, Any] = Field(default_factory=dict)
    source: str | None = None
    last_updated: str | None = None

    @field_validator("aliases", mode="before")
    @classmethod
    def _aliases(cls, value: Any) -> list[str]:
        return coerce_string_list(value)

    @field_validator("codes", mode="before")
    @classmethod
    def _codes(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}


class SkillRow(ReferenceRow):
    kind: Literal["skill"] = "skill"
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)

    @field_validator("aliases", mode="before")
    @classmethod
    def _aliases(cls, value: Any) -> list[str]:
        return coerce_string_list(value)


class OccupationSkillRow(ReferenceRow):
    kind: Literal["occupation_skill"] = "occupation_skill"
    occupation_id: str
    skill_id: str
    weight: float = Field(ge=0.0)


class OccupationRequirementRow(ReferenceRow):
    kind: Literal["occupation_requirement"] = "occupation_requirement"
    occupation_id: str
    education: str | None = None
    certs_licenses: list[str] = Field(default_factory=list)
    notes: str | None = None

    @field_validator("certs_licenses", mode="before")
    @classmethod
    def _certs(cls, value: Any) -> list[str]:
        return coerce_string_list(value)


class OccupationWageRow(ReferenceRow):
    kind: Literal["occupation_wage"] = "occupation_wage"
    occupation_id: str
    region: str
    wage_low: float | None = None
    wage_median: float | None = None
    wage_high: float | None = None
    currency: Currency
    source: str
    source_url: str | None = None
    last_updated: str


class OfficialLink(ReferenceRow):
    label: str = "Official link"
    url: str = Field(min_length=1)

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or "Official link"


class TradeRequirementRow(ReferenceRow):
    kind: Literal["trade_requirement"] = "trade_requirement"
    occupation_id: str | None = None
    trade_code: str
    province: str
    hours: int | None = None
    exam_required: bool = False
    official_links: list[OfficialLink] = Field(default_factory=list)
    source: str
    source_url: str | None = None
    notes: str | None = None

    @field_validator("official_links", mode="before")
    @classmethod
    def _links(cls, value: Any) -> list[Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and str(item.get("url") or "").strip()]


class FxRateRow(ReferenceRow):
    kind: Literal["fx_rate"] = "fx_rate"
    base_currency: Literal["USD"] = "USD"
    quote_currency: Literal["CAD"] = "CAD"
    rate: float = Field(gt=0.0)
    source: str
    as_of_date: str

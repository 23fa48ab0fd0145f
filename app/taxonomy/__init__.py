from functools import lru_cache

from app.core.config import settings

from .local_reference import LocalReferenceData
from .matcher import CareerDataMatcher
from .provider import ReferenceDataError, ReferenceDataProvider


@lru_cache(maxsize=1)
def get_default_reference_provider() -> ReferenceDataProvider:
    return LocalReferenceData(settings.reference_data_dir)


@lru_cache(maxsize=1)
def get_default_matcher() -> CareerDataMatcher:
    return CareerDataMatcher(get_default_reference_provider())


__all__ = [
    "CareerDataMatcher",
    "ReferenceDataError",
    "ReferenceDataProvider",
    "LocalReferenceData",
    "get_default_matcher",
    "get_default_reference_provider",
]

from contextlib import asynccontextmanager
import logging

from app.evidence.orchestrator import get_default_orchestrator
from app.taxonomy import ReferenceDataError, get_default_matcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    store = get_default_orchestrator().store
    try:
        store.init_db()
    except Exception as exc:  # noqa: BLE001 - market evidence is optional
        logger.warning("requirements_store_init_failed: %s", exc)

    matcher = get_default_matcher()
    try:
        matcher.search_occupations("warmup")
        matcher.search_skills("warmup")
    except ReferenceDataError as exc:
        logger.error("reference_data_warmup_failed: %s", exc)

    yield
    store.close()

import logging

from ..core.config import Settings
from .base import PortraitStore
from .memory import InMemoryPortraitStore
from .sql import SqlPortraitStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> PortraitStore:
    if settings.storage_backend == "memory":
        logger.info("Using in-memory portrait store")
        return InMemoryPortraitStore()
    logger.info("Using SQL portrait store")
    return SqlPortraitStore(settings.database_url, echo=settings.debug)

"""Shared FastAPI dependencies."""
from functools import lru_cache

from autopilot.services.automation import DisputeAutomationService
from autopilot.services.sql_store import SqlStore
from autopilot.services.store import DisputeStore


@lru_cache
def get_store() -> DisputeStore:
    return SqlStore()


def get_service() -> DisputeAutomationService:
    return DisputeAutomationService(get_store())

"""Celery tasks for periodic dispute automation."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from autopilot.workers.celery_app import celery_app
from autopilot.config import get_settings
from autopilot.services.automation import DisputeAutomationService
from autopilot.services.sql_store import SqlStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _run_with_service(work: Callable[[DisputeAutomationService], Awaitable[T]]) -> T:
    """Run async service work on a private loop (Celery workers are sync)."""
    settings = get_settings()

    async def _runner() -> T:
        # Fresh engine per task: pooled asyncpg connections cannot cross event loops.
        engine = create_async_engine(settings.database_url, poolclass=NullPool)
        try:
            session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            service = DisputeAutomationService(SqlStore(session_maker))
            return await work(service)
        finally:
            await engine.dispose()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_runner())
    finally:
        loop.close()


@celery_app.task(name="autopilot.workers.tasks.sweep_disputes")
def sweep_disputes(merchant_id: Optional[str] = None) -> Dict[str, Any]:
    """Retry every open, unsubmitted dispute."""
    report = _run_with_service(lambda service: service.sweep(merchant_id))
    return report.as_dict()


@celery_app.task(name="autopilot.workers.tasks.optimize_merchant_reasons")
def optimize_merchant_reasons(
    merchant_id: str,
    min_cases: Optional[int] = None,
    min_win_rate_pct: Optional[float] = None,
) -> Dict[str, Any]:
    settings = get_settings()
    result = _run_with_service(
        lambda service: service.optimize_reasons(
            merchant_id,
            min_cases=min_cases if min_cases is not None else settings.optimizer_min_cases,
            min_win_rate_pct=min_win_rate_pct if min_win_rate_pct is not None else settings.optimizer_min_win_rate_pct,
        )
    )
    if result is None:
        return {"error": "Merchant not found", "merchant_id": merchant_id}
    return {"merchant_id": merchant_id, **result.as_dict()}


@celery_app.task(name="autopilot.workers.tasks.optimize_all_merchants")
def optimize_all_merchants() -> Dict[str, Any]:
    """Run the reason optimizer for every merchant with auto-submit enabled."""
    settings = get_settings()

    async def _optimize(service: DisputeAutomationService) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        for merchant in await service.list_merchants():
            if not merchant.policy.auto_submit_enabled:
                continue
            try:
                result = await service.optimize_reasons(
                    merchant.id,
                    min_cases=settings.optimizer_min_cases,
                    min_win_rate_pct=settings.optimizer_min_win_rate_pct,
                )
                results[merchant.id] = result.as_dict() if result else {"error": "Merchant not found"}
            except Exception as e:
                logger.exception("Reason optimization failed for merchant %s", merchant.id)
                results[merchant.id] = {"error": str(e)}
        return results

    return {"merchants": _run_with_service(_optimize)}

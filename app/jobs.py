# app/jobs.py
import asyncio
import logging

from sqlmodel import Session

from app.core.config import get_settings
from app.database import engine
from app.services.registry import order_service, shipment_tracker

logger = logging.getLogger(__name__)


def run_payment_timeout_sweep() -> list[str]:
    with Session(engine) as session:
        cancelled = order_service.cancel_expired(session)
        return [order.order_number for order in cancelled]


def run_shipment_refresh() -> list[str]:
    with Session(engine) as session:
        return shipment_tracker.refresh_active(session)


async def _loop(name: str, job, interval_minutes: int) -> None:
    """Run `job` in a worker thread every `interval_minutes` until cancelled."""
    while True:
        try:
            affected = await asyncio.to_thread(job)
            if affected:
                logger.info("%s: %d affected (%s)", name, len(affected), ", ".join(affected))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s failed", name)
        await asyncio.sleep(interval_minutes * 60)


def start_background_sweeps() -> list[asyncio.Task]:
    """
    Schedule the periodic jobs on the running event loop:
      - payment timeout: cancel unpaid pending orders past the deadline
      - shipment refresh: poll the carrier for active shipments
    """
    settings = get_settings()
    return [
        asyncio.create_task(
            _loop("Payment timeout sweep", run_payment_timeout_sweep,
                  settings.ORDER_SWEEP_INTERVAL_MINUTES)
        ),
        asyncio.create_task(
            _loop("Shipment refresh", run_shipment_refresh,
                  settings.SHIPMENT_SWEEP_INTERVAL_MINUTES)
        ),
    ]


async def stop_background_sweeps(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

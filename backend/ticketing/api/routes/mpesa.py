"""
Provider-facing M-Pesa callback endpoint.

The acknowledgement is unconditional and is sent before any reconciliation
work starts: the handler only reads the raw body and schedules
reconcile_callback as a background task, which Starlette runs after the
response has been written. Nothing about the payload, the database or the
outcome can change what the provider receives.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketing.db.session import get_session_factory
from ticketing.schemas.mpesa import CallbackAck
from ticketing.services.event_bus import EventBus, get_event_bus
from ticketing.services.reconciliation_service import reconcile_callback
from ticketing.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/mpesa", tags=["M-Pesa"])


@router.post("/callback", response_model=CallbackAck)
async def mpesa_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    bus: EventBus = Depends(get_event_bus),
):
    """Receive an STK push result. Always answers ResultCode 0 / Accepted."""
    raw_body = await request.body()
    logger.info("mpesa_callback_received", body_size=len(raw_body))
    background_tasks.add_task(reconcile_callback, session_factory, raw_body, bus)
    return CallbackAck()

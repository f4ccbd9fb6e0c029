import asyncio
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from config.settings import Settings
from core.services.notifier import Notifier
from core.services.payment_provider import PaymentProvider
from core.use_cases.webhook_use_cases import reconcile_event
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow, get_payment_provider, get_notifier, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str
    event_type: str
    success: bool
    duplicate: bool = False
    error: Optional[str] = None


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    provider: PaymentProvider = Depends(get_payment_provider),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    # подпись проверяется по сырому телу запроса
    payload = await request.body()
    event = provider.construct_event(payload, stripe_signature)
    # sqlite и Pusher синхронные, в event loop их не держим
    result = await asyncio.to_thread(
        reconcile_event, uow, notifier, event,
        renewal_window=timedelta(minutes=settings.RENEWAL_WINDOW_MINUTES),
    )
    return WebhookAck(
        event_id=result.event_id,
        event_type=result.event_type,
        success=result.success,
        duplicate=result.duplicate,
        error=result.error,
    )

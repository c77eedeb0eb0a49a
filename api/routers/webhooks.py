"""Payment gateway webhooks."""

import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_db
from errors import DomainError
from services.payment_gateway import verify_webhook_signature
from services.purchase_workflow import handle_gateway_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Razorpay event callback. The signature covers the raw body.
    Non-2xx answers make the gateway redeliver.
    """
    body = await request.body()
    if not verify_webhook_signature(body, x_razorpay_signature):
        logger.warning("Rejected webhook with bad signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    name = event.get("event", "")
    try:
        outcome = await handle_gateway_event(db, name, event.get("payload", {}))
    except DomainError as e:
        logger.warning("Webhook %s not processed: %s", name, e.message)
        raise HTTPException(status_code=400, detail=e.message)

    logger.info("Webhook %s handled: %s", name, outcome)
    return {"status": "ok", "event": name, "outcome": outcome}

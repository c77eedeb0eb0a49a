"""
Notification Service — purchase and vendor updates relayed to the email/WhatsApp gateway.
"""

import logging

import httpx

from config import settings

logger = logging.getLogger(__name__)


async def send_notification(event: str, recipient: dict, payload: dict) -> bool:
    """POST one notification to the relay. Never raises; returns delivery success."""
    if not settings.notification_webhook_url:
        logger.info("Notification relay not configured, dropping %s", event)
        return False
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(
                settings.notification_webhook_url,
                json={"event": event, "recipient": recipient, "payload": payload},
            )
            return resp.status_code < 300
    except httpx.HTTPError as e:
        logger.warning("Notification %s failed: %s", event, e)
        return False


async def notify_purchase_success(user, subscription, plan) -> bool:
    """Tell the customer their subscription is live."""
    return await send_notification(
        "subscription.purchased",
        {"user_id": str(user.id), "name": user.name, "email": user.email, "phone": user.phone},
        {
            "subscription_id": str(subscription.id),
            "plan_name": plan.plan_name,
            "start_date": subscription.start_date.isoformat(),
            "end_date": subscription.end_date.isoformat(),
            "credits": subscription.credits_granted,
            "amount": float(subscription.final_price),
        },
    )


async def notify_vendor_assigned(user, subscription, vendor) -> bool:
    return await send_notification(
        "subscription.vendor_assigned",
        {"user_id": str(user.id), "name": user.name, "email": user.email, "phone": user.phone},
        {
            "subscription_id": str(subscription.id),
            "vendor_id": str(vendor.id),
            "business_name": vendor.business_name,
            "vendor_type": vendor.vendor_type,
        },
    )

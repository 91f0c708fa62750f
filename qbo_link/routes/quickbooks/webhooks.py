import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from qbo_link.config import Settings
from qbo_link.routes.quickbooks.auth import get_settings
from qbo_link.services.quickbooks_service import verify_webhook_signature

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def receive_notification(request: Request, settings: Settings = Depends(get_settings)):
    """
    Accepts a QuickBooks change notification after checking ``intuit-signature``.
    """
    body = await request.body()
    signature = request.headers.get("intuit-signature")
    if not verify_webhook_signature(body, signature, settings.quickbooks_webhook_verifier_token):
        logger.warning("Rejected QuickBooks webhook with bad signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature.")

    try:
        notification = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body is not JSON.")

    events = notification.get("eventNotifications", []) if isinstance(notification, dict) else None
    if not isinstance(events, list) or not all(isinstance(event, dict) for event in events):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body is not a notification.")

    realms = [event.get("realmId") for event in events]
    logger.info("QuickBooks webhook received for realms %s", realms)
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder({"success": True, "data": {"realms": realms}}),
    )

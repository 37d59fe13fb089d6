import json
import logging

from fastapi import APIRouter, Request

from app import schemas
from app.core.config import settings
from app.utils.webhook_signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook-receiver", response_model=schemas.DevReceiverResponse)
async def dev_webhook_receiver(request: Request):
    """
    Local stand-in for a tenant endpoint. Checks the signature against the
    process-wide secret and logs what arrived. Only mounted when
    ENABLE_DEV_ENDPOINTS is set.
    """
    raw_body = (await request.body()).decode("utf-8")
    timestamp = request.headers.get(TIMESTAMP_HEADER)
    signature = request.headers.get(SIGNATURE_HEADER)

    signature_valid = False
    if timestamp and signature and settings.WEBHOOK_SIGNING_SECRET is not None:
        signature_valid = verify_signature(
            settings.WEBHOOK_SIGNING_SECRET.get_secret_value(), raw_body, timestamp, signature
        )

    try:
        body = json.loads(raw_body) if raw_body else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    logger.info(
        f"Dev webhook received: event={body.get('id')} type={body.get('type')} signature_valid={signature_valid}"
    )
    return schemas.DevReceiverResponse(
        received=True,
        signatureValid=signature_valid,
        eventId=body.get("id"),
        eventType=body.get("type"),
    )

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from atende.config import settings
from atende.database import get_db
from atende.logging_config import get_logger
from atende.models import Tenant
from atende.schemas.webhook import WebhookAck
from atende.services.alert_service import alert_warning
from atende.services.inbound import parse_payload
from atende.services.session_service import SessionService, get_session_service
from atende.services.signature import verify_signature

logger = get_logger("webhook")

router = APIRouter()


def _verify_token_matches(db: Session, token: str) -> bool:
    if settings.whatsapp_verify_token and token == settings.whatsapp_verify_token:
        return True
    return (
        db.query(Tenant.id)
        .filter(Tenant.whatsapp_verify_token == token, Tenant.is_active.is_(True))
        .first()
        is not None
    )


@router.get("/webhook", response_class=PlainTextResponse)
def verify_webhook(request: Request, db: Session = Depends(get_db)):
    """Subscription handshake: echo hub.challenge when the verify token matches."""
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge")

    if not mode or not token or not challenge:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required parameters")

    if mode == "subscribe" and _verify_token_matches(db, token):
        logger.info("Webhook verified")
        return challenge

    logger.warning("Webhook verification failed", extra={"context": {"mode": mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request, service: SessionService = Depends(get_session_service)):
    """Acknowledge at once; messages are processed on a background task."""
    raw_body = await request.body()

    signature = verify_signature(raw_body, request.headers, settings.whatsapp_app_secret)
    if not signature.valid:
        logger.warning("Webhook signature rejected", extra={"context": {"error": signature.error}})
        await alert_warning("Webhook signature rejected", {"error": signature.error})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    try:
        body = json.loads(raw_body or b"{}")
    except ValueError:
        logger.warning("Webhook body is not JSON")
        return WebhookAck(received=0)
    if not isinstance(body, dict):
        return WebhookAck(received=0)

    messages = parse_payload(body)
    service.dispatch(messages)
    return WebhookAck(received=len(messages))

"""Outbound delivery through the WhatsApp Cloud API, one attempt per message."""

from dataclasses import dataclass
from typing import Optional

import httpx

from atende.config import settings
from atende.logging_config import get_logger
from atende.models import Tenant
from atende.services.alert_service import alert_error
from atende.services.message_log import ContentType
from atende.services.phone import digits_only

logger = get_logger("whatsapp_gateway")

MEDIA_TYPES = {
    ContentType.IMAGE: "image",
    ContentType.AUDIO: "audio",
    ContentType.VIDEO: "video",
    ContentType.DOCUMENT: "document",
}


@dataclass
class DeliveryResult:
    ok: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class WhatsAppGateway:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.whatsapp_api_base_url).rstrip("/")
        self.api_version = api_version or settings.whatsapp_api_version
        self.timeout = timeout or settings.whatsapp_timeout_seconds
        self._transport = transport

    def credentials_for(self, tenant: Tenant) -> tuple[Optional[str], Optional[str]]:
        phone_number_id = tenant.whatsapp_phone_number_id or settings.whatsapp_phone_number_id
        token = tenant.whatsapp_access_token or settings.whatsapp_access_token
        return phone_number_id, token

    async def send(self, tenant: Tenant, to: str, body: str) -> DeliveryResult:
        payload = {
            "messaging_product": "whatsapp",
            "to": digits_only(to),
            "type": "text",
            "text": {"body": body, "preview_url": False},
        }
        return await self._post(tenant, payload)

    async def send_media(
        self,
        tenant: Tenant,
        to: str,
        content_type: ContentType,
        media_id: str,
        caption: Optional[str] = None,
    ) -> DeliveryResult:
        media_type = MEDIA_TYPES.get(content_type)
        if media_type is None:
            return DeliveryResult(ok=False, error=f"unsupported_media_type:{content_type.value}")

        media: dict = {"id": media_id}
        if caption and media_type != "audio":
            media["caption"] = caption
        payload = {
            "messaging_product": "whatsapp",
            "to": digits_only(to),
            "type": media_type,
            media_type: media,
        }
        return await self._post(tenant, payload)

    async def _post(self, tenant: Tenant, payload: dict) -> DeliveryResult:
        phone_number_id, token = self.credentials_for(tenant)
        context = {"tenant_id": tenant.id, "to": payload.get("to"), "type": payload.get("type")}

        if not phone_number_id or not token:
            logger.error("WhatsApp credentials missing for tenant", extra={"context": context})
            await alert_error("WhatsApp credentials missing", context)
            return DeliveryResult(ok=False, error="missing_credentials")

        url = f"{self.base_url}/{self.api_version}/{phone_number_id}/messages"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error("WhatsApp send failed", extra={"context": {**context, "error": str(e)}})
            await alert_error("WhatsApp send failed", {**context, "error": str(e)})
            return DeliveryResult(ok=False, error=str(e) or e.__class__.__name__)

        if response.status_code >= 400:
            error = f"http_{response.status_code}"
            logger.error(
                "WhatsApp API rejected message",
                extra={"context": {**context, "status": response.status_code, "body": response.text[:500]}},
            )
            await alert_error("WhatsApp API rejected message", {**context, "status": response.status_code})
            return DeliveryResult(ok=False, error=error)

        try:
            data = response.json()
        except ValueError:
            data = {}
        messages = data.get("messages") or [{}]
        return DeliveryResult(ok=True, provider_message_id=messages[0].get("id"))

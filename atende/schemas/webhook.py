from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class WhatsAppText(BaseModel):
    body: Optional[str] = None


class WhatsAppMedia(BaseModel):
    id: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None


class WhatsAppReply(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class WhatsAppInteractive(BaseModel):
    type: Optional[str] = None
    button_reply: Optional[WhatsAppReply] = None
    list_reply: Optional[WhatsAppReply] = None


class WhatsAppButton(BaseModel):
    text: Optional[str] = None
    payload: Optional[str] = None


class WhatsAppMessage(BaseModel):
    from_number: str = Field(validation_alias=AliasChoices("from", "from_number"))
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[WhatsAppText] = None
    image: Optional[WhatsAppMedia] = None
    audio: Optional[WhatsAppMedia] = None
    video: Optional[WhatsAppMedia] = None
    document: Optional[WhatsAppMedia] = None
    sticker: Optional[WhatsAppMedia] = None
    interactive: Optional[WhatsAppInteractive] = None
    button: Optional[WhatsAppButton] = None


class WhatsAppProfile(BaseModel):
    name: Optional[str] = None


class WhatsAppContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[WhatsAppProfile] = None


class WhatsAppMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class WhatsAppValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[WhatsAppMetadata] = None
    contacts: list[WhatsAppContact] = []
    messages: list[WhatsAppMessage] = []
    statuses: list[dict[str, Any]] = []


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: WhatsAppValue = WhatsAppValue()


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = []


class WhatsAppWebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = []


class WebhookAck(BaseModel):
    status: str = "ok"
    received: int = 0

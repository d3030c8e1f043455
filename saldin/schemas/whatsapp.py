from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class WhatsAppText(BaseModel):
    body: str = ""


class WhatsAppMedia(BaseModel):
    id: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    voice: Optional[bool] = None


class WhatsAppMessage(BaseModel):
    id: str
    sender: str = Field(validation_alias=AliasChoices("from", "sender"))
    type: str = "text"
    timestamp: Optional[str] = None
    text: Optional[WhatsAppText] = None
    audio: Optional[WhatsAppMedia] = None
    image: Optional[WhatsAppMedia] = None


class WhatsAppValue(BaseModel):
    messaging_product: Optional[str] = None
    messages: list[WhatsAppMessage] = Field(default_factory=list)
    # Delivery/read receipts arrive here; they are acknowledged and ignored.
    statuses: list[dict] = Field(default_factory=list)


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: Optional[WhatsAppValue] = None


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = Field(default_factory=list)

    def iter_messages(self):
        """Yield every message in delivery order."""
        for entry in self.entry:
            for change in entry.changes:
                if change.value:
                    yield from change.value.messages


class WebhookResponse(BaseModel):
    success: bool
    message: str
    processed: int = 0

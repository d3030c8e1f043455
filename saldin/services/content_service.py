import base64
import time
from dataclasses import dataclass
from typing import Optional

from saldin.config import Settings
from saldin.logging_config import get_logger
from saldin.schemas.intent import FinancialIntent
from saldin.schemas.whatsapp import WhatsAppMessage
from saldin.services.intent_service import get_prompt, parse_intent
from saldin.services.llm import LLMError, LLMProvider
from saldin.services.whatsapp_service import MediaDownloadError, WhatsAppService

logger = get_logger("content_service")


class ContentExtractionError(Exception):
    """Base class for media that could not be turned into text or an intent."""

    media_kind = "media"


class TranscriptionError(ContentExtractionError):
    media_kind = "audio"


class ImageAnalysisError(ContentExtractionError):
    media_kind = "image"


class UnsupportedMessageError(ContentExtractionError):
    media_kind = "unsupported"


@dataclass
class ExtractedContent:
    """Either plain text for the command router or an intent read straight from an image."""

    source: str
    text: Optional[str] = None
    intent: Optional[FinancialIntent] = None


def transcribe_audio(llm: LLMProvider, audio_bytes: bytes, mime_type: Optional[str], language: str) -> str:
    if not audio_bytes:
        raise TranscriptionError("empty audio payload")

    logger.info(
        "Transcribing audio",
        extra={"context": {"size_kb": round(len(audio_bytes) / 1024, 2), "mime_type": mime_type}},
    )
    try:
        transcript = llm.transcribe_audio(
            audio_bytes=audio_bytes,
            filename="audio.ogg",
            mime_type=mime_type or "audio/ogg",
            language=language,
        )
    except (LLMError, ValueError) as e:
        raise TranscriptionError(str(e)) from e

    transcript = (transcript or "").strip()
    if not transcript:
        raise TranscriptionError("empty transcript")
    return transcript


def analyze_image(
    llm: LLMProvider,
    image_bytes: bytes,
    mime_type: Optional[str],
    *,
    model: Optional[str] = None,
) -> FinancialIntent:
    if not image_bytes:
        raise ImageAnalysisError("empty image payload")

    data_url = f"data:{mime_type or 'image/jpeg'};base64,{base64.b64encode(image_bytes).decode('ascii')}"
    messages = [
        {"role": "system", "content": get_prompt("image_extractor")},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": get_prompt("image_user_message")},
                {"type": "image_url", "image_url": {"url": data_url}},
            ],
        },
    ]
    try:
        response = llm.generate(messages, model=model, temperature=0.0, max_tokens=300, json_mode=True)
    except LLMError as e:
        raise ImageAnalysisError(str(e)) from e

    return parse_intent(response.content)


def extract_content(
    message: WhatsAppMessage,
    whatsapp: WhatsAppService,
    llm: LLMProvider,
    settings: Settings,
) -> ExtractedContent:
    """
    Turn an inbound message into text (text, audio) or a FinancialIntent (image).

    Raises a ContentExtractionError subclass naming the failed input kind.
    """
    if message.type == "text":
        body = message.text.body if message.text else ""
        return ExtractedContent(source="text", text=body.strip())

    if message.type == "audio":
        media = message.audio
        start = time.monotonic()
        try:
            audio_bytes = whatsapp.fetch_media(media.id if media else None)
        except MediaDownloadError as e:
            raise TranscriptionError(f"audio download failed: {e}") from e
        text = transcribe_audio(
            llm,
            audio_bytes,
            media.mime_type if media else None,
            settings.transcription_language,
        )
        logger.info(
            "Audio transcribed",
            extra={"context": {"elapsed_ms": round((time.monotonic() - start) * 1000, 2), "chars": len(text)}},
        )
        return ExtractedContent(source="audio", text=text)

    if message.type == "image":
        media = message.image
        try:
            image_bytes = whatsapp.fetch_media(media.id if media else None)
        except MediaDownloadError as e:
            raise ImageAnalysisError(f"image download failed: {e}") from e
        intent = analyze_image(
            llm,
            image_bytes,
            media.mime_type if media else None,
            model=settings.openai_vision_model,
        )
        logger.info("Image analyzed", extra={"context": {"kind": intent.kind}})
        return ExtractedContent(source="image", intent=intent)

    raise UnsupportedMessageError(f"unsupported message type: {message.type}")

import hashlib
import hmac
import json
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from saldin.config import Settings, get_settings
from saldin.database import get_db
from saldin.dependencies import get_dedup_cache, get_llm_provider, get_whatsapp_service
from saldin.logging_config import get_logger
from saldin.schemas.whatsapp import WebhookResponse, WhatsAppMessage, WhatsAppWebhookPayload
from saldin.services.alert_service import alert_critical, alert_error
from saldin.services.command_service import route_message
from saldin.services.content_service import ContentExtractionError, extract_content
from saldin.services.inbound_service import DedupCache, log_inbound_message, update_log
from saldin.services.llm import LLMProvider
from saldin.services.phone_service import find_verified_user_id
from saldin.services.reply_service import (
    MSG_AUDIO_FAILED,
    MSG_GENERIC_ERROR,
    MSG_IMAGE_FAILED,
    MSG_UNSUPPORTED_TYPE,
    MSG_UNVERIFIED,
)
from saldin.services.whatsapp_service import WhatsAppService

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])

SIGNATURE_HEADER = "X-Hub-Signature-256"

MEDIA_FAILURE_REPLIES = {
    "audio": MSG_AUDIO_FAILED,
    "image": MSG_IMAGE_FAILED,
}

# Outcomes worth an operator alert in addition to the user-facing reply.
ALERT_STATUSES = {"record_failed", "delete_failed", "edit_failed", "classification_failed"}


def verify_signature(raw_body: bytes, header_value: Optional[str], app_secret: str) -> bool:
    if not header_value or not header_value.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header_value.split("=", 1)[1])


@router.get("/webhook")
def verify_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
):
    """Meta subscription handshake: echo the challenge when the token matches."""
    expected = settings.meta_verify_token
    if (
        hub_mode == "subscribe"
        and expected
        and hub_verify_token
        and hmac.compare_digest(hub_verify_token, expected)
    ):
        logger.info("Webhook verified")
        return PlainTextResponse(hub_challenge or "", status_code=status.HTTP_200_OK)

    logger.warning("Webhook verification failed", extra={"context": {"mode": hub_mode}})
    return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)


def _reply(whatsapp: WhatsAppService, phone: str, body: str) -> None:
    if not whatsapp.send_reply(phone, body):
        logger.warning("Reply not delivered", extra={"context": {"phone": phone}})


def process_message(
    db: Session,
    settings: Settings,
    whatsapp: WhatsAppService,
    llm: LLMProvider,
    dedup: Optional[DedupCache],
    message: WhatsAppMessage,
) -> str:
    """
    Run one inbound message through dedup, identity, extraction and routing.

    Returns a short status for the delivery summary. Never raises: failures are
    recorded on the log row, alerted and answered with a generic reply.
    """
    log_id = None
    start = time.monotonic()
    context = {"message_id": message.id, "type": message.type}

    try:
        if dedup is not None and dedup.seen(message.id):
            logger.info("Duplicate message_id skipped (cache)", extra={"context": context})
            return "duplicate"

        log_id = log_inbound_message(db, message)
        if log_id is None:
            logger.info("Duplicate message_id skipped", extra={"context": context})
            return "duplicate"
        db.commit()

        whatsapp.mark_as_read(message.id)

        user_id = find_verified_user_id(db, message.sender)
        if user_id is None:
            update_log(db, log_id, processed=True, error_message="Unverified")
            db.commit()
            _reply(whatsapp, message.sender, MSG_UNVERIFIED)
            return "unverified"
        context["user_id"] = str(user_id)

        try:
            content = extract_content(message, whatsapp, llm, settings)
        except ContentExtractionError as e:
            logger.warning("Content extraction failed", extra={"context": {**context, "error": str(e)}})
            update_log(db, log_id, processed=True, error_message=f"{e.media_kind}: {e}")
            db.commit()
            _reply(whatsapp, message.sender, MEDIA_FAILURE_REPLIES.get(e.media_kind, MSG_UNSUPPORTED_TYPE))
            return f"{e.media_kind}_failed"

        outcome = route_message(db, settings, llm, user_id, content)
        update_log(
            db,
            log_id,
            processed=outcome.error is None,
            processing_result=outcome.processing_result(),
            error_message=outcome.error,
        )
        db.commit()

        if outcome.status in ALERT_STATUSES:
            alert_error(settings, f"WhatsApp message {outcome.status}", {**context, "error": outcome.error})

        _reply(whatsapp, message.sender, outcome.reply)
        logger.info(
            "Message processed",
            extra={
                "context": {
                    **context,
                    "status": outcome.status,
                    "elapsed_ms": round((time.monotonic() - start) * 1000, 2),
                }
            },
        )
        return outcome.status

    except Exception as e:
        logger.exception("Message processing failed", extra={"context": {**context, "error": str(e)}})
        db.rollback()

        if log_id is None and dedup is not None:
            dedup.forget(message.id)

        if log_id is not None:
            try:
                update_log(db, log_id, processed=False, error_message=str(e)[:1000])
                db.commit()
            except SQLAlchemyError as log_error:
                db.rollback()
                logger.error(f"Failed to record processing error: {log_error}")

        alert_critical(settings, "WhatsApp message processing failed", {**context, "error": str(e)})

        if log_id is not None:
            try:
                whatsapp.send_reply(message.sender, MSG_GENERIC_ERROR)
            except Exception as send_error:
                logger.error(f"Failed to send generic error reply: {send_error}")
        return "error"


def process_webhook_payload(
    db: Session,
    settings: Settings,
    whatsapp: WhatsAppService,
    llm: LLMProvider,
    dedup: Optional[DedupCache],
    payload: WhatsAppWebhookPayload,
) -> list[str]:
    """Process every message in a delivery; one failing message does not affect the rest."""
    return [
        process_message(db, settings, whatsapp, llm, dedup, message)
        for message in payload.iter_messages()
    ]


async def _read_payload(request: Request, settings: Settings) -> WhatsAppWebhookPayload | WebhookResponse:
    try:
        raw = await request.body()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during body read")
        return WebhookResponse(success=True, message="Client disconnected")

    if settings.meta_app_secret and not verify_signature(
        raw, request.headers.get(SIGNATURE_HEADER), settings.meta_app_secret
    ):
        logger.warning("Webhook signature mismatch")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    if not raw or not raw.strip():
        logger.info("Webhook probe with empty body")
        return WebhookResponse(success=True, message="Empty payload")

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return WebhookResponse(success=False, message="Invalid JSON payload")

    if not isinstance(data, dict):
        return WebhookResponse(success=False, message="Invalid payload format")

    try:
        return WhatsAppWebhookPayload.model_validate(data)
    except ValidationError as exc:
        logger.warning("Webhook payload ignored", extra={"context": {"error": str(exc)[:500]}})
        return WebhookResponse(success=True, message="Unrecognized payload ignored")


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
    llm: LLMProvider = Depends(get_llm_provider),
    dedup: Optional[DedupCache] = Depends(get_dedup_cache),
):
    """
    Inbound deliveries from the WhatsApp Cloud API.

    Always answers 200 (except a forged signature) so the provider does not retry;
    duplicate deliveries are absorbed by the message-id log.
    """
    parsed = await _read_payload(request, settings)
    if isinstance(parsed, WebhookResponse):
        return parsed

    results = await run_in_threadpool(process_webhook_payload, db, settings, whatsapp, llm, dedup, parsed)
    if not results:
        return WebhookResponse(success=True, message="No messages to process")

    return WebhookResponse(
        success="error" not in results,
        message=", ".join(results),
        processed=sum(1 for result in results if result != "duplicate"),
    )

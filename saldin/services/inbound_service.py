import uuid
from typing import Any, Optional
from uuid import UUID

import redis
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from saldin.logging_config import get_logger
from saldin.models import WhatsAppLog
from saldin.schemas.whatsapp import WhatsAppMessage

logger = get_logger("inbound_service")

DEDUP_KEY_PREFIX = "saldin:dedup"


class DedupCache:
    """
    Redis fast path in front of the whatsapp_logs unique constraint.

    The database insert stays authoritative; a Redis outage only disables the shortcut.
    """

    def __init__(self, client: "redis.Redis", ttl_seconds: int):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, message_id: str) -> str:
        return f"{DEDUP_KEY_PREFIX}:{message_id}"

    def seen(self, message_id: str) -> bool:
        try:
            was_set = self.client.set(self._key(message_id), "1", ex=self.ttl_seconds, nx=True)
        except redis.RedisError as e:
            logger.warning(f"Dedup redis unavailable, falling back to DB: {e}")
            return False
        return not was_set

    def forget(self, message_id: str) -> None:
        """Release the key so a provider retry is not blocked after a failed insert."""
        try:
            self.client.delete(self._key(message_id))
        except redis.RedisError as e:
            logger.warning(f"Dedup redis delete failed: {e}")


def build_dedup_cache(redis_url: Optional[str], ttl_seconds: int, socket_timeout_seconds: float) -> Optional[DedupCache]:
    if not redis_url:
        return None
    client = redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=socket_timeout_seconds,
        socket_connect_timeout=socket_timeout_seconds,
    )
    return DedupCache(client, ttl_seconds)


def log_inbound_message(db: Session, message: WhatsAppMessage) -> Optional[UUID]:
    """
    Insert the log row for a message id.

    Returns the new row id, or None when the id was already logged (duplicate delivery).
    """
    stmt = (
        insert(WhatsAppLog)
        .values(
            id=uuid.uuid4(),
            message_id=message.id,
            phone_number=message.sender,
            message_type=message.type,
            message_content=message.model_dump(mode="json", exclude_none=True),
            processed=False,
        )
        .on_conflict_do_nothing(index_elements=["message_id"])
        .returning(WhatsAppLog.id)
    )
    return db.execute(stmt).scalar_one_or_none()


def update_log(
    db: Session,
    log_id: UUID,
    *,
    processed: bool,
    processing_result: Optional[dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> None:
    values: dict[str, Any] = {"processed": processed, "error_message": error_message}
    if processing_result is not None:
        values["processing_result"] = processing_result
    db.query(WhatsAppLog).filter(WhatsAppLog.id == log_id).update(values, synchronize_session=False)

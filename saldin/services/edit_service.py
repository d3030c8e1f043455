from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from saldin.logging_config import get_logger
from saldin.models import EditSession
from saldin.schemas.intent import Direction
from saldin.services.edit_state_machine import (
    EditField,
    InvalidFieldValueError,
    draft_amount,
    first_field,
    invalid_prompt_for,
    next_field,
    parse_field_value,
    prompt_for,
)
from saldin.services.intent_service import normalize_for_matching
from saldin.services.reply_service import (
    MSG_EDIT_CANCELLED,
    format_edit_confirmation,
    format_edit_start,
    format_not_found,
)
from saldin.services.result import DB_ERROR, NO_SESSION, NOT_FOUND, Result
from saldin.services.transaction_service import (
    find_entry_by_code,
    find_entry_by_id,
    resolve_category,
    supersede_entry,
)

logger = get_logger("edit_service")

CANCEL_WORDS = {"cancelar", "cancela", "cancel", "sair", "parar"}


def is_cancel_command(text: str) -> bool:
    return normalize_for_matching(text).rstrip(".!") in CANCEL_WORDS


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def clear_session(db: Session, user_id: UUID) -> None:
    # Bulk delete: a session already removed by a concurrent request is not an error.
    db.query(EditSession).filter(EditSession.user_id == user_id).delete(synchronize_session=False)


def get_active_session(db: Session, user_id: UUID, now: Optional[datetime] = None) -> Optional[EditSession]:
    """Open edit session for the account. Expired sessions are removed and ignored."""
    now = now or datetime.now(timezone.utc)
    session = db.query(EditSession).filter(EditSession.user_id == user_id).first()
    if session is None:
        return None

    expires_at = _as_aware(session.expires_at)
    if expires_at is not None and expires_at <= now:
        logger.info(
            "Edit session expired",
            extra={"context": {"user_id": str(user_id), "transaction_code": session.transaction_code}},
        )
        clear_session(db, user_id)
        return None
    return session


def _save_session(
    db: Session,
    *,
    user_id: UUID,
    direction: str,
    entry_id: UUID,
    transaction_code: str,
    waiting_for: EditField,
    draft: dict,
    ttl_minutes: int,
) -> None:
    now = datetime.now(timezone.utc)
    values = {
        "entry_kind": direction,
        "entry_id": entry_id,
        "transaction_code": transaction_code,
        "waiting_for": waiting_for.value,
        "draft": draft,
        "updated_at": now,
        "expires_at": now + timedelta(minutes=ttl_minutes),
    }
    stmt = (
        insert(EditSession)
        .values(user_id=user_id, **values)
        .on_conflict_do_update(index_elements=["user_id"], set_=values)
    )
    db.execute(stmt)


def start_edit(db: Session, user_id: UUID, code: str, ttl_minutes: int) -> Result[str]:
    """Open (or replace) the edit session for a live entry and ask for the new amount."""
    code = (code or "").strip().upper()
    match = find_entry_by_code(db, user_id, code)
    if match is None:
        return Result.failure(f"No live entry with code {code}", NOT_FOUND)

    try:
        _save_session(
            db,
            user_id=user_id,
            direction=match.direction.value,
            entry_id=match.entry.id,
            transaction_code=code,
            waiting_for=first_field(),
            draft={},
            ttl_minutes=ttl_minutes,
        )
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Failed to open edit session",
            extra={"context": {"user_id": str(user_id), "transaction_code": code, "error": str(e)}},
        )
        return Result.failure(str(e), DB_ERROR)

    logger.info("Edit session started", extra={"context": {"user_id": str(user_id), "transaction_code": code}})
    return Result.success(format_edit_start(code, match.entry.description, match.entry.amount))


def process_edit_step(db: Session, user_id: UUID, text: str, ttl_minutes: int) -> Result[str]:
    """
    Feed one message into the account's open edit session.

    Success carries the reply for a consumed message, including re-prompts after
    invalid input. NO_SESSION means the message was not consumed.
    """
    session = get_active_session(db, user_id)
    if session is None:
        return Result.failure("No open edit session", NO_SESSION)

    code = session.transaction_code

    try:
        if is_cancel_command(text):
            clear_session(db, user_id)
            db.flush()
            logger.info("Edit session cancelled", extra={"context": {"user_id": str(user_id), "transaction_code": code}})
            return Result.success(MSG_EDIT_CANCELLED)

        field = EditField(session.waiting_for)
        try:
            value = parse_field_value(field, text)
        except InvalidFieldValueError:
            return Result.success(invalid_prompt_for(field))

        draft = dict(session.draft or {})
        draft[field.value] = value

        following = next_field(field)
        if following is not None:
            _save_session(
                db,
                user_id=user_id,
                direction=session.entry_kind,
                entry_id=session.entry_id,
                transaction_code=code,
                waiting_for=following,
                draft=draft,
                ttl_minutes=ttl_minutes,
            )
            db.flush()
            return Result.success(prompt_for(following))

        direction = Direction(session.entry_kind)
        match = find_entry_by_id(db, user_id, direction, session.entry_id)
        if match is None:
            clear_session(db, user_id)
            db.flush()
            return Result.success(format_not_found(code))

        category = resolve_category(db, user_id, draft[EditField.CATEGORY.value], direction)
        amount = draft_amount(draft)
        description = draft[EditField.DESCRIPTION.value]

        updated = supersede_entry(
            db,
            match,
            amount=amount,
            description=description,
            category_id=category.id if category else None,
        )
        if not updated.ok:
            return updated

        clear_session(db, user_id)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Edit step failed",
            extra={"context": {"user_id": str(user_id), "transaction_code": code, "error": str(e)}},
        )
        return Result.failure(str(e), DB_ERROR)

    logger.info("Transaction edited", extra={"context": {"user_id": str(user_id), "transaction_code": code}})
    return Result.success(
        format_edit_confirmation(code, amount, description, category.name if category else None)
    )

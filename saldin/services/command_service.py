import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from saldin.config import Settings
from saldin.logging_config import get_logger
from saldin.schemas.intent import (
    BalanceQueryIntent,
    FinancialIntent,
    IncompleteIntent,
    StatementQueryIntent,
)
from saldin.services.content_service import ExtractedContent
from saldin.services.edit_service import process_edit_step, start_edit
from saldin.services.intent_service import classify_text, normalize_for_matching
from saldin.services.llm import LLMError, LLMProvider
from saldin.services.reply_service import (
    MSG_CLASSIFICATION_FAILED,
    MSG_EDIT_FAILED,
    MSG_IMAGE_INCOMPLETE,
    MSG_INCOMPLETE,
    MSG_RECORD_FAILED,
    format_balance,
    format_confirmation,
    format_delete_confirmation,
    format_not_found,
    format_statement,
)
from saldin.services.result import NO_SESSION
from saldin.services.transaction_service import (
    delete_entry_by_code,
    get_balance,
    get_last_entries,
    record_transaction,
)

logger = get_logger("command_service")

_CODE = r"txn-\d{8}-[a-z0-9]{6}"
DELETE_PATTERN = re.compile(rf"\b(?:excluir|exclui|apagar|apaga|deletar|deleta|remover|remove)\b.*?\b({_CODE})\b")
EDIT_PATTERN = re.compile(rf"\b(?:editar|edita|alterar|altera|corrigir)\b.*?\b({_CODE})\b")
BALANCE_PATTERN = re.compile(r"^/?saldo[.!?]*$")
STATEMENT_PATTERN = re.compile(r"^/?extrato[.!?]*$")


class CommandKind(str, Enum):
    DELETE = "delete"
    EDIT = "edit"
    BALANCE = "balance"
    STATEMENT = "statement"
    NONE = "none"


@dataclass
class Command:
    kind: CommandKind
    transaction_code: Optional[str] = None


@dataclass
class RouteOutcome:
    """Reply to send plus what gets written to the inbound log row."""

    reply: str
    status: str
    intent: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    def processing_result(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status}
        if self.intent is not None:
            result["intent"] = self.intent
        return result


def detect_command(text: str) -> Command:
    normalized = normalize_for_matching(text)
    if not normalized:
        return Command(CommandKind.NONE)

    match = DELETE_PATTERN.search(normalized)
    if match:
        return Command(CommandKind.DELETE, match.group(1).upper())

    match = EDIT_PATTERN.search(normalized)
    if match:
        return Command(CommandKind.EDIT, match.group(1).upper())

    if BALANCE_PATTERN.match(normalized):
        return Command(CommandKind.BALANCE)
    if STATEMENT_PATTERN.match(normalized):
        return Command(CommandKind.STATEMENT)
    return Command(CommandKind.NONE)


def _balance_outcome(db: Session, user_id: UUID) -> RouteOutcome:
    return RouteOutcome(format_balance(get_balance(db, user_id)), "balance")


def _statement_outcome(db: Session, user_id: UUID, limit: int) -> RouteOutcome:
    items = get_last_entries(db, user_id, limit)
    return RouteOutcome(format_statement(items, limit), "statement")


def execute_intent(
    db: Session,
    settings: Settings,
    user_id: UUID,
    intent: FinancialIntent,
    *,
    source: str = "text",
) -> RouteOutcome:
    intent_payload = intent.model_dump(mode="json")

    if isinstance(intent, IncompleteIntent):
        reply = MSG_IMAGE_INCOMPLETE if source == "image" else MSG_INCOMPLETE
        return RouteOutcome(reply, "incomplete", intent_payload)
    if isinstance(intent, BalanceQueryIntent):
        outcome = _balance_outcome(db, user_id)
        outcome.intent = intent_payload
        return outcome
    if isinstance(intent, StatementQueryIntent):
        outcome = _statement_outcome(db, user_id, settings.statement_limit)
        outcome.intent = intent_payload
        return outcome

    recorded = record_transaction(db, user_id, intent)
    if not recorded.ok:
        return RouteOutcome(MSG_RECORD_FAILED, "record_failed", intent_payload, error=recorded.error)
    return RouteOutcome(format_confirmation(recorded.value), "recorded", intent_payload)


def route_message(
    db: Session,
    settings: Settings,
    llm: LLMProvider,
    user_id: UUID,
    content: ExtractedContent,
) -> RouteOutcome:
    """
    Decide what an extracted message means for a verified account.

    Images already carry an intent. Text (typed or transcribed) is checked, in order,
    against an open edit session, delete, edit, balance and statement commands, and
    only then classified. Starting a new edit replaces any open session instead of
    being consumed as a field value.
    """
    if content.intent is not None:
        return execute_intent(db, settings, user_id, content.intent, source=content.source)

    text = (content.text or "").strip()
    if not text:
        return RouteOutcome(MSG_INCOMPLETE, "empty")

    command = detect_command(text)

    if command.kind != CommandKind.EDIT:
        step = process_edit_step(db, user_id, text, settings.edit_session_ttl_minutes)
        if step.ok:
            return RouteOutcome(step.value, "edit_step")
        if step.error_code != NO_SESSION:
            return RouteOutcome(MSG_EDIT_FAILED, "edit_failed", error=step.error)

    if command.kind == CommandKind.DELETE:
        deleted = delete_entry_by_code(db, user_id, command.transaction_code)
        if deleted.is_not_found:
            return RouteOutcome(format_not_found(command.transaction_code), "not_found")
        if not deleted.ok:
            return RouteOutcome(MSG_RECORD_FAILED, "delete_failed", error=deleted.error)
        entry = deleted.value.entry
        return RouteOutcome(
            format_delete_confirmation(command.transaction_code, entry.description, entry.amount),
            "deleted",
        )

    if command.kind == CommandKind.EDIT:
        started = start_edit(db, user_id, command.transaction_code, settings.edit_session_ttl_minutes)
        if started.is_not_found:
            return RouteOutcome(format_not_found(command.transaction_code), "not_found")
        if not started.ok:
            return RouteOutcome(MSG_EDIT_FAILED, "edit_failed", error=started.error)
        return RouteOutcome(started.value, "edit_started")

    if command.kind == CommandKind.BALANCE:
        return _balance_outcome(db, user_id)
    if command.kind == CommandKind.STATEMENT:
        return _statement_outcome(db, user_id, settings.statement_limit)

    try:
        intent = classify_text(llm, text, model=settings.openai_chat_model)
    except LLMError as e:
        logger.warning(
            "Text classification failed",
            extra={"context": {"user_id": str(user_id), "error": str(e)}},
        )
        return RouteOutcome(MSG_CLASSIFICATION_FAILED, "classification_failed", error=str(e))

    return execute_intent(db, settings, user_id, intent, source=content.source)

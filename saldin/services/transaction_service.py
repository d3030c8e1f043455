import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, NamedTuple, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from saldin.logging_config import get_logger
from saldin.models import BankAccount, Category, Expense, Income, Profile
from saldin.schemas.intent import Direction, TransactionIntent
from saldin.schemas.ledger import Confirmation, LedgerItem
from saldin.services.intent_service import normalize_for_matching
from saldin.services.money import CENTS
from saldin.services.result import DB_ERROR, NOT_FOUND, Result

logger = get_logger("transaction_service")

LOCAL_TZ = ZoneInfo("America/Sao_Paulo")

WHATSAPP_SOURCE = "whatsapp"
STATUS_CONFIRMED = "confirmed"
STATUS_DELETED = "deleted"

# No 0/O or 1/I/L so codes survive being read aloud or retyped.
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_SUFFIX_LENGTH = 6

FALLBACK_CATEGORY_PATTERN = "%outros%"
BANK_SETTLED_METHODS = {"pix", "debito", "transferencia", "dinheiro", "boleto"}
CREDIT_METHODS = {"credito", "cartao"}

LEDGER_MODELS = {
    Direction.EXPENSE: Expense,
    Direction.INCOME: Income,
}


class LedgerMatch(NamedTuple):
    direction: Direction
    entry: Any


def generate_transaction_code(now: Optional[datetime] = None) -> str:
    """TXN-YYYYMMDD-XXXXXX using the local calendar date."""
    now = now or datetime.now(LOCAL_TZ)
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"TXN-{now.strftime('%Y%m%d')}-{suffix}"


def resolve_category(
    db: Session,
    user_id: UUID,
    name: Optional[str],
    direction: Direction,
) -> Optional[Category]:
    """Case-insensitive name match within the account, falling back to its generic category."""
    base = db.query(Category).filter(Category.user_id == user_id, Category.type == direction.value)

    wanted = (name or "").strip()
    if wanted:
        category = base.filter(func.lower(Category.name) == wanted.lower()).first()
        if category:
            return category

    return base.filter(Category.name.ilike(FALLBACK_CATEGORY_PATTERN)).order_by(Category.created_at.asc()).first()


def is_bank_settled(payment_method: Optional[str]) -> bool:
    tokens = normalize_for_matching(payment_method).split()
    return any(token in BANK_SETTLED_METHODS for token in tokens)


def is_credit_method(payment_method: Optional[str]) -> bool:
    tokens = normalize_for_matching(payment_method).split()
    return any(token in CREDIT_METHODS for token in tokens)


def resolve_settlement_account(
    db: Session,
    user_id: UUID,
    payment_method: Optional[str],
    direction: Direction,
) -> Optional[BankAccount]:
    """
    Pick the bank account an entry settles against.

    Only bank-settled methods (pix, debit, transfer, cash, boleto) get an account:
    the profile default for the direction, then the other default, then the first
    active account ordered by type. Credit and unknown methods get none.
    """
    if not is_bank_settled(payment_method):
        return None

    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    candidate_ids = []
    if profile:
        if direction == Direction.INCOME:
            candidate_ids = [profile.wa_default_income_account_id, profile.wa_default_expense_account_id]
        else:
            candidate_ids = [profile.wa_default_expense_account_id, profile.wa_default_income_account_id]

    for account_id in candidate_ids:
        if not account_id:
            continue
        account = (
            db.query(BankAccount)
            .filter(BankAccount.id == account_id, BankAccount.user_id == user_id, BankAccount.active.is_(True))
            .first()
        )
        if account:
            return account

    return (
        db.query(BankAccount)
        .filter(BankAccount.user_id == user_id, BankAccount.active.is_(True))
        .order_by(BankAccount.account_type.asc())
        .first()
    )


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0").quantize(CENTS)
    return Decimal(str(value)).quantize(CENTS)


def _manual_balance(db: Session, user_id: UUID) -> Decimal:
    totals = {}
    for direction, model in LEDGER_MODELS.items():
        totals[direction] = (
            db.query(func.coalesce(func.sum(model.amount), 0))
            .filter(model.user_id == user_id, model.status != STATUS_DELETED, model.deleted_at.is_(None))
            .scalar()
        )
    return _to_decimal(totals[Direction.INCOME]) - _to_decimal(totals[Direction.EXPENSE])


def get_balance(db: Session, user_id: UUID) -> Decimal:
    """Liquid balance from the database function, or a manual sum when it is unavailable."""
    try:
        with db.begin_nested():
            value = db.execute(
                text("SELECT calculate_liquid_balance_v2(:user_id)"),
                {"user_id": str(user_id)},
            ).scalar()
        return _to_decimal(value)
    except SQLAlchemyError as e:
        logger.warning(
            "Balance function unavailable, falling back to manual sum",
            extra={"context": {"user_id": str(user_id), "error": str(e)}},
        )

    return _manual_balance(db, user_id)


def _account_label(account: Optional[BankAccount], payment_method: Optional[str]) -> str:
    if account is not None:
        return account.name
    if is_credit_method(payment_method):
        return "Cartão de Crédito"
    return "Conta"


def record_transaction(db: Session, user_id: UUID, intent: TransactionIntent) -> Result[Confirmation]:
    """
    Insert a confirmed entry for the account and compute the balance that includes it.

    Nothing is committed here; the caller owns the transaction.
    """
    category = resolve_category(db, user_id, intent.suggested_category, intent.direction)
    account = resolve_settlement_account(db, user_id, intent.payment_method, intent.direction)

    now = datetime.now(LOCAL_TZ)
    code = generate_transaction_code(now)
    fields = {
        "id": uuid.uuid4(),
        "user_id": user_id,
        "amount": intent.amount,
        "description": intent.description,
        "category_id": category.id if category else None,
        "bank_account_id": account.id if account else None,
        "source": WHATSAPP_SOURCE,
        "status": STATUS_CONFIRMED,
        "transaction_code": code,
        "date": now.date(),
        "created_at": now,
        "updated_at": now,
    }
    if intent.direction == Direction.EXPENSE:
        entry = Expense(confirmed_at=now, **fields)
    else:
        entry = Income(type="variable", **fields)

    try:
        db.add(entry)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Failed to record transaction",
            extra={"context": {"user_id": str(user_id), "direction": intent.direction.value, "error": str(e)}},
        )
        return Result.failure(str(e), DB_ERROR)

    balance = get_balance(db, user_id)

    logger.info(
        "Transaction recorded",
        extra={
            "context": {
                "user_id": str(user_id),
                "direction": intent.direction.value,
                "transaction_code": code,
                "category_id": str(category.id) if category else None,
                "bank_account_id": str(account.id) if account else None,
            }
        },
    )

    return Result.success(
        Confirmation(
            entry_id=entry.id,
            transaction_code=code,
            direction=intent.direction,
            amount=intent.amount,
            description=intent.description,
            entry_date=now.date(),
            category_name=category.name if category else None,
            account_label=_account_label(account, intent.payment_method),
            new_balance=balance,
        )
    )


def _sort_key(item: LedgerItem) -> datetime:
    value = item.created_at
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_last_entries(db: Session, user_id: UUID, limit: int) -> list[LedgerItem]:
    """Most recent non-deleted incomes and expenses merged by creation time."""
    items: list[LedgerItem] = []
    for direction, model in LEDGER_MODELS.items():
        rows = (
            db.query(model)
            .filter(model.user_id == user_id, model.status != STATUS_DELETED, model.deleted_at.is_(None))
            .order_by(model.created_at.desc())
            .limit(limit)
            .all()
        )
        for row in rows:
            items.append(
                LedgerItem(
                    direction=direction,
                    amount=row.amount,
                    description=row.description,
                    entry_date=row.date,
                    created_at=row.created_at,
                    transaction_code=row.transaction_code,
                )
            )

    items.sort(key=_sort_key, reverse=True)
    return items[:limit]


def find_entry_by_code(db: Session, user_id: UUID, code: str) -> Optional[LedgerMatch]:
    """Live entry owned by the account with this code, or None."""
    code = (code or "").strip().upper()
    for direction, model in LEDGER_MODELS.items():
        entry = (
            db.query(model)
            .filter(
                model.user_id == user_id,
                model.transaction_code == code,
                model.status != STATUS_DELETED,
                model.deleted_at.is_(None),
            )
            .first()
        )
        if entry is not None:
            return LedgerMatch(direction, entry)
    return None


def find_entry_by_id(db: Session, user_id: UUID, direction: Direction, entry_id: UUID) -> Optional[LedgerMatch]:
    model = LEDGER_MODELS[direction]
    entry = (
        db.query(model)
        .filter(
            model.id == entry_id,
            model.user_id == user_id,
            model.status != STATUS_DELETED,
            model.deleted_at.is_(None),
        )
        .first()
    )
    return LedgerMatch(direction, entry) if entry is not None else None


def delete_entry_by_code(db: Session, user_id: UUID, code: str) -> Result[LedgerMatch]:
    """Soft-delete entries created over WhatsApp, hard-delete anything else."""
    match = find_entry_by_code(db, user_id, code)
    if match is None:
        return Result.failure(f"No live entry with code {code}", NOT_FOUND)

    entry = match.entry
    now = datetime.now(timezone.utc)
    try:
        if entry.source == WHATSAPP_SOURCE:
            entry.status = STATUS_DELETED
            entry.deleted_at = now
            entry.updated_at = now
        else:
            db.delete(entry)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Failed to delete transaction",
            extra={"context": {"user_id": str(user_id), "transaction_code": code, "error": str(e)}},
        )
        return Result.failure(str(e), DB_ERROR)

    logger.info(
        "Transaction deleted",
        extra={
            "context": {
                "user_id": str(user_id),
                "transaction_code": code,
                "direction": match.direction.value,
                "soft": entry.source == WHATSAPP_SOURCE,
            }
        },
    )
    return Result.success(match)


def supersede_entry(
    db: Session,
    match: LedgerMatch,
    *,
    amount: Decimal,
    description: str,
    category_id: Optional[UUID],
) -> Result[LedgerMatch]:
    """Overwrite amount, description and category of an existing entry."""
    entry = match.entry
    try:
        entry.amount = amount
        entry.description = description
        entry.category_id = category_id
        entry.updated_at = datetime.now(timezone.utc)
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "Failed to update transaction",
            extra={"context": {"entry_id": str(entry.id), "error": str(e)}},
        )
        return Result.failure(str(e), DB_ERROR)

    return Result.success(match)

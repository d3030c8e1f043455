from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from saldin.services.money import CENTS


class Direction(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class TransactionIntent(BaseModel):
    kind: Literal["transaction"] = "transaction"
    direction: Direction
    amount: Decimal
    description: str
    suggested_category: Optional[str] = None
    payment_method: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def _positive_amount(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value <= 0:
            raise ValueError("amount must be a positive value")
        value = value.quantize(CENTS)
        if value <= 0:
            raise ValueError("amount rounds to zero")
        return value

    @field_validator("description")
    @classmethod
    def _non_empty_description(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("description is required")
        return value


class BalanceQueryIntent(BaseModel):
    kind: Literal["balance_query"] = "balance_query"


class StatementQueryIntent(BaseModel):
    kind: Literal["statement_query"] = "statement_query"


class IncompleteIntent(BaseModel):
    kind: Literal["incomplete"] = "incomplete"
    reason: Optional[str] = None


FinancialIntent = Annotated[
    Union[TransactionIntent, BalanceQueryIntent, StatementQueryIntent, IncompleteIntent],
    Field(discriminator="kind"),
]


class RawIntentPayload(BaseModel):
    """JSON shape returned by the classification and vision prompts."""

    tipo: Optional[str] = None
    valor: Optional[Any] = None
    descricao: Optional[str] = None
    categoria_sugerida: Optional[str] = None
    metodo_pagamento: Optional[str] = None
    status: Optional[str] = None

from decimal import Decimal
from enum import Enum
from typing import Optional

from saldin.services.money import parse_positive_amount
from saldin.services.reply_service import (
    MSG_EDIT_ASK_CATEGORY,
    MSG_EDIT_ASK_DESCRIPTION,
    MSG_EDIT_INVALID_AMOUNT,
    MSG_EDIT_INVALID_CATEGORY,
    MSG_EDIT_INVALID_DESCRIPTION,
)

MAX_DESCRIPTION_LENGTH = 200
MAX_CATEGORY_LENGTH = 60


class EditField(str, Enum):
    AMOUNT = "amount"
    DESCRIPTION = "description"
    CATEGORY = "category"


EDIT_FIELD_ORDER = [EditField.AMOUNT, EditField.DESCRIPTION, EditField.CATEGORY]

FIELD_PROMPTS = {
    EditField.DESCRIPTION: MSG_EDIT_ASK_DESCRIPTION,
    EditField.CATEGORY: MSG_EDIT_ASK_CATEGORY,
}

INVALID_FIELD_PROMPTS = {
    EditField.AMOUNT: MSG_EDIT_INVALID_AMOUNT,
    EditField.DESCRIPTION: MSG_EDIT_INVALID_DESCRIPTION,
    EditField.CATEGORY: MSG_EDIT_INVALID_CATEGORY,
}


class InvalidFieldValueError(Exception):
    def __init__(self, field: EditField, raw: str):
        self.field = field
        self.raw = raw
        super().__init__(f"Invalid value for {field.value}: {raw!r}")


def first_field() -> EditField:
    return EDIT_FIELD_ORDER[0]


def next_field(current: EditField) -> Optional[EditField]:
    """Field asked after `current`, or None once the category has been collected."""
    index = EDIT_FIELD_ORDER.index(current)
    if index + 1 >= len(EDIT_FIELD_ORDER):
        return None
    return EDIT_FIELD_ORDER[index + 1]


def prompt_for(field: EditField) -> str:
    return FIELD_PROMPTS[field]


def invalid_prompt_for(field: EditField) -> str:
    return INVALID_FIELD_PROMPTS[field]


def parse_field_value(field: EditField, raw: str) -> str:
    """
    Validate a reply for the field being collected.

    Returns the value in its draft (JSON-safe) form. Raises InvalidFieldValueError.
    """
    value = (raw or "").strip()

    if field == EditField.AMOUNT:
        amount = parse_positive_amount(value)
        if amount is None:
            raise InvalidFieldValueError(field, raw)
        return str(amount)

    limit = MAX_DESCRIPTION_LENGTH if field == EditField.DESCRIPTION else MAX_CATEGORY_LENGTH
    if not value or len(value) > limit:
        raise InvalidFieldValueError(field, raw)
    return value


def draft_amount(draft: dict) -> Decimal:
    return Decimal(draft[EditField.AMOUNT.value])

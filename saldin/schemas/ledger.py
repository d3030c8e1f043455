from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from saldin.schemas.intent import Direction


class Confirmation(BaseModel):
    entry_id: UUID
    transaction_code: str
    direction: Direction
    amount: Decimal
    description: str
    entry_date: date
    category_name: Optional[str] = None
    account_label: str
    new_balance: Decimal


class LedgerItem(BaseModel):
    direction: Direction
    amount: Decimal
    description: str
    entry_date: Optional[date] = None
    created_at: Optional[datetime] = None
    transaction_code: Optional[str] = None

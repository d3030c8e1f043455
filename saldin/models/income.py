import uuid

from sqlalchemy import Column, Date, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from saldin.database import Base


class Income(Base):
    __tablename__ = "incomes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(Text, nullable=False, default="variable")  # fixed, variable
    category_id = Column(UUID(as_uuid=True), ForeignKey("categories.id"))
    bank_account_id = Column(UUID(as_uuid=True), ForeignKey("bank_accounts.id"))
    source = Column(Text, nullable=False, default="manual")
    status = Column(Text, nullable=False, default="confirmed")  # confirmed, deleted
    transaction_code = Column(Text, unique=True)
    date = Column(Date, nullable=False, server_default=func.current_date())
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    deleted_at = Column(TIMESTAMP(timezone=True))

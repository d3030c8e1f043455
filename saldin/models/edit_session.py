from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from saldin.database import Base


class EditSession(Base):
    __tablename__ = "whatsapp_edit_sessions"

    # One open session per account; upserts on user_id are last-write-wins.
    user_id = Column(UUID(as_uuid=True), primary_key=True)
    entry_kind = Column(Text, nullable=False)  # expense, income
    entry_id = Column(UUID(as_uuid=True), nullable=False)
    transaction_code = Column(Text, nullable=False)
    waiting_for = Column(Text, nullable=False)  # amount, description, category
    draft = Column(JSONB, nullable=False, default=dict)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)

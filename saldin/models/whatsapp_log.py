import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from saldin.database import Base


class WhatsAppLog(Base):
    __tablename__ = "whatsapp_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(Text, nullable=False, unique=True)
    phone_number = Column(Text, nullable=False)
    message_type = Column(Text, nullable=False)  # text, audio, image, other
    message_content = Column(JSONB, nullable=False, default=dict)
    processed = Column(Boolean, nullable=False, default=False)
    processing_result = Column(JSONB)
    error_message = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

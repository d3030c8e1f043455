from saldin.schemas.intent import (
    BalanceQueryIntent,
    Direction,
    FinancialIntent,
    IncompleteIntent,
    StatementQueryIntent,
    TransactionIntent,
)
from saldin.schemas.whatsapp import WebhookResponse, WhatsAppMessage, WhatsAppWebhookPayload

__all__ = [
    "BalanceQueryIntent",
    "Direction",
    "FinancialIntent",
    "IncompleteIntent",
    "StatementQueryIntent",
    "TransactionIntent",
    "WebhookResponse",
    "WhatsAppMessage",
    "WhatsAppWebhookPayload",
]

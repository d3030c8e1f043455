from saldin.models.bank_account import BankAccount, Profile
from saldin.models.category import Category
from saldin.models.edit_session import EditSession
from saldin.models.expense import Expense
from saldin.models.income import Income
from saldin.models.whatsapp_log import WhatsAppLog
from saldin.models.whatsapp_user import WhatsAppUser

__all__ = [
    "WhatsAppLog",
    "WhatsAppUser",
    "Expense",
    "Income",
    "Category",
    "BankAccount",
    "Profile",
    "EditSession",
]

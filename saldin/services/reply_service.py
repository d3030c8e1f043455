import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from saldin.schemas.intent import Direction
from saldin.schemas.ledger import Confirmation, LedgerItem
from saldin.services.money import format_brl
from saldin.services.transaction_service import LOCAL_TZ

MSG_UNVERIFIED = (
    "❌ Olá! Parece que seu número não está identificado. "
    "Vincule seu WhatsApp no app Saldin (Configurações > WhatsApp)."
)
MSG_AUDIO_FAILED = "❌ Erro ao transcrever seu áudio. Tente falar mais claro ou enviar por texto."
MSG_IMAGE_FAILED = (
    "❌ Erro ao analisar a imagem. Tente enviar uma foto mais nítida do comprovante ou descreva o gasto por texto."
)
MSG_IMAGE_INCOMPLETE = (
    "🤔 Não consegui identificar o valor no comprovante. "
    "Envie uma foto mais nítida ou escreva, por exemplo: 'Gastei 50 no mercado'."
)
MSG_INCOMPLETE = "🤔 Não entendi. Pode detalhar? (Ex: 'Gastei 50 no almoço' ou 'Recebi 1200 de salário')"
MSG_CLASSIFICATION_FAILED = "⚠️ Não consegui entender sua mensagem agora. Tente novamente em instantes."
MSG_RECORD_FAILED = "❌ Não consegui registrar sua transação. Tente novamente mais tarde."
MSG_GENERIC_ERROR = "⚠️ Ocorreu um erro ao processar sua mensagem. Tente novamente mais tarde."
MSG_UNSUPPORTED_TYPE = "📎 Por enquanto entendo apenas mensagens de texto, áudio ou foto de comprovante."
MSG_CODE_NOT_FOUND = "🔎 Não encontrei nenhuma transação com o código {code}."
MSG_EMPTY_STATEMENT = "📄 Nenhuma transação recente."

MSG_EDIT_ASK_AMOUNT = (
    "✏️ Editando {code}: {description} ({amount}).\n\n"
    "Qual o novo valor? Envie 'cancelar' para desistir."
)
MSG_EDIT_ASK_DESCRIPTION = "Qual a nova descrição?"
MSG_EDIT_ASK_CATEGORY = "Qual a nova categoria?"
MSG_EDIT_INVALID_AMOUNT = "Valor inválido. Envie apenas o número, por exemplo: 45,90"
MSG_EDIT_INVALID_DESCRIPTION = "A descrição não pode ficar vazia. Qual a nova descrição?"
MSG_EDIT_INVALID_CATEGORY = "Informe o nome da categoria, por exemplo: Alimentação"
MSG_EDIT_CANCELLED = "Edição cancelada. Nada foi alterado."
MSG_EDIT_FAILED = "❌ Não consegui salvar a edição. Tente novamente mais tarde."

_MARKDOWN_CHARS = re.compile(r"[*_~`]")

DIRECTION_LABELS = {
    Direction.EXPENSE: "Despesa",
    Direction.INCOME: "Receita",
}
DIRECTION_ICONS = {
    Direction.EXPENSE: "🔴",
    Direction.INCOME: "🟢",
}


def strip_markdown(text: str) -> str:
    """WhatsApp does not reliably render emphasis markers, so they are dropped."""
    return _MARKDOWN_CHARS.sub("", text or "")


def _local_date(value: Optional[datetime]) -> Optional[date]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(LOCAL_TZ).date()


def format_date_br(value: date | datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y")


def format_confirmation(confirmation: Confirmation) -> str:
    label = DIRECTION_LABELS[confirmation.direction]
    code = confirmation.transaction_code
    return (
        f"✅ {label} registrada!\n\n"
        f"📝 {confirmation.description}\n"
        f"💰 {format_brl(confirmation.amount)}\n"
        f"📅 {format_date_br(confirmation.entry_date)}\n"
        f"🏷️ {confirmation.category_name or 'Outros'}\n"
        f"🏦 {confirmation.account_label}\n\n"
        f"💵 Saldo atual: {format_brl(confirmation.new_balance)}\n\n"
        f"🔖 Código: {code}\n"
        f"Para excluir: excluir {code}\n"
        f"Para editar: editar {code}"
    )


def format_balance(balance: Decimal) -> str:
    return f"💰 Seu saldo atual é: {format_brl(balance)}"


def format_statement(items: Iterable[LedgerItem], limit: int) -> str:
    items = list(items)
    if not items:
        return MSG_EMPTY_STATEMENT

    lines = [f"📄 Extrato (últimas {limit}):", ""]
    for item in items:
        when = item.entry_date or _local_date(item.created_at)
        lines.append(f"{DIRECTION_ICONS[item.direction]} {item.description}")
        lines.append(f"   {format_brl(item.amount)} em {format_date_br(when)}")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_not_found(code: str) -> str:
    return MSG_CODE_NOT_FOUND.format(code=code)


def format_delete_confirmation(code: str, description: str, amount: Decimal) -> str:
    return f"🗑️ Transação {code} excluída: {description} ({format_brl(amount)})."


def format_edit_start(code: str, description: str, amount: Decimal) -> str:
    return MSG_EDIT_ASK_AMOUNT.format(code=code, description=description, amount=format_brl(amount))


def format_edit_confirmation(
    code: str,
    amount: Decimal,
    description: str,
    category_name: Optional[str],
) -> str:
    return (
        f"✅ Transação {code} atualizada!\n\n"
        f"📝 {description}\n"
        f"💰 {format_brl(amount)}\n"
        f"🏷️ {category_name or 'Outros'}"
    )

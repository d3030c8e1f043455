from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock, patch
from uuid import uuid4

import pytest

from saldin.schemas.intent import (
    BalanceQueryIntent,
    Direction,
    IncompleteIntent,
    TransactionIntent,
)
from saldin.services.command_service import CommandKind, detect_command, route_message
from saldin.services.content_service import ExtractedContent
from saldin.services.llm import LLMError
from saldin.services.reply_service import (
    MSG_CLASSIFICATION_FAILED,
    MSG_IMAGE_INCOMPLETE,
    MSG_INCOMPLETE,
    MSG_RECORD_FAILED,
)
from saldin.services.result import DB_ERROR, NO_SESSION, NOT_FOUND, Result
from saldin.services.transaction_service import LedgerMatch

USER_ID = uuid4()
CODE = "TXN-20250110-ABC234"
NO_EDIT = Result.failure("No open edit session", NO_SESSION)


class TestDetectCommand:
    @pytest.mark.parametrize(
        "text",
        ["excluir TXN-20250110-ABC234", "Apagar txn-20250110-abc234", "por favor *remover* TXN-20250110-ABC234"],
    )
    def test_delete(self, text):
        command = detect_command(text)

        assert command.kind == CommandKind.DELETE
        assert command.transaction_code == CODE

    def test_edit(self):
        command = detect_command("editar TXN-20250110-ABC234")

        assert command.kind == CommandKind.EDIT
        assert command.transaction_code == CODE

    @pytest.mark.parametrize("text", ["saldo", "Saldo", "/saldo", " SALDO? "])
    def test_balance(self, text):
        assert detect_command(text).kind == CommandKind.BALANCE

    @pytest.mark.parametrize("text", ["extrato", "/extrato", "Extrato!"])
    def test_statement(self, text):
        assert detect_command(text).kind == CommandKind.STATEMENT

    @pytest.mark.parametrize("text", ["qual meu saldo hoje", "excluir", "gastei 50 no mercado", ""])
    def test_free_text(self, text):
        assert detect_command(text).kind == CommandKind.NONE


def _text(body, source="text"):
    return ExtractedContent(source=source, text=body)


@patch("saldin.services.command_service.process_edit_step", return_value=NO_EDIT)
class TestRouteMessage:
    @patch("saldin.services.command_service.get_balance", return_value=Decimal("1500"))
    @patch("saldin.services.command_service.classify_text")
    def test_saldo_skips_classification(self, mock_classify, _balance, _edit, settings):
        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("saldo"))

        assert outcome.reply == "💰 Seu saldo atual é: R$ 1.500,00"
        assert outcome.status == "balance"
        mock_classify.assert_not_called()

    @patch("saldin.services.command_service.get_last_entries", return_value=[])
    def test_extrato_uses_configured_limit(self, mock_entries, _edit, settings):
        db = Mock()
        outcome = route_message(db, settings, Mock(), USER_ID, _text("extrato"))

        assert outcome.status == "statement"
        mock_entries.assert_called_once_with(db, USER_ID, 5)

    @patch("saldin.services.command_service.delete_entry_by_code")
    def test_delete(self, mock_delete, _edit, settings):
        entry = SimpleNamespace(description="Mercado", amount=Decimal("45.90"))
        mock_delete.return_value = Result.success(LedgerMatch(Direction.EXPENSE, entry))

        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("excluir TXN-20250110-ABC234"))

        assert outcome.status == "deleted"
        assert CODE in outcome.reply
        assert mock_delete.call_args.args[2] == CODE

    @patch("saldin.services.command_service.delete_entry_by_code")
    def test_delete_foreign_code_is_not_found(self, mock_delete, _edit, settings):
        mock_delete.return_value = Result.failure("missing", NOT_FOUND)

        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("excluir TXN-20250110-ABC234"))

        assert outcome.status == "not_found"
        assert CODE in outcome.reply

    @patch("saldin.services.command_service.start_edit")
    def test_edit_command_is_not_fed_to_open_session(self, mock_start, mock_edit, settings):
        mock_start.return_value = Result.success("Qual o novo valor?")

        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("editar TXN-20250110-ABC234"))

        assert outcome.status == "edit_started"
        mock_edit.assert_not_called()
        assert mock_start.call_args.args[2] == CODE
        assert mock_start.call_args.args[3] == 10

    @patch("saldin.services.command_service.classify_text")
    def test_open_session_consumes_message(self, mock_classify, mock_edit, settings):
        mock_edit.return_value = Result.success("Qual a nova descrição?")

        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("saldo"))

        assert outcome.status == "edit_step"
        assert outcome.reply == "Qual a nova descrição?"
        mock_classify.assert_not_called()

    def test_edit_storage_failure(self, mock_edit, settings):
        mock_edit.return_value = Result.failure("db down", DB_ERROR)

        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("30"))

        assert outcome.status == "edit_failed"
        assert outcome.error == "db down"

    @patch("saldin.services.command_service.record_transaction")
    @patch("saldin.services.command_service.classify_text")
    def test_free_text_is_classified_and_recorded(self, mock_classify, mock_record, _edit, settings):
        intent = TransactionIntent(direction=Direction.EXPENSE, amount=Decimal("50"), description="Almoço")
        mock_classify.return_value = intent
        confirmation = Mock()
        mock_record.return_value = Result.success(confirmation)

        with patch("saldin.services.command_service.format_confirmation", return_value="ok") as mock_format:
            outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("gastei 50 no almoço"))

        assert outcome.status == "recorded"
        assert outcome.reply == "ok"
        assert outcome.intent["direction"] == "expense"
        assert outcome.intent["amount"] == "50.00"
        mock_format.assert_called_once_with(confirmation)

    @patch("saldin.services.command_service.record_transaction")
    @patch("saldin.services.command_service.classify_text")
    def test_record_failure(self, mock_classify, mock_record, _edit, settings):
        mock_classify.return_value = TransactionIntent(
            direction=Direction.INCOME, amount=Decimal("10"), description="Venda"
        )
        mock_record.return_value = Result.failure("insert failed", DB_ERROR)

        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("recebi 10"))

        assert outcome.reply == MSG_RECORD_FAILED
        assert outcome.error == "insert failed"

    @patch("saldin.services.command_service.classify_text", side_effect=LLMError("timeout"))
    def test_classification_failure(self, _classify, _edit, settings):
        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("gastei 50"))

        assert outcome.reply == MSG_CLASSIFICATION_FAILED
        assert outcome.status == "classification_failed"

    @patch("saldin.services.command_service.classify_text", return_value=IncompleteIntent(reason="invalid_amount"))
    def test_incomplete_text(self, _classify, _edit, settings):
        outcome = route_message(Mock(), settings, Mock(), USER_ID, _text("gastei no mercado"))

        assert outcome.reply == MSG_INCOMPLETE
        assert outcome.error is None

    @patch("saldin.services.command_service.classify_text")
    def test_image_intent_skips_commands(self, mock_classify, mock_edit, settings):
        content = ExtractedContent(source="image", intent=IncompleteIntent(reason="marked_incomplete"))

        outcome = route_message(Mock(), settings, Mock(), USER_ID, content)

        assert outcome.reply == MSG_IMAGE_INCOMPLETE
        mock_edit.assert_not_called()
        mock_classify.assert_not_called()

    @patch("saldin.services.command_service.get_balance", return_value=Decimal("0"))
    def test_image_balance_query(self, _balance, _edit, settings):
        content = ExtractedContent(source="image", intent=BalanceQueryIntent())

        outcome = route_message(Mock(), settings, Mock(), USER_ID, content)

        assert outcome.status == "balance"
        assert outcome.intent == {"kind": "balance_query"}

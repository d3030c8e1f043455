from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock, patch
from uuid import uuid4

from saldin.schemas.intent import Direction
from saldin.services.edit_service import (
    get_active_session,
    is_cancel_command,
    process_edit_step,
    start_edit,
)
from saldin.services.edit_state_machine import EditField
from saldin.services.reply_service import (
    MSG_EDIT_ASK_CATEGORY,
    MSG_EDIT_ASK_DESCRIPTION,
    MSG_EDIT_CANCELLED,
    MSG_EDIT_INVALID_AMOUNT,
)
from saldin.services.result import NO_SESSION, Result
from saldin.services.transaction_service import LedgerMatch

USER_ID = uuid4()
CODE = "TXN-20250110-ABC234"


def _session(waiting_for, draft=None, **overrides):
    fields = {
        "user_id": USER_ID,
        "entry_kind": "expense",
        "entry_id": uuid4(),
        "transaction_code": CODE,
        "waiting_for": waiting_for.value,
        "draft": draft or {},
        "expires_at": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestGetActiveSession:
    def test_returns_open_session(self):
        session = _session(EditField.AMOUNT)
        db = Mock()
        db.query.return_value.filter.return_value.first.return_value = session

        assert get_active_session(db, USER_ID) is session

    def test_expired_session_is_removed(self):
        session = _session(EditField.AMOUNT, expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        db = Mock()
        db.query.return_value.filter.return_value.first.return_value = session

        assert get_active_session(db, USER_ID) is None
        db.query.return_value.filter.return_value.delete.assert_called_once()

    def test_naive_expiry_is_treated_as_utc(self):
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).replace(tzinfo=None)
        db = Mock()
        db.query.return_value.filter.return_value.first.return_value = _session(EditField.AMOUNT, expires_at=past)

        assert get_active_session(db, USER_ID) is None


class TestStartEdit:
    @patch("saldin.services.edit_service._save_session")
    @patch("saldin.services.edit_service.find_entry_by_code")
    def test_opens_session_at_amount(self, mock_find, mock_save):
        entry = SimpleNamespace(id=uuid4(), description="Mercado", amount=Decimal("45.90"))
        mock_find.return_value = LedgerMatch(Direction.EXPENSE, entry)
        db = Mock()

        result = start_edit(db, USER_ID, "txn-20250110-abc234", 10)

        assert result.ok is True
        assert CODE in result.value
        assert "R$ 45,90" in result.value
        kwargs = mock_save.call_args.kwargs
        assert kwargs["waiting_for"] == EditField.AMOUNT
        assert kwargs["draft"] == {}
        assert kwargs["transaction_code"] == CODE
        assert kwargs["entry_id"] == entry.id
        assert kwargs["ttl_minutes"] == 10

    @patch("saldin.services.edit_service._save_session")
    @patch("saldin.services.edit_service.find_entry_by_code", return_value=None)
    def test_unknown_code_changes_nothing(self, _find, mock_save):
        result = start_edit(Mock(), USER_ID, CODE, 10)

        assert result.is_not_found
        mock_save.assert_not_called()


class TestProcessEditStep:
    @patch("saldin.services.edit_service.get_active_session", return_value=None)
    def test_without_session_message_is_not_consumed(self, _get):
        result = process_edit_step(Mock(), USER_ID, "50", 10)

        assert result.ok is False
        assert result.error_code == NO_SESSION

    @patch("saldin.services.edit_service.get_active_session")
    def test_cancel_clears_session(self, mock_get):
        mock_get.return_value = _session(EditField.DESCRIPTION)
        db = Mock()

        result = process_edit_step(db, USER_ID, "Cancelar", 10)

        assert result.value == MSG_EDIT_CANCELLED
        db.query.return_value.filter.return_value.delete.assert_called_once()

    @patch("saldin.services.edit_service._save_session")
    @patch("saldin.services.edit_service.get_active_session")
    def test_valid_amount_advances_to_description(self, mock_get, mock_save):
        mock_get.return_value = _session(EditField.AMOUNT)

        result = process_edit_step(Mock(), USER_ID, "12,50", 10)

        assert result.value == MSG_EDIT_ASK_DESCRIPTION
        kwargs = mock_save.call_args.kwargs
        assert kwargs["waiting_for"] == EditField.DESCRIPTION
        assert kwargs["draft"] == {"amount": "12.50"}

    @patch("saldin.services.edit_service._save_session")
    @patch("saldin.services.edit_service.get_active_session")
    def test_description_advances_to_category(self, mock_get, mock_save):
        mock_get.return_value = _session(EditField.DESCRIPTION, {"amount": "12.50"})

        result = process_edit_step(Mock(), USER_ID, "Padaria", 10)

        assert result.value == MSG_EDIT_ASK_CATEGORY
        assert mock_save.call_args.kwargs["draft"] == {"amount": "12.50", "description": "Padaria"}

    @patch("saldin.services.edit_service._save_session")
    @patch("saldin.services.edit_service.get_active_session")
    def test_invalid_amount_reprompts_same_field(self, mock_get, mock_save):
        mock_get.return_value = _session(EditField.AMOUNT)

        result = process_edit_step(Mock(), USER_ID, "muito", 10)

        assert result.ok is True
        assert result.value == MSG_EDIT_INVALID_AMOUNT
        mock_save.assert_not_called()

    @patch("saldin.services.edit_service.supersede_entry")
    @patch("saldin.services.edit_service.resolve_category")
    @patch("saldin.services.edit_service.find_entry_by_id")
    @patch("saldin.services.edit_service.get_active_session")
    def test_category_step_overwrites_entry(self, mock_get, mock_find, mock_category, mock_supersede):
        session = _session(EditField.CATEGORY, {"amount": "12.50", "description": "Padaria"})
        mock_get.return_value = session
        entry = SimpleNamespace(id=session.entry_id)
        match = LedgerMatch(Direction.EXPENSE, entry)
        mock_find.return_value = match
        category = SimpleNamespace(id=uuid4(), name="Alimentação")
        mock_category.return_value = category
        mock_supersede.return_value = Result.success(match)
        db = Mock()

        result = process_edit_step(db, USER_ID, "alimentação", 10)

        assert result.ok is True
        assert CODE in result.value
        assert "Padaria" in result.value
        assert "R$ 12,50" in result.value
        mock_category.assert_called_once_with(db, USER_ID, "alimentação", Direction.EXPENSE)
        mock_supersede.assert_called_once_with(
            db, match, amount=Decimal("12.50"), description="Padaria", category_id=category.id
        )
        db.query.return_value.filter.return_value.delete.assert_called_once()

    @patch("saldin.services.edit_service.supersede_entry")
    @patch("saldin.services.edit_service.find_entry_by_id", return_value=None)
    @patch("saldin.services.edit_service.get_active_session")
    def test_entry_deleted_mid_session(self, mock_get, _find, mock_supersede):
        mock_get.return_value = _session(EditField.CATEGORY, {"amount": "12.50", "description": "Padaria"})

        result = process_edit_step(Mock(), USER_ID, "Outros", 10)

        assert result.ok is True
        assert "Não encontrei" in result.value
        mock_supersede.assert_not_called()

    @patch("saldin.services.edit_service._save_session")
    @patch("saldin.services.edit_service.get_active_session")
    def test_same_inputs_produce_same_replies(self, mock_get, mock_save):
        replies = []
        for _ in range(2):
            mock_get.return_value = _session(EditField.AMOUNT)
            replies.append(process_edit_step(Mock(), USER_ID, "30", 10).value)

        assert replies[0] == replies[1] == MSG_EDIT_ASK_DESCRIPTION


class TestIsCancelCommand:
    def test_variants(self):
        assert is_cancel_command("cancelar")
        assert is_cancel_command("  CANCELA! ")
        assert not is_cancel_command("cancelar TXN-20250110-ABC234 depois")

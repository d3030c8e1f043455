from decimal import Decimal
from unittest.mock import Mock

import pytest

from saldin.schemas.intent import IncompleteIntent, TransactionIntent
from saldin.schemas.whatsapp import WhatsAppMessage
from saldin.services.content_service import (
    ImageAnalysisError,
    TranscriptionError,
    UnsupportedMessageError,
    extract_content,
    transcribe_audio,
)
from saldin.services.llm import LLMError, LLMResponse
from saldin.services.whatsapp_service import MediaDownloadError


def _message(**fields):
    return WhatsAppMessage.model_validate({"id": "wamid.1", "from": "5547999998888", **fields})


class TestTextMessages:
    def test_text_is_trimmed(self, settings):
        content = extract_content(_message(type="text", text={"body": "  Gastei 50  "}), Mock(), Mock(), settings)

        assert content.source == "text"
        assert content.text == "Gastei 50"
        assert content.intent is None


class TestAudioMessages:
    def test_transcribes_downloaded_audio(self, settings):
        whatsapp = Mock()
        whatsapp.fetch_media.return_value = b"ogg-bytes"
        llm = Mock()
        llm.transcribe_audio.return_value = " gastei trinta reais no uber "

        message = _message(type="audio", audio={"id": "media-1", "mime_type": "audio/ogg; codecs=opus"})
        content = extract_content(message, whatsapp, llm, settings)

        assert content.source == "audio"
        assert content.text == "gastei trinta reais no uber"
        whatsapp.fetch_media.assert_called_once_with("media-1")
        assert llm.transcribe_audio.call_args.kwargs["language"] == "pt"

    def test_empty_audio_fails_before_calling_service(self):
        llm = Mock()

        with pytest.raises(TranscriptionError):
            transcribe_audio(llm, b"", "audio/ogg", "pt")
        llm.transcribe_audio.assert_not_called()

    def test_download_failure_is_audio_specific(self, settings):
        whatsapp = Mock()
        whatsapp.fetch_media.side_effect = MediaDownloadError("media lookup returned 404")

        with pytest.raises(TranscriptionError) as exc_info:
            extract_content(_message(type="audio", audio={"id": "media-1"}), whatsapp, Mock(), settings)
        assert exc_info.value.media_kind == "audio"

    def test_service_error_maps_to_transcription_error(self, settings):
        whatsapp = Mock()
        whatsapp.fetch_media.return_value = b"ogg-bytes"
        llm = Mock()
        llm.transcribe_audio.side_effect = LLMError("503")

        with pytest.raises(TranscriptionError):
            extract_content(_message(type="audio", audio={"id": "media-1"}), whatsapp, llm, settings)

    def test_blank_transcript_fails(self, settings):
        whatsapp = Mock()
        whatsapp.fetch_media.return_value = b"ogg-bytes"
        llm = Mock()
        llm.transcribe_audio.return_value = "   "

        with pytest.raises(TranscriptionError):
            extract_content(_message(type="audio", audio={"id": "media-1"}), whatsapp, llm, settings)


class TestImageMessages:
    def test_receipt_becomes_intent(self, settings):
        whatsapp = Mock()
        whatsapp.fetch_media.return_value = b"jpeg-bytes"
        llm = Mock()
        llm.generate.return_value = LLMResponse(
            content='{"tipo": "gasto", "valor": "89,90", "descricao": "Farmácia", "status": "ok"}',
            model="gpt-4o-mini",
        )

        message = _message(type="image", image={"id": "media-2", "mime_type": "image/jpeg"})
        content = extract_content(message, whatsapp, llm, settings)

        assert content.source == "image"
        assert isinstance(content.intent, TransactionIntent)
        assert content.intent.amount == Decimal("89.90")
        user_parts = llm.generate.call_args.args[0][-1]["content"]
        assert user_parts[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")

    def test_unreadable_receipt_is_incomplete(self, settings):
        whatsapp = Mock()
        whatsapp.fetch_media.return_value = b"jpeg-bytes"
        llm = Mock()
        llm.generate.return_value = LLMResponse(content='{"status": "incompleto"}', model="gpt-4o-mini")

        content = extract_content(_message(type="image", image={"id": "media-2"}), whatsapp, llm, settings)

        assert isinstance(content.intent, IncompleteIntent)

    def test_download_failure_is_image_specific(self, settings):
        whatsapp = Mock()
        whatsapp.fetch_media.side_effect = MediaDownloadError("timeout")

        with pytest.raises(ImageAnalysisError) as exc_info:
            extract_content(_message(type="image", image={"id": "media-2"}), whatsapp, Mock(), settings)
        assert exc_info.value.media_kind == "image"


class TestUnsupportedMessages:
    def test_sticker_is_rejected(self, settings):
        with pytest.raises(UnsupportedMessageError):
            extract_content(_message(type="sticker"), Mock(), Mock(), settings)

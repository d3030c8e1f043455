from typing import Optional

import httpx

from saldin.logging_config import get_logger
from saldin.services.phone_service import phone_variants
from saldin.services.reply_service import strip_markdown

logger = get_logger("whatsapp_service")


class MediaDownloadError(Exception):
    """Media reference could not be resolved or downloaded."""


class WhatsAppService:
    """Client for the WhatsApp Cloud API (send, mark read, media retrieval)."""

    def __init__(
        self,
        access_token: str | None,
        phone_number_id: str | None,
        *,
        graph_url: str = "https://graph.facebook.com",
        api_version: str = "v19.0",
        timeout_seconds: float = 30.0,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.base_url = f"{graph_url.rstrip('/')}/{api_version}"
        self.timeout_seconds = timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _post_message(self, payload: dict) -> Optional[dict]:
        """POST to the messages endpoint. Returns the response body, or None on failure."""
        if not self.is_configured:
            logger.error("WhatsApp credentials missing (META_ACCESS_TOKEN / META_PHONE_NUMBER_ID)")
            return None

        url = f"{self.base_url}/{self.phone_number_id}/messages"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    url,
                    headers={**self._auth_headers(), "Content-Type": "application/json"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp API request failed: {e}")
            return None

        if response.status_code >= 300:
            logger.error(
                "WhatsApp API error",
                extra={"context": {"status": response.status_code, "body": response.text[:500]}},
            )
            return None

        try:
            return response.json()
        except ValueError:
            return {}

    def send_text(self, to: str, body: str) -> bool:
        """Send a plain text message to one number."""
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"body": strip_markdown(body)},
        }
        sent = self._post_message(payload) is not None
        if sent:
            logger.info("WhatsApp sent", extra={"context": {"to": to}})
        else:
            logger.warning("WhatsApp send failed", extra={"context": {"to": to}})
        return sent

    def send_reply(self, phone: str, body: str) -> bool:
        """
        Send to the sender and, for Brazilian mobiles, to the alternate 8/9-digit form.

        Each target is attempted independently. Returns True if any delivery succeeded.
        """
        targets = phone_variants(phone) or [phone]
        delivered = False
        for target in targets:
            if self.send_text(target, body):
                delivered = True
        return delivered

    def mark_as_read(self, message_id: str) -> bool:
        """Best-effort read receipt; never raises."""
        if not message_id:
            return False
        payload = {"messaging_product": "whatsapp", "status": "read", "message_id": message_id}
        return self._post_message(payload) is not None

    def resolve_media_url(self, media_id: str) -> str:
        """Exchange a media id for its short-lived download URL."""
        if not media_id:
            raise MediaDownloadError("missing media id")
        if not self.access_token:
            raise MediaDownloadError("WhatsApp access token not configured")

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.get(f"{self.base_url}/{media_id}", headers=self._auth_headers())
        except httpx.HTTPError as e:
            raise MediaDownloadError(f"media lookup failed: {e}") from e

        if response.status_code != 200:
            raise MediaDownloadError(f"media lookup returned {response.status_code}")

        try:
            url = response.json().get("url")
        except ValueError as e:
            raise MediaDownloadError("media lookup returned invalid JSON") from e
        if not url:
            raise MediaDownloadError("media lookup returned no url")
        return url

    def download_media(self, url: str) -> bytes:
        try:
            with httpx.Client(timeout=self.timeout_seconds, follow_redirects=True) as client:
                response = client.get(url, headers=self._auth_headers())
        except httpx.HTTPError as e:
            raise MediaDownloadError(f"media download failed: {e}") from e

        if response.status_code != 200:
            raise MediaDownloadError(f"media download returned {response.status_code}")
        if not response.content:
            raise MediaDownloadError("media download returned an empty body")
        return response.content

    def fetch_media(self, media_id: str) -> bytes:
        url = self.resolve_media_url(media_id)
        content = self.download_media(url)
        logger.info(
            "Media downloaded",
            extra={"context": {"media_id": media_id, "size_kb": round(len(content) / 1024, 2)}},
        )
        return content

"""
Artifact delivery - hand the rendered short (or a failure notice) to a chat.

This module defines the protocol the orchestrator delivers through, so the
orchestration layer does not depend on a particular messaging backend.

Implementations:
- NoOpDelivery: For testing and when no chat is configured
- TelegramDelivery: Telegram Bot API over httpx

Delivery is fire-and-forget: implementations handle their own errors, log
them, and report success as a bool. A failed notification never changes
the outcome of the job it reports on.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"

# Bot API upload limit for videos
MAX_UPLOAD_BYTES = 50 * 1024 * 1024

DEFAULT_CAPTION = "🎬 Your viral short is ready! #shorts"


@runtime_checkable
class ArtifactDelivery(Protocol):
    """Protocol for delivering job results."""

    def send_artifact(self, reference: str, correlation_label: str) -> bool:
        """
        Deliver a finished artifact.

        Args:
            reference: URL or local path of the artifact
            correlation_label: Token identifying the job

        Returns:
            True if delivered
        """
        ...

    def send_failure_notice(self, correlation_label: str, reason: str) -> bool:
        """Report a failed job. Returns True if delivered."""
        ...


class NoOpDelivery:
    """No-op implementation of ArtifactDelivery."""

    def send_artifact(self, reference: str, correlation_label: str) -> bool:
        logger.info(f"Artifact for {correlation_label}: {reference}")
        return True

    def send_failure_notice(self, correlation_label: str, reason: str) -> bool:
        logger.info(f"Failure for {correlation_label}: {reason}")
        return True


class TelegramDelivery:
    """Delivers artifacts to a Telegram chat through a bot."""

    def __init__(
        self,
        token: str,
        chat_id: str,
        base_url: str = TELEGRAM_API_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.chat_id = chat_id
        self._client = httpx.Client(
            base_url=f"{base_url}/bot{token}",
            timeout=timeout,
            transport=transport,
        )

    def send_artifact(self, reference: str, correlation_label: str) -> bool:
        caption = f"{DEFAULT_CAPTION}\n<code>{correlation_label}</code>"
        path = Path(reference)
        if "://" not in reference and path.is_file():
            return self._send_file(path, caption)
        return self._call("sendVideo", json={
            "chat_id": self.chat_id,
            "video": reference,
            "caption": caption,
            "parse_mode": "HTML",
        })

    def send_failure_notice(self, correlation_label: str, reason: str) -> bool:
        return self.send_message(f"❌ Job <code>{correlation_label}</code> failed: {reason}")

    def send_message(self, text: str) -> bool:
        return self._call("sendMessage", json={
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
        })

    def _send_file(self, path: Path, caption: str) -> bool:
        size = path.stat().st_size
        if size > MAX_UPLOAD_BYTES:
            logger.error(f"{path} is {size / (1024 * 1024):.2f} MB, Telegram limit is 50MB for videos")
            return False
        with open(path, "rb") as f:
            return self._call(
                "sendVideo",
                data={"chat_id": self.chat_id, "caption": caption, "parse_mode": "HTML"},
                files={"video": (path.name, f, "video/mp4")},
            )

    def _call(self, method: str, **kwargs) -> bool:
        try:
            response = self._client.post(f"/{method}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Telegram {method} failed: {e}")
            return False

        if not response.is_success:
            logger.error(f"Telegram {method} returned HTTP {response.status_code}: {response.text}")
            return False
        return True

    def close(self) -> None:
        self._client.close()

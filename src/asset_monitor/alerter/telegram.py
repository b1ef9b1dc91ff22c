"""Telegram Bot API delivery."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096
DEFAULT_TIMEOUT = 10.0


@runtime_checkable
class Notifier(Protocol):
    """Delivers report text somewhere people read it."""

    async def send(self, content: str | Sequence[str]) -> bool: ...

    async def aclose(self) -> None: ...


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks of at most ``limit`` characters, on line breaks when possible."""
    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class TelegramNotifier:
    """Sends messages to every configured chat via ``sendMessage``.

    Delivery failures are logged and reported through the return value of
    :meth:`send`; they never raise.
    """

    def __init__(
        self,
        bot_token: str,
        chat_ids: Sequence[str],
        *,
        base_url: str = TELEGRAM_API_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the notifier.

        Args:
            bot_token: Bot API token.
            chat_ids: Chats that receive every message.
            base_url: Bot API root.
            client: Optional shared httpx client.
            timeout: Request timeout when the notifier owns its client.
        """
        if not chat_ids:
            raise ValueError("TelegramNotifier needs at least one chat id")
        self._endpoint = f"{base_url.rstrip('/')}/bot{bot_token}/sendMessage"
        # httpx logs every request URL at INFO, and this URL embeds the token.
        httpx_logger = logging.getLogger("httpx")
        if httpx_logger.getEffectiveLevel() < logging.WARNING:
            httpx_logger.setLevel(logging.WARNING)
        self._chat_ids = tuple(chat_ids)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _send_one(self, chat_id: str, text: str) -> bool:
        try:
            response = await self._client.post(
                self._endpoint,
                json={"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Telegram rejected message for chat %s: HTTP %d", chat_id, e.response.status_code
            )
            return False
        except httpx.HTTPError as e:
            logger.warning("Telegram delivery to chat %s failed: %s", chat_id, e)
            return False
        return True

    async def send(self, content: str | Sequence[str]) -> bool:
        """Send content to every chat.

        Args:
            content: One message, or several joined with a blank line.

        Returns:
            True if every chunk reached every chat.
        """
        text = content if isinstance(content, str) else "\n\n".join(content)
        if not text.strip():
            return True

        delivered = True
        for chat_id in self._chat_ids:
            for chunk in split_message(text):
                if not await self._send_one(chat_id, chunk):
                    delivered = False
                    break
        if delivered:
            logger.debug("Delivered report to %d Telegram chat(s)", len(self._chat_ids))
        return delivered

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

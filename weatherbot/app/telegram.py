import asyncio
import logging
from typing import List

import httpx
import pydantic

from .dispatcher import Dispatcher
from .schemas import Reply, Update

logger = logging.getLogger(__name__)

TELEGRAM_BASE_URL = "https://api.telegram.org"


class TelegramError(Exception):
    """Raised when the Bot API call fails or answers with ok=false."""


class TelegramClient:
    """
    Minimal Bot API client: long-polling getUpdates and sendMessage.
    https://core.telegram.org/bots/api
    """

    def __init__(
        self,
        token: str | None,
        base_url: str = TELEGRAM_BASE_URL,
        poll_timeout: int = 60,
    ):
        if not token:
            raise ValueError("empty bot API token")
        self.poll_timeout = poll_timeout
        self.api_url = f"{base_url.rstrip('/')}/bot{token}"
        # The HTTP read timeout must outlive the long-poll window.
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=poll_timeout + 10.0))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: dict) -> object:
        try:
            resp = await self._client.post(f"{self.api_url}/{method}", json=payload)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TelegramError(f"{method} failed: {exc}") from exc
        if not isinstance(data, dict):
            raise TelegramError(
                f"{method} failed: HTTP {resp.status_code} body is {type(data).__name__}, not an object"
            )
        if not data.get("ok"):
            raise TelegramError(
                f"{method} failed: HTTP {resp.status_code} {data.get('description', '')}"
            )
        return data.get("result")

    async def get_updates(self, offset: int = 0) -> List[Update]:
        result = await self._call(
            "getUpdates",
            {"offset": offset, "timeout": self.poll_timeout, "allowed_updates": ["message"]},
        )
        if result is None:
            return []
        if not isinstance(result, list):
            raise TelegramError(f"getUpdates returned {type(result).__name__}, not a list")
        try:
            return [Update.model_validate(item) for item in result]
        except pydantic.ValidationError as exc:
            raise TelegramError(f"getUpdates returned unexpected payload: {exc}") from exc

    async def send_message(self, reply: Reply) -> None:
        payload = {"chat_id": reply.chat_id, "text": reply.text}
        if reply.reply_to_message_id is not None:
            payload["reply_parameters"] = {
                "message_id": reply.reply_to_message_id,
                "allow_sending_without_reply": True,
            }
        await self._call("sendMessage", payload)


async def telegram_worker(
    bot: TelegramClient,
    dispatcher: Dispatcher,
    retry_seconds: float = 5.0,
) -> None:
    """
    Single perpetual listener: poll updates and dispatch them one at a time.
    """
    offset = 0
    logger.info("Telegram listener started.")
    while True:
        try:
            updates = await bot.get_updates(offset)
        except asyncio.CancelledError:
            break
        except TelegramError as exc:
            logger.warning("Telegram poll failed: %s", exc)
            try:
                await asyncio.sleep(retry_seconds)
            except asyncio.CancelledError:
                break
            continue

        for update in updates:
            offset = max(offset, update.update_id + 1)
            if update.message is None:
                continue
            reply = await dispatcher.handle(update.message)
            if reply is None:
                continue
            try:
                await bot.send_message(reply)
            except TelegramError as exc:
                logger.warning("Failed to reply to chat %s: %s", reply.chat_id, exc)
    logger.info("Telegram listener stopped.")

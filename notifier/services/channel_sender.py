"""Channel send capability - deliver one text to one destination of one channel."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from aiogram import Bot
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramNotFound,
    TelegramRetryAfter,
    TelegramUnauthorizedError,
)
from aiogram.utils.token import TokenValidationError

from notifier.errors import ChannelSendError

logger = logging.getLogger(__name__)

PARSE_MODES = ("HTML", "Markdown", "MarkdownV2")


@dataclass(frozen=True)
class SendReceipt:
    message_id: Optional[int] = None
    chat_id: Optional[str] = None


class ChannelSender(Protocol):
    """
    The opaque send capability the worker fans out to.

    Implementations return a receipt on success and raise ChannelSendError on
    failure; they must bound their own call time.
    """

    async def send(
        self,
        token: str,
        destination: str | int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
    ) -> SendReceipt: ...

    async def close(self) -> None: ...


def normalize_chat_id(destination: str | int) -> str | int:
    """Numeric chat ids go to Telegram as ints; @usernames stay strings."""
    if isinstance(destination, int):
        return destination
    value = str(destination).strip()
    try:
        return int(value)
    except ValueError:
        return value


class TelegramChannelSender:
    """Send through the Telegram Bot API, one cached aiogram Bot per token."""

    def __init__(self, *, timeout_seconds: int = 12):
        self.timeout_seconds = int(timeout_seconds)
        self._bots: dict[str, Bot] = {}
        self._lock = asyncio.Lock()

    async def _bot_for(self, token: str) -> Bot:
        async with self._lock:
            bot = self._bots.get(token)
            if bot is None:
                try:
                    bot = Bot(token=token)
                except TokenValidationError as e:
                    raise ChannelSendError(f"invalid bot token: {e}", retryable=False) from e
                self._bots[token] = bot
            return bot

    async def send(
        self,
        token: str,
        destination: str | int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
    ) -> SendReceipt:
        bot = await self._bot_for(token)
        if parse_mode not in PARSE_MODES:
            parse_mode = None

        try:
            msg = await bot.send_message(
                chat_id=normalize_chat_id(destination),
                text=text,
                parse_mode=parse_mode,
                request_timeout=self.timeout_seconds,
            )
        except TelegramRetryAfter as e:
            raise ChannelSendError(f"Rate limited. Retry after {e.retry_after} seconds", retry_after=int(e.retry_after)) from e
        except TelegramUnauthorizedError as e:
            # Revoked or rotated token: drop the cached bot and its session.
            await self._evict(token, bot)
            raise ChannelSendError(f"Non-retriable error: {e.message}", retryable=False) from e
        except (TelegramForbiddenError, TelegramNotFound) as e:
            raise ChannelSendError(f"Non-retriable error: {e.message}", retryable=False) from e
        except TelegramBadRequest as e:
            raise ChannelSendError(f"Bad request: {e.message}", retryable=False) from e
        except TelegramNetworkError as e:
            raise ChannelSendError(f"Network error: {e.message}") from e
        except TelegramAPIError as e:
            raise ChannelSendError(f"Telegram API error: {e.message}") from e

        return SendReceipt(
            message_id=int(getattr(msg, "message_id", 0) or 0) or None,
            chat_id=str(getattr(getattr(msg, "chat", None), "id", "") or destination),
        )

    async def _evict(self, token: str, bot: Bot) -> None:
        async with self._lock:
            if self._bots.get(token) is bot:
                del self._bots[token]
        try:
            await bot.session.close()
        except Exception as e:
            logger.warning(f"Failed to close bot session: {e}")

    async def close(self) -> None:
        """Close every cached bot session."""
        async with self._lock:
            bots = list(self._bots.values())
            self._bots.clear()
        for bot in bots:
            try:
                await bot.session.close()
            except Exception as e:
                logger.warning(f"Failed to close bot session: {e}")

import logging
from typing import List
from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

class NotificationService:
    """Sends operator alerts (terminal job failures) through a Telegram bot"""

    def __init__(self, bot: Bot, operator_ids: List[int]):
        self.bot = bot
        self.operator_ids = list(operator_ids)

    @classmethod
    def from_token(cls, token: str, operator_ids: List[int]) -> "NotificationService":
        bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
        return cls(bot, operator_ids)

    async def notify_operators(self, text: str) -> int:
        """Send to every operator. Returns how many messages went out."""
        sent = 0
        for operator_id in self.operator_ids:
            try:
                await self.bot.send_message(operator_id, text)
                sent += 1
            except Exception as e:
                logging.warning(f"Failed to notify operator {operator_id}: {e}")
        return sent

    async def close(self):
        await self.bot.session.close()

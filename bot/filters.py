"""
Filters for bot handlers
"""
from typing import Union

from aiogram.filters import Filter
from aiogram.types import CallbackQuery, Message

from config import settings


class IsAdmin(Filter):
    """Allow only events coming from configured admin chats."""

    async def __call__(self, event: Union[Message, CallbackQuery]) -> bool:
        user_id = event.from_user.id if event.from_user else None
        if user_id is None:
            return False
        return user_id in settings.ADMIN_CHAT_IDS

"""Telegram bot for managing tracked pages"""
from .filters import IsAdmin
from .handlers import apply_page_action, router

__all__ = ['IsAdmin', 'apply_page_action', 'router']

"""Operator notification channels."""
from .telegram import TelegramNotifier

__all__ = ["TelegramNotifier"]

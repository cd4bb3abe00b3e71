"""Telegram-fed news backend with Expo push fan-out."""

__version__ = "1.0.0"

"""Telegram bot that re-serves TikTok videos and slideshows."""

__version__ = "0.1.0"

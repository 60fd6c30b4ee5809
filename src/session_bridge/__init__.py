"""Telegram long-poll bridge that routes each chat to a processor session."""

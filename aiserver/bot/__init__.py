"""Telegram admin surface: alerts and circuit breaker commands."""

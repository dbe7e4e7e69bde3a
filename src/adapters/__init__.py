"""Adapters binding the core ports to Telegram, HTTP and SQLite."""

"""Core domain package for alertscope.

Core contains scheduling, filtering, ingestion and the alert bus without any
Telegram, HTTP or storage-specific code, keeping the business logic portable.
"""

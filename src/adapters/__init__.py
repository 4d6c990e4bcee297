"""Integration adapters for mediamatch (Telethon, SQLite, notifiers)."""

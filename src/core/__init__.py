"""Core domain package for mediamatch.

Core contains caption parsing, message processing, product matching and the
approval workflow without any Telegram or storage-specific code, keeping the
business logic portable.
"""

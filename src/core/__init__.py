"""Core domain package for telerelay.

Core contains status capture, content classification, and broadcast
scheduling without any Telegram or storage-specific code, keeping the
business logic portable.
"""

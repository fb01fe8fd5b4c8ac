"""Core domain package for relaydesk.

Core contains normalization, routing, dispatch, and relay logic without any
Telegram, VK, or storage-specific code, keeping the business logic portable.
"""

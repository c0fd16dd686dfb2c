"""Subscription lifecycle and entitlement engine."""

__version__ = "0.1.0"

"""Python SDK for the Switchboard flag evaluation service."""

from .client import FlagClient, FlagClientError

__all__ = ["FlagClient", "FlagClientError"]

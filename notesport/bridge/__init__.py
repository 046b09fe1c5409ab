"""Automation bridges for writing to the host application."""

from .base import AutomationBridge
from .mock import BridgeCall, MockBridge
from .osascript import OsaScriptBridge

__all__ = ["AutomationBridge", "BridgeCall", "MockBridge", "OsaScriptBridge"]

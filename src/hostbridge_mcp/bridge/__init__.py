"""Peer message relay."""
from .relay import BridgeMessage, BridgeRelay, MessageType

__all__ = ["BridgeMessage", "BridgeRelay", "MessageType"]

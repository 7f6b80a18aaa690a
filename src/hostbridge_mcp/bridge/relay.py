"""Store-and-forward message relay between two HostBridge peers.

Each side runs a relay with a small HTTP surface (see ``bridge.app``). A peer
asks the other side to run an MCP tool, validate something or check a file;
responses come back as separate messages and are kept in a results store
keyed by request id until picked up.

Messages that cannot be delivered are held as pending and re-sent by
``flush_pending()``.
"""
from __future__ import annotations

import inspect
import logging
import uuid
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import httpx
from pydantic import BaseModel, Field, ValidationError

from hostbridge_mcp.config.settings import BridgeConfig

logger = logging.getLogger(__name__)

MESSAGE_PATH = "/bridge/message"


class MessageType(str, Enum):
    REQUEST_MCP_CALL = "REQUEST_MCP_CALL"
    RESPONSE_MCP_RESULT = "RESPONSE_MCP_RESULT"
    REQUEST_VALIDATION = "REQUEST_VALIDATION"
    RESPONSE_VALIDATION = "RESPONSE_VALIDATION"
    REQUEST_FILE_CHECK = "REQUEST_FILE_CHECK"
    RESPONSE_FILE_STATUS = "RESPONSE_FILE_STATUS"
    BROADCAST_STATUS = "BROADCAST_STATUS"
    HEARTBEAT = "HEARTBEAT"


# Response type -> (results key prefix, callback name)
RESPONSE_ROUTES = {
    MessageType.RESPONSE_MCP_RESULT: ("result", "mcp_result"),
    MessageType.RESPONSE_VALIDATION: ("validation", "validation_result"),
    MessageType.RESPONSE_FILE_STATUS: ("file", "file_status"),
}

# Request type -> callback name
REQUEST_ROUTES = {
    MessageType.REQUEST_MCP_CALL: "mcp_call",
    MessageType.REQUEST_VALIDATION: "validation",
    MessageType.REQUEST_FILE_CHECK: "file_check",
}


def _store_bounded(store: dict[str, Any], key: str, value: Any, limit: int, label: str) -> None:
    """Insert into an insertion-ordered dict, evicting the oldest entries past ``limit``."""
    store.pop(key, None)
    store[key] = value
    while len(store) > limit:
        dropped = next(iter(store))
        del store[dropped]
        logger.warning(f"Bridge {label} store full ({limit}), dropped oldest: {dropped}")


class BridgeMessage(BaseModel):
    """Envelope exchanged between relays."""
    bridge_id: str
    message_type: MessageType
    request_id: str
    timestamp: str
    payload: dict[str, Any] = Field(default_factory=dict)
    sender: str = ""


class BridgeRelay:
    """One side of the peer relay.

    Args:
        config: Relay settings (peer URL, sender name, history size)
        transport: Optional httpx transport, used by tests to stub the peer
    """

    def __init__(self, config: BridgeConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.transport = transport
        self.bridge_id = f"hostbridge-{uuid.uuid4().hex[:12]}"
        self.history: deque[dict[str, Any]] = deque(maxlen=config.history_limit)
        self.pending: dict[str, dict[str, Any]] = {}
        self.results: dict[str, dict[str, Any]] = {}
        self.callbacks: dict[str, Callable[..., Any]] = {}
        self.last_peer_status: dict[str, Any] | None = None
        self.started_at = datetime.now()

    @property
    def message_url(self) -> str:
        return f"{self.config.peer_url.rstrip('/')}{MESSAGE_PATH}"

    def create_message(
        self,
        message_type: MessageType,
        payload: dict[str, Any],
        request_id: str | None = None
    ) -> dict[str, Any]:
        """Build an outgoing message and record it in history."""
        message = BridgeMessage(
            bridge_id=self.bridge_id,
            message_type=message_type,
            request_id=request_id or f"msg-{uuid.uuid4().hex}",
            timestamp=datetime.now().isoformat(),
            payload=payload,
            sender=self.config.sender,
        ).model_dump(mode="json")
        self.history.append(message)
        return message

    async def _post(self, message: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.config.send_timeout, transport=self.transport) as client:
            response = await client.post(self.message_url, json=message)
            response.raise_for_status()
            return response.json()

    async def send(
        self,
        message_type: MessageType,
        payload: dict[str, Any],
        request_id: str | None = None
    ) -> dict[str, Any] | None:
        """Send a message to the peer.

        Returns:
            The peer's reply, or None if the message was stored as pending
        """
        message = self.create_message(message_type, payload, request_id)
        try:
            reply = await self._post(message)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Peer relay not available, storing message {message['request_id']} for later: {e}")
            _store_bounded(self.pending, message["request_id"], message, self.config.pending_limit, "pending message")
            return None

        logger.info(f"Message sent to peer: {message['message_type']} ({message['request_id']})")
        return reply

    async def flush_pending(self) -> int:
        """Re-send pending messages in the order they were stored.

        Stops at the first failure so ordering is kept for the next attempt.

        Returns:
            Number of messages delivered
        """
        delivered = 0
        for request_id in list(self.pending):
            message = self.pending.get(request_id)
            if message is None:
                continue
            try:
                await self._post(message)
            except (httpx.HTTPError, ValueError) as e:
                logger.info(f"Peer still unavailable, {len(self.pending)} messages pending: {e}")
                break
            self.pending.pop(request_id, None)
            delivered += 1

        if delivered:
            logger.info(f"Delivered {delivered} pending messages to peer")
        return delivered

    def register_callback(self, name: str, callback: Callable[..., Any]) -> None:
        """Register a handler for incoming traffic.

        Names: ``mcp_result``, ``validation_result``, ``file_status``
        (called with request_id, payload), ``status_broadcast`` (payload), and
        ``mcp_call``, ``validation``, ``file_check`` for peer requests
        (request_id, payload).
        """
        self.callbacks[name] = callback
        logger.info(f"Registered bridge callback for: {name}")

    async def _invoke(self, name: str, *args: Any) -> None:
        callback = self.callbacks.get(name)
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            await result

    async def handle_incoming(self, data: dict[str, Any]) -> dict[str, Any]:
        """Process a message received from the peer.

        Returns:
            ``{"status": "processed", "request_id": ...}`` or an error status
        """
        try:
            message = BridgeMessage.model_validate(data)
        except ValidationError as e:
            logger.error(f"Rejected malformed bridge message: {e}")
            return {"status": "error", "error": str(e)}

        self.history.append(message.model_dump(mode="json"))
        request_id = message.request_id
        payload = message.payload
        logger.info(f"Received message from peer: {message.message_type.value} ({request_id})")

        try:
            if message.message_type in RESPONSE_ROUTES:
                prefix, callback_name = RESPONSE_ROUTES[message.message_type]
                _store_bounded(self.results, f"{prefix}_{request_id}", payload, self.config.results_limit, "result")
                await self._invoke(callback_name, request_id, payload)

            elif message.message_type in REQUEST_ROUTES:
                callback_name = REQUEST_ROUTES[message.message_type]
                if callback_name not in self.callbacks:
                    logger.warning(f"No handler registered for {message.message_type.value}")
                await self._invoke(callback_name, request_id, payload)

            elif message.message_type is MessageType.BROADCAST_STATUS:
                self.last_peer_status = payload
                logger.info(f"Status broadcast from peer: {payload.get('status', 'unknown')}")
                await self._invoke("status_broadcast", payload)

            elif message.message_type is MessageType.HEARTBEAT and not payload.get("reply"):
                await self.send_heartbeat_response()

        except Exception as e:
            logger.error(f"Failed to handle bridge message {request_id}: {e}", exc_info=True)
            return {"status": "error", "error": str(e), "request_id": request_id}

        return {"status": "processed", "request_id": request_id}

    async def send_heartbeat_response(self) -> dict[str, Any] | None:
        # Replies are flagged so two relays never answer each other forever
        return await self.send(MessageType.HEARTBEAT, {
            "status": "alive",
            "bridge_id": self.bridge_id,
            "timestamp": datetime.now().isoformat(),
            "reply": True,
        })

    async def request_mcp_call(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        timeout: int = 60
    ) -> tuple[str, dict[str, Any] | None]:
        """Ask the peer to run an MCP tool. The result arrives later as RESPONSE_MCP_RESULT."""
        request_id = f"mcp-{uuid.uuid4().hex}"
        logger.info(f"Requesting peer MCP call: {tool_name}")
        reply = await self.send(MessageType.REQUEST_MCP_CALL, {
            "tool_name": tool_name,
            "arguments": arguments,
            "timeout": timeout,
        }, request_id=request_id)
        return request_id, reply

    async def request_validation(
        self,
        validation_type: str,
        data: dict[str, Any]
    ) -> tuple[str, dict[str, Any] | None]:
        request_id = f"val-{uuid.uuid4().hex}"
        logger.info(f"Requesting peer validation: {validation_type}")
        reply = await self.send(MessageType.REQUEST_VALIDATION, {
            "validation_type": validation_type,
            "data": data,
        }, request_id=request_id)
        return request_id, reply

    async def request_file_check(self, file_path: str) -> tuple[str, dict[str, Any] | None]:
        request_id = f"file-{uuid.uuid4().hex}"
        logger.info(f"Requesting peer file check: {file_path}")
        reply = await self.send(MessageType.REQUEST_FILE_CHECK, {
            "file_path": file_path,
            "check_type": "status",
        }, request_id=request_id)
        return request_id, reply

    def pop_result(self, kind: str, request_id: str) -> dict[str, Any] | None:
        """Take a stored response. ``kind`` is ``result``, ``validation`` or ``file``."""
        return self.results.pop(f"{kind}_{request_id}", None)

    def recent_history(self, limit: int = 50) -> list[dict[str, Any]]:
        return list(self.history)[-limit:]

    def status(self) -> dict[str, Any]:
        return {
            "bridge_id": self.bridge_id,
            "status": "active",
            "timestamp": datetime.now().isoformat(),
            "started_at": self.started_at.isoformat(),
            "peer_url": self.config.peer_url,
            "pending_messages": len(self.pending),
            "stored_results": len(self.results),
            "message_history_count": len(self.history),
            "last_peer_status": self.last_peer_status,
        }

"""
Broadcast fan-out for requestbox.

Tracks live WebSocket connections and delivers {"event", "data"} messages to
one connection or to all of them. A single-process, in-memory hub.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Seconds one client may take to accept a message before it is dropped
SEND_TIMEOUT_SECONDS = 5.0


class Connection:
    """One live client connection."""

    def __init__(
        self,
        websocket,
        connection_id: Optional[str] = None,
        is_operator: bool = False,
        operator_token: Optional[str] = None,
    ):
        """
        Args:
            websocket: Object with async send_json() and close() (a Starlette WebSocket)
            connection_id: Identifier to use (generated if omitted)
            is_operator: Whether the client authenticated with the operator password
            operator_token: Login token the operator status came from (revoked on logout)
        """
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex
        self.is_operator = is_operator
        self.operator_token = operator_token

    async def send(self, event: str, data: Any = None) -> None:
        await self.websocket.send_json({"event": event, "data": data})

    async def close(self, code: int = 1001) -> None:
        await self.websocket.close(code=code)

    def __repr__(self) -> str:
        return f"Connection({self.id!r}, operator={self.is_operator})"


class ConnectionHub:
    """Tracks connections and broadcasts events to them."""

    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self._connections: Dict[str, Connection] = {}
        self.accepting = True
        self.send_timeout = send_timeout

    def add(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        logger.info("Client connected: %s (total: %s)", connection.id, len(self._connections))

    def remove(self, connection_id: str) -> Optional[Connection]:
        connection = self._connections.pop(connection_id, None)
        if connection:
            logger.info(
                "Client disconnected: %s (remaining: %s)", connection_id, len(self._connections)
            )
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def stop_accepting(self) -> None:
        """Refuse new connections from now on."""
        self.accepting = False
        logger.info("No longer accepting new connections")

    def revoke_operator(self, operator_token: str) -> int:
        """
        Demote every connection whose operator status came from operator_token.

        Returns:
            Number of connections demoted
        """
        demoted = 0
        for connection in self.connections():
            if connection.is_operator and connection.operator_token == operator_token:
                connection.is_operator = False
                connection.operator_token = None
                demoted += 1
        if demoted:
            logger.info("Operator logout demoted %s open connection(s)", demoted)
        return demoted

    async def _deliver(self, connection: Connection, event: str, data: Any) -> bool:
        try:
            await asyncio.wait_for(connection.send(event, data), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Timed out sending %s to %s", event, connection.id)
            return False
        except Exception as e:
            logger.debug("Failed to send %s to %s: %s", event, connection.id, e)
            return False

    async def send(self, connection_id: str, event: str, data: Any = None) -> bool:
        """
        Send an event to a single connection.

        Returns:
            True if delivered, False if the connection is gone or the send failed
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug("Dropping %s for unknown connection %s", event, connection_id)
            return False
        if await self._deliver(connection, event, data):
            return True
        self.remove(connection_id)
        return False

    async def broadcast(self, event: str, data: Any = None) -> int:
        """
        Send an event to every connection.

        Sends run concurrently, each bounded by send_timeout, so one stalled
        client does not hold up the others. Connections that fail or time out
        are dropped from the hub.

        Returns:
            Number of connections the event was delivered to
        """
        connections = self.connections()
        results = await asyncio.gather(
            *(self._deliver(connection, event, data) for connection in connections)
        )
        for connection, delivered in zip(connections, results):
            if not delivered:
                self.remove(connection.id)
        return sum(results)

    async def close_all(self, code: int = 1012) -> None:
        """Close every connection (1012 = service restart)."""
        for connection in self.connections():
            try:
                await connection.close(code=code)
            except Exception as e:
                logger.debug("Error closing %s: %s", connection.id, e)
            self.remove(connection.id)

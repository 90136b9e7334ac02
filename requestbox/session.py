"""
Session registry for requestbox.

Maps live connections to display names. A display name owns at most one
session; identifying with a name that is already present moves that session
to the new connection instead of creating a duplicate.
"""

import logging
from typing import Dict, List, Optional

from .models import Session, utcnow


class SessionRegistry:
    """Tracks which display name is bound to which connection."""

    def __init__(self):
        self._by_name: Dict[str, Session] = {}
        self.logger = logging.getLogger(__name__)

    def register(self, connection_id: str, username: str) -> Session:
        """
        Register a display name for a connection.

        If a session with this name exists it is rebound to connection_id.
        A connection that was previously known under another name gives that
        name up.

        Args:
            connection_id: Transport-level connection identifier
            username: Display name chosen by the client

        Returns:
            The session now bound to connection_id
        """
        previous = self.find(connection_id)
        if previous and previous.username != username:
            self._by_name.pop(previous.username, None)
            self.logger.info(
                "Connection %s renamed from %s to %s", connection_id, previous.username, username
            )

        session = self._by_name.get(username)
        if session:
            if session.connection_id != connection_id:
                self.logger.info(
                    "Session %s (%s) migrated from connection %s to %s",
                    session.session_id,
                    username,
                    session.connection_id,
                    connection_id,
                )
                session.connection_id = connection_id
                session.rebound_at = utcnow()
            return session

        session = Session(username=username, connection_id=connection_id)
        self._by_name[username] = session
        self.logger.info("User joined: %s (connection %s)", username, connection_id)
        return session

    def unregister(self, connection_id: str) -> Optional[Session]:
        """
        Remove the session bound to a connection.

        Returns:
            The removed session, or None if the connection had none
        """
        session = self.find(connection_id)
        if session is None:
            return None
        del self._by_name[session.username]
        self.logger.info("User left: %s (connection %s)", session.username, connection_id)
        return session

    def find(self, connection_id: str) -> Optional[Session]:
        for session in self._by_name.values():
            if session.connection_id == connection_id:
                return session
        return None

    def find_by_name(self, username: str) -> Optional[Session]:
        return self._by_name.get(username)

    def roster(self) -> List[dict]:
        return [session.to_dict() for session in self._by_name.values()]

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, username: object) -> bool:
        return username in self._by_name

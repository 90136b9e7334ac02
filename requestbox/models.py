"""
Data models for requestbox.

Defines typed dataclasses for the entities held in shared state. Each entity
knows how to render itself in the camelCase wire shape the web clients expect
and how to be rebuilt from that shape (snapshot restore, admin-injected songs).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

UNKNOWN_DURATION = "unknown"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way browsers' Date.toJSON() does."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, falling back to now for anything unusable."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return utcnow()


@dataclass
class SongRequest:
    """A queued request to play a piece of media, with resolved metadata."""

    song: str  # Raw query or URL as submitted
    song_title: str
    requested_by: str
    song_duration: str = UNKNOWN_DURATION
    id: str = field(default_factory=new_id)
    requested_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "song": self.song,
            "songTitle": self.song_title,
            "songDuration": self.song_duration,
            "requestedBy": self.requested_by,
            "requestedAt": format_timestamp(self.requested_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SongRequest":
        """
        Build a SongRequest from a wire dict.

        Accepts both the queue shape (song/songTitle/songDuration) and the
        playlist entry shape (url/title/duration). Missing fields get defaults.
        """
        song = data.get("song") or data.get("url") or ""
        title = data.get("songTitle") or data.get("title") or song
        duration = data.get("songDuration") or data.get("duration") or UNKNOWN_DURATION
        return cls(
            id=str(data.get("id") or new_id()),
            song=str(song),
            song_title=str(title),
            song_duration=str(duration),
            requested_by=str(data.get("requestedBy") or ""),
            requested_at=parse_timestamp(data.get("requestedAt")),
        )


@dataclass
class ChatMessage:
    """Chat message entity."""

    sender: str
    text: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "text": self.text,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=str(data.get("id") or new_id()),
            sender=str(data.get("sender") or ""),
            text=str(data.get("text") or ""),
            timestamp=parse_timestamp(data.get("timestamp")),
        )


@dataclass
class Session:
    """
    A named participant bound to one live connection.

    session_id is stable for the life of the session; connection_id changes
    when the same display name identifies itself from a new connection.
    """

    username: str
    connection_id: str
    session_id: str = field(default_factory=new_id)
    joined_at: datetime = field(default_factory=utcnow)
    rebound_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        # Clients key the roster by connection id
        return {
            "id": self.connection_id,
            "username": self.username,
            "joinedAt": format_timestamp(self.joined_at),
        }

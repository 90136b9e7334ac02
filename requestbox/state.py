"""
Shared state store for requestbox.

A single StateStore instance holds everything the clients render: the song
queue, the current song, song and chat history, header color, title and the
YouTube API key. Every mutation touches one field; callers broadcast that field
right after. All access happens on the event loop, so no locking is needed.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .config_manager import ConfigManager
from .models import ChatMessage, SongRequest


class StateStore:
    """In-memory state shared by every connected session."""

    def __init__(self, config_manager: ConfigManager):
        """
        Initialize StateStore.

        Args:
            config_manager: ConfigManager supplying defaults and history caps
        """
        self.config_manager = config_manager
        self.logger = logging.getLogger(__name__)

        self.song_history_limit = config_manager.get_int("song_history_limit", 200)
        self.chat_history_limit = config_manager.get_int("chat_history_limit", 500)
        self.chat_sync_limit = config_manager.get_int("chat_sync_limit", 50)

        self.song_queue: List[SongRequest] = []
        self.current_song: Optional[SongRequest] = None
        # Newest first; appendleft on a full deque drops the oldest (rightmost) entry
        self.song_history: Deque[SongRequest] = deque(maxlen=self.song_history_limit)
        self.chat_history: Deque[ChatMessage] = deque(maxlen=self.chat_history_limit)

        self.header_color = self.default_header_color
        self.title = config_manager.get("default_title")
        self.youtube_api_key = config_manager.get("youtube_api_key") or ""
        self.backup_path = config_manager.get("backup_path")

        # Single-flight guard for auto-play on request
        self.autoplay_claimed = False

    @property
    def default_header_color(self) -> str:
        return self.config_manager.get("default_header_color")

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue(self, song: SongRequest) -> None:
        """Append a song to the end of the queue."""
        self.song_queue.append(song)

    def pop_from_queue(self, song_id: str) -> Optional[SongRequest]:
        """Remove and return a queued song, or None if it is not queued."""
        for index, song in enumerate(self.song_queue):
            if song.id == song_id:
                return self.song_queue.pop(index)
        return None

    def queue_head(self) -> Optional[SongRequest]:
        return self.song_queue[0] if self.song_queue else None

    def is_idle(self) -> bool:
        """True when nothing is playing and nothing is waiting."""
        return self.current_song is None and not self.song_queue

    # =========================================================================
    # Playback
    # =========================================================================

    def set_current_song(self, song: Optional[SongRequest]) -> None:
        """Replace the current song; non-null songs are also recorded in history."""
        self.current_song = song
        if song is not None:
            self.song_history.appendleft(song)

    def play(self, song_id: str) -> Optional[SongRequest]:
        """
        Promote a queued song to the current song.

        Args:
            song_id: ID of a queued song

        Returns:
            The promoted song, or None if song_id is not in the queue
        """
        song = self.pop_from_queue(song_id)
        if song is None:
            return None
        self.set_current_song(song)
        return song

    def claim_autoplay(self) -> bool:
        """
        Claim the right to auto-play the next request.

        Succeeds only when the store is idle and nobody else holds the claim.
        """
        if self.autoplay_claimed or not self.is_idle():
            return False
        self.autoplay_claimed = True
        return True

    def release_autoplay(self) -> None:
        self.autoplay_claimed = False

    # =========================================================================
    # Chat
    # =========================================================================

    def add_chat_message(self, message: ChatMessage) -> None:
        self.chat_history.appendleft(message)

    # =========================================================================
    # Wire views
    # =========================================================================

    def queue_dicts(self) -> List[Dict[str, Any]]:
        return [song.to_dict() for song in self.song_queue]

    def history_dicts(self) -> List[Dict[str, Any]]:
        return [song.to_dict() for song in self.song_history]

    def chat_dicts(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        messages = list(self.chat_history)
        if limit is not None:
            messages = messages[:limit]
        return [message.to_dict() for message in messages]

    def current_song_dict(self) -> Optional[Dict[str, Any]]:
        return self.current_song.to_dict() if self.current_song else None

    def initial_state(self, active_users: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Full state sent to a session right after it identifies itself."""
        return {
            "songQueue": self.queue_dicts(),
            "currentSong": self.current_song_dict(),
            "activeUsers": active_users,
            "songHistory": self.history_dicts(),
            "chatHistory": self.chat_dicts(limit=self.chat_sync_limit),
            "headerColor": self.header_color,
            "title": self.title,
        }

    # =========================================================================
    # Snapshots
    # =========================================================================

    def to_snapshot(self) -> Dict[str, Any]:
        """Fields persisted by a backup (backupDate is added by the writer)."""
        return {
            "songQueue": self.queue_dicts(),
            "songHistory": self.history_dicts(),
            "chatHistory": self.chat_dicts(),
            "headerColor": self.header_color,
            "youtubeApiKey": self.youtube_api_key,
        }

    def replace_from_snapshot(self, data: Dict[str, Any]) -> None:
        """
        Overwrite persisted fields from a snapshot dict.

        Missing or null fields fall back to empty collections or defaults.
        The current song and the roster are not part of a snapshot.

        Raises:
            ValueError: if a collection holds something other than objects;
                nothing is replaced in that case
        """
        queue = [SongRequest.from_dict(item) for item in _records(data, "songQueue")]
        # Lists are newest first, so keep the head when trimming to the cap
        history = [
            SongRequest.from_dict(item)
            for item in _records(data, "songHistory")[: self.song_history_limit]
        ]
        chat = [
            ChatMessage.from_dict(item)
            for item in _records(data, "chatHistory")[: self.chat_history_limit]
        ]

        self.song_queue = queue
        self.song_history = deque(history, maxlen=self.song_history_limit)
        self.chat_history = deque(chat, maxlen=self.chat_history_limit)
        self.header_color = data.get("headerColor") or self.default_header_color
        self.youtube_api_key = data.get("youtubeApiKey") or ""
        self.logger.info(
            "State replaced from snapshot: %s queued, %s history, %s chat",
            len(self.song_queue),
            len(self.song_history),
            len(self.chat_history),
        )


def _records(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ValueError(f"{key} must be a list of objects")
    return value

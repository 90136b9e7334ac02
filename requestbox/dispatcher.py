"""
Inbound event dispatch for requestbox.

Every WebSocket message is {"event": name, "data": payload}. EventDispatcher
maps each event name to one handler coroutine. Handlers mutate the shared
StateStore / SessionRegistry and broadcast the changed field to every
connection, so all clients converge on the same view. Read-only requests are
answered on the requesting connection only.

Invalid input, events from connections that never identified themselves, and
operator events from non-operators are dropped without a reply.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from starlette.concurrency import run_in_threadpool

from .broadcast import Connection, ConnectionHub
from .models import ChatMessage, SongRequest
from .session import SessionRegistry
from .shutdown import ShutdownCoordinator
from .snapshot import SnapshotManager, SnapshotResult
from .state import StateStore
from .youtube import YouTubeClient

Handler = Callable[[Connection, Any], Awaitable[None]]

# Events only an authenticated operator may send
OPERATOR_EVENTS = frozenset(
    {
        "playSong",
        "stopSong",
        "updateCurrentSong",
        "updateHeaderColor",
        "updateTitle",
        "updateBackupPath",
        "backupSystem",
        "restoreSystem",
        "restartSystem",
    }
)


def _text(data: Any) -> Optional[str]:
    """Return stripped text for a non-empty string payload, else None."""
    if isinstance(data, str) and data.strip():
        return data.strip()
    return None


class EventDispatcher:
    """Routes inbound events to handlers and fans results out."""

    def __init__(
        self,
        state: StateStore,
        sessions: SessionRegistry,
        hub: ConnectionHub,
        youtube: YouTubeClient,
        snapshots: SnapshotManager,
        shutdown: ShutdownCoordinator,
    ):
        self.state = state
        self.sessions = sessions
        self.hub = hub
        self.youtube = youtube
        self.snapshots = snapshots
        self.shutdown = shutdown
        self.logger = logging.getLogger(__name__)

        self._tasks: Set[asyncio.Task] = set()
        self.handlers: Dict[str, Handler] = {
            "setUsername": self.on_set_username,
            "requestSong": self.on_request_song,
            "chatMessage": self.on_chat_message,
            "playSong": self.on_play_song,
            "stopSong": self.on_stop_song,
            "autoPlayNext": self.on_auto_play_next,
            "updateCurrentSong": self.on_update_current_song,
            "updateHeaderColor": self.on_update_header_color,
            "updateTitle": self.on_update_title,
            "getSongHistory": self.on_get_song_history,
            "getChatHistory": self.on_get_chat_history,
            "updateBackupPath": self.on_update_backup_path,
            "backupSystem": self.on_backup_system,
            "restoreSystem": self.on_restore_system,
            "restartSystem": self.on_restart_system,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def connect(self, connection: Connection) -> bool:
        """
        Register a new connection with the hub.

        Returns:
            False if the server is shutting down and refuses connections
        """
        if not self.hub.accepting:
            self.logger.info("Refusing connection %s: shutting down", connection.id)
            return False
        self.hub.add(connection)
        return True

    async def disconnect(self, connection_id: str) -> None:
        """Forget a closed connection and its session, if any."""
        self.hub.remove(connection_id)
        if self.sessions.unregister(connection_id):
            await self.hub.broadcast("updateActiveUsers", self.sessions.roster())

    # =========================================================================
    # Dispatch
    # =========================================================================

    def submit(self, connection: Connection, event: str, data: Any = None) -> asyncio.Task:
        """
        Handle an event in its own task so a slow lookup only delays that event.

        The task is tracked until it finishes so a restart can drain it.
        """
        task = asyncio.get_running_loop().create_task(self.dispatch(connection, event, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float) -> None:
        """Wait up to timeout seconds for in-flight events to finish."""
        pending = [task for task in self._tasks if task is not asyncio.current_task()]
        if not pending:
            return
        self.logger.info("Waiting for %s in-flight events", len(pending))
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            self.logger.warning("%s events still running after %ss", len(still_pending), timeout)

    async def dispatch(self, connection: Connection, event: str, data: Any = None) -> None:
        """
        Run the handler for one event.

        Exceptions are logged and contained: a failing handler never takes the
        connection or the process down.
        """
        handler = self.handlers.get(event)
        if handler is None:
            self.logger.warning("Ignoring unknown event %r from %s", event, connection.id)
            return

        if event in OPERATOR_EVENTS and not connection.is_operator:
            self.logger.warning("Dropping operator event %s from %s", event, connection.id)
            return

        try:
            await handler(connection, data)
        except Exception as e:
            self.logger.error("Error handling %s from %s: %s", event, connection.id, e, exc_info=True)

    # =========================================================================
    # Playback helpers
    # =========================================================================

    async def play_song(self, song_id: str) -> bool:
        """Promote a queued song and broadcast current song, queue and history."""
        song = self.state.play(song_id)
        if song is None:
            self.logger.debug("playSong: %s is not queued", song_id)
            return False

        self.logger.info("Now playing: %s (requested by %s)", song.song_title, song.requested_by)
        await self.hub.broadcast("updateCurrentSong", song.to_dict())
        await self.hub.broadcast("updateSongQueue", self.state.queue_dicts())
        await self.hub.broadcast("updateSongHistory", self.state.history_dicts())
        return True

    async def play_next(self) -> None:
        """Play the head of the queue, or clear the current song if the queue is empty."""
        head = self.state.queue_head()
        if head is not None:
            await self.play_song(head.id)
            return

        self.state.set_current_song(None)
        await self.hub.broadcast("updateCurrentSong", None)
        self.logger.info("Queue is empty, nothing to play")

    async def update_api_key(self, api_key: str) -> None:
        """Replace the YouTube API key and tell every client."""
        self.state.youtube_api_key = api_key
        await self.hub.broadcast("updateSettings", {"youtubeApiKey": api_key})
        self.logger.info("YouTube API key updated")

    # =========================================================================
    # Handlers
    # =========================================================================

    async def on_set_username(self, connection: Connection, data: Any) -> None:
        username = _text(data)
        if not username:
            return

        self.sessions.register(connection.id, username)
        await self.hub.broadcast("updateActiveUsers", self.sessions.roster())
        await self.hub.send(
            connection.id, "initialState", self.state.initial_state(self.sessions.roster())
        )

    async def on_request_song(self, connection: Connection, data: Any) -> None:
        song = _text(data.get("song") if isinstance(data, dict) else data)
        if not song:
            return

        session = self.sessions.find(connection.id)
        if session is None:
            self.logger.info("Song request from unidentified connection %s dropped", connection.id)
            return

        # Decide before the lookup await; otherwise two requests arriving on an
        # idle system could both auto-play
        claimed = self.state.claim_autoplay()
        try:
            title, duration = await run_in_threadpool(self.youtube.resolve, song)
            request = SongRequest(
                song=song,
                song_title=title,
                song_duration=duration,
                requested_by=session.username,
            )
            self.state.enqueue(request)
            self.logger.info("Song requested: %s by %s", title, session.username)
            await self.hub.broadcast("updateSongQueue", self.state.queue_dicts())

            if claimed and self.state.current_song is None:
                await self.play_next()
        finally:
            if claimed:
                self.state.release_autoplay()

    async def on_chat_message(self, connection: Connection, data: Any) -> None:
        text = _text(data)
        if not text:
            return

        session = self.sessions.find(connection.id)
        if session is None:
            self.logger.info("Chat message from unidentified connection %s dropped", connection.id)
            return

        message = ChatMessage(sender=session.username, text=text)
        self.state.add_chat_message(message)
        await self.hub.broadcast("newChatMessage", message.to_dict())

    async def on_play_song(self, connection: Connection, data: Any) -> None:
        if data is None or data == "":
            return
        await self.play_song(str(data))

    async def on_stop_song(self, connection: Connection, data: Any) -> None:
        self.state.set_current_song(None)
        await self.hub.broadcast("updateCurrentSong", None)
        self.logger.info("Playback stopped")

    async def on_auto_play_next(self, connection: Connection, data: Any) -> None:
        await self.play_next()

    async def on_update_current_song(self, connection: Connection, data: Any) -> None:
        if data is not None and not isinstance(data, dict):
            return

        song = SongRequest.from_dict(data) if data is not None else None
        self.state.set_current_song(song)
        await self.hub.broadcast("updateCurrentSong", self.state.current_song_dict())
        if song is not None:
            await self.hub.broadcast("updateSongHistory", self.state.history_dicts())
        self.logger.info("Current song set to %s", song.song_title if song else None)

    async def on_update_header_color(self, connection: Connection, data: Any) -> None:
        color = _text(data)
        if not color:
            return
        self.state.header_color = color
        await self.hub.broadcast("updateHeaderColor", color)

    async def on_update_title(self, connection: Connection, data: Any) -> None:
        title = _text(data)
        if not title:
            return
        self.state.title = title
        await self.hub.broadcast("updateTitle", title)

    async def on_get_song_history(self, connection: Connection, data: Any) -> None:
        await self.hub.send(connection.id, "updateSongHistory", self.state.history_dicts())

    async def on_get_chat_history(self, connection: Connection, data: Any) -> None:
        await self.hub.send(connection.id, "updateChatHistory", self.state.chat_dicts())

    async def on_update_backup_path(self, connection: Connection, data: Any) -> None:
        path = _text(data)
        if not path:
            return
        self.state.backup_path = path
        self.logger.info("Backup directory set to %s", path)
        await self.hub.send(connection.id, "backupPathUpdated", {"success": True, "path": path})

    async def on_backup_system(self, connection: Connection, data: Any) -> None:
        result = await run_in_threadpool(
            self.snapshots.backup, self.state.backup_path, self.state.to_snapshot()
        )
        await self.hub.send(connection.id, "backupCompleted", result.to_dict())

    async def on_restore_system(self, connection: Connection, data: Any) -> None:
        result = await run_in_threadpool(self.snapshots.load, self.state.backup_path)
        if result.success:
            try:
                self.state.replace_from_snapshot(result.data)
            except ValueError as e:
                self.logger.error("Snapshot is malformed: %s", e)
                result = SnapshotResult(
                    success=False, message=f"An error occurred during restore: {e}"
                )
            else:
                await self.hub.broadcast("updateSongQueue", self.state.queue_dicts())
                await self.hub.broadcast("updateSongHistory", self.state.history_dicts())
                await self.hub.broadcast("updateChatHistory", self.state.chat_dicts())
                await self.hub.broadcast("updateHeaderColor", self.state.header_color)
                await self.hub.broadcast(
                    "updateSettings", {"youtubeApiKey": self.state.youtube_api_key}
                )
                self.logger.info("System restored from %s", result.data_path)

        await self.hub.send(connection.id, "restoreCompleted", result.to_dict())

    async def on_restart_system(self, connection: Connection, data: Any) -> None:
        if not self.shutdown.schedule(self.drain):
            await self.hub.send(
                connection.id,
                "restartInitiated",
                {"success": False, "message": "A restart is already in progress."},
            )
            return

        await self.hub.send(
            connection.id,
            "restartInitiated",
            {"success": True, "message": "System is restarting. Please wait..."},
        )
        await self.hub.broadcast(
            "systemShutdown",
            {"message": "Server is restarting.", "delaySeconds": self.shutdown.delay},
        )

"""
FastAPI web server for requestbox.

Provides the WebSocket event channel (/ws) and the REST control surface for
settings, YouTube lookups and operator authentication.
"""

import hmac
import json
import logging
import secrets
from typing import Optional, Set, Union

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from ..broadcast import Connection
from ..config_manager import CONFIG_SCHEMA, ConfigManager
from ..dispatcher import EventDispatcher
from ..state import StateStore
from ..youtube import YouTubeClient, extract_playlist_id

logger = logging.getLogger(__name__)


# Request models
class ApiKeyRequest(BaseModel):
    apiKey: Optional[str] = None


class ExtractPlaylistRequest(BaseModel):
    url: Optional[str] = None


class OperatorAuthRequest(BaseModel):
    password: str


class ConfigUpdateRequest(BaseModel):
    key: str
    value: Optional[str] = None


# Dependency to get components
def get_dispatcher(request: Request) -> EventDispatcher:
    """Get EventDispatcher from app state."""
    return request.app.state.dispatcher


def get_state_store(request: Request) -> StateStore:
    """Get StateStore from app state."""
    return request.app.state.dispatcher.state


def get_youtube_client(request: Request) -> YouTubeClient:
    """Get YouTubeClient from app state."""
    return request.app.state.dispatcher.youtube


def get_config_manager(request: Request) -> ConfigManager:
    """Get ConfigManager from app state."""
    return request.app.state.config_manager


def operator_token(session: dict, tokens: Set[str]) -> Optional[str]:
    """
    Return the session's operator token if it has not been revoked.

    Args:
        session: Decoded session cookie (HTTP request or WebSocket scope)
        tokens: Tokens issued by a login and not yet logged out
    """
    token = session.get("operator_token")
    if session.get("operator") and token in tokens:
        return token
    return None


def check_operator(request: Request) -> bool:
    """
    Check if user is authenticated as operator.
    """
    return operator_token(request.session, request.app.state.operator_tokens) is not None


def password_matches(candidate: str, configured: Optional[str]) -> bool:
    """Constant-time password check; an unset password never matches."""
    if not configured:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), configured.encode("utf-8"))


def parse_message(raw: Union[str, bytes]):
    """
    Parse one WebSocket frame into (event, data).

    Binary frames are accepted when they hold UTF-8 JSON.

    Returns:
        Tuple of event name and payload, or None if the frame is malformed
    """
    try:
        message = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        return None
    return message["event"], message.get("data")


def create_app(
    dispatcher: EventDispatcher,
    config_manager: ConfigManager,
    session_secret: str,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        dispatcher: EventDispatcher wired to the shared state
        config_manager: ConfigManager instance
        session_secret: Key used to sign the operator session cookie

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="requestbox", version="1.0.0")

    # Session middleware for operator authentication (also covers WebSocket scopes)
    app.add_middleware(SessionMiddleware, secret_key=session_secret)

    # Store components in app state
    app.state.dispatcher = dispatcher
    app.state.config_manager = config_manager
    app.state.operator_tokens = set()

    # Event channel
    @app.websocket("/ws")
    async def event_channel(websocket: WebSocket):
        """Bidirectional event channel: {"event": name, "data": payload} frames."""
        token = operator_token(websocket.session, app.state.operator_tokens)
        connection = Connection(websocket, is_operator=token is not None, operator_token=token)
        if not dispatcher.hub.accepting:
            await websocket.close(code=1013)
            return

        await websocket.accept()
        if not dispatcher.connect(connection):
            await websocket.close(code=1013)
            return

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                parsed = parse_message(raw) if raw is not None else None
                if parsed is None:
                    logger.warning("Ignoring malformed message from %s", connection.id)
                    continue
                event, data = parsed
                dispatcher.submit(connection, event, data)
        finally:
            await dispatcher.disconnect(connection.id)

    @app.get("/api/state")
    async def get_state(state: StateStore = Depends(get_state_store)):
        """Full shared state, as sent to a client after it identifies itself."""
        return state.initial_state(dispatcher.sessions.roster())

    # Settings endpoints
    @app.get("/api/settings/youtube-api-key")
    async def get_api_key(state: StateStore = Depends(get_state_store)):
        """Get the YouTube API key."""
        return {"youtubeApiKey": state.youtube_api_key}

    @app.post("/api/settings/youtube-api-key")
    async def update_api_key(
        request_data: ApiKeyRequest,
        is_operator: bool = Depends(check_operator),
    ):
        """Update the YouTube API key (operator only) and broadcast it."""
        if not is_operator:
            raise HTTPException(status_code=403, detail="Operator authentication required")

        api_key = (request_data.apiKey or "").strip()
        if not api_key:
            raise HTTPException(status_code=400, detail="API key cannot be empty")

        await dispatcher.update_api_key(api_key)
        return {"success": True}

    @app.get("/api/settings/backup-path")
    async def get_backup_path(state: StateStore = Depends(get_state_store)):
        """Get the backup directory."""
        return {"backupPath": state.backup_path}

    # YouTube endpoints
    @app.get("/api/youtube/video-info/{video_id}")
    async def get_video_info(video_id: str, youtube: YouTubeClient = Depends(get_youtube_client)):
        """Get title and formatted duration of a video."""
        if not youtube.is_configured():
            raise HTTPException(status_code=400, detail="YouTube API key not configured")

        info = await run_in_threadpool(youtube.get_video_info, video_id)
        if not info:
            raise HTTPException(status_code=404, detail="Video not found")
        return {"title": info["title"], "duration": info["duration"]}

    @app.get("/api/youtube/search")
    async def search_youtube(
        q: str,
        max_results: int = 10,
        youtube: YouTubeClient = Depends(get_youtube_client),
    ):
        """Search YouTube for videos."""
        results = await run_in_threadpool(youtube.search, q, max_results)
        return {"results": results}

    @app.get("/api/youtube/playlist/{playlist_id}")
    async def get_playlist(
        playlist_id: str,
        youtube: YouTubeClient = Depends(get_youtube_client),
        config: ConfigManager = Depends(get_config_manager),
    ):
        """Flatten a playlist (capped) into playable entries."""
        if not youtube.is_configured():
            raise HTTPException(status_code=400, detail="YouTube API key not configured")

        limit = config.get_int("playlist_limit", 1000)
        result = await run_in_threadpool(youtube.get_playlist, playlist_id, limit)
        if result is None:
            raise HTTPException(status_code=400, detail="YouTube API key not configured")
        return result.to_dict()

    @app.post("/api/youtube/utils/extract-playlist-id")
    async def extract_playlist(request_data: ExtractPlaylistRequest):
        """Extract the playlist ID from a pasted URL."""
        if not request_data.url:
            raise HTTPException(status_code=400, detail="url is required")

        playlist_id = extract_playlist_id(request_data.url)
        if playlist_id:
            return {"success": True, "playlistId": playlist_id}
        return {"success": False, "error": "Playlist ID not found"}

    # Authentication endpoints
    @app.get("/api/auth/operator")
    async def check_operator_status(request: Request):
        """Check if user is currently authenticated as operator."""
        return {"operator": check_operator(request)}

    @app.post("/api/auth/operator")
    async def authenticate_operator(
        request: Request,
        auth_data: OperatorAuthRequest,
        config: ConfigManager = Depends(get_config_manager),
    ):
        """Authenticate as operator with the shared password."""
        if password_matches(auth_data.password, config.get("operator_password")):
            token = secrets.token_urlsafe(16)
            app.state.operator_tokens.add(token)
            request.session["operator"] = True
            request.session["operator_token"] = token
            return {"status": "authenticated", "operator": True}
        raise HTTPException(status_code=401, detail="Invalid password")

    @app.post("/api/auth/logout")
    async def logout_operator(request: Request):
        """Exit operator mode, including on event channels opened with this session."""
        token = request.session.pop("operator_token", None)
        request.session["operator"] = False
        if token:
            app.state.operator_tokens.discard(token)
            dispatcher.hub.revoke_operator(token)
        return {"status": "logged_out", "operator": False}

    # Configuration endpoints
    @app.get("/api/config")
    async def get_config(
        config: ConfigManager = Depends(get_config_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Get configuration values (secrets masked), schema and groups (operator only)."""
        if not is_operator:
            raise HTTPException(status_code=403, detail="Operator authentication required")
        return config.get_full_config()

    @app.patch("/api/config")
    async def update_config(
        request_data: ConfigUpdateRequest,
        events: EventDispatcher = Depends(get_dispatcher),
        config: ConfigManager = Depends(get_config_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Update one editable configuration value (operator only)."""
        if not is_operator:
            raise HTTPException(status_code=403, detail="Operator authentication required")
        if request_data.key not in CONFIG_SCHEMA:
            raise HTTPException(status_code=400, detail=f"Unknown setting: {request_data.key}")

        value = (request_data.value or "").strip() or None
        config.set(request_data.key, value)

        # Settings mirrored in shared state take effect immediately
        if request_data.key == "youtube_api_key":
            await events.update_api_key(value or "")
        elif request_data.key == "backup_path":
            events.state.backup_path = config.get("backup_path")

        logger.info("Configuration updated: %s", request_data.key)
        return {"status": "updated", "key": request_data.key}

    return app

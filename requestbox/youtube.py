"""
YouTube metadata lookup for requestbox.

Resolves titles and durations via the YouTube Data API v3, searches for a best
match when a request is free text, and flattens playlists. Every lookup
degrades to placeholder values instead of raising: a song request must never
fail because YouTube could not be reached.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .models import UNKNOWN_DURATION

PLAYLIST_PAGE_SIZE = 50
DEFAULT_PLAYLIST_LIMIT = 1000

_BARE_VIDEO_ID = re.compile(r"^[a-zA-Z0-9_-]{11}$")
_VIDEO_URL = re.compile(r"^.*(?:youtu\.be/|v/|e/|u/\w+/|embed/|v=)([^#&?]*).*")
_PLAYLIST_ID = re.compile(r"[&?]list=([a-zA-Z0-9_-]+)")

logger = logging.getLogger(__name__)


def extract_video_id(text: Optional[str]) -> Optional[str]:
    """
    Extract an 11-character YouTube video ID from a bare ID or a URL.

    Returns:
        The video ID, or None if the text does not reference a video
    """
    if not text:
        return None
    text = text.strip()
    if _BARE_VIDEO_ID.match(text):
        return text
    match = _VIDEO_URL.match(text)
    if match and len(match.group(1)) == 11:
        return match.group(1)
    return None


def extract_playlist_id(url: Optional[str]) -> Optional[str]:
    """Extract the list= parameter from a pasted playlist URL."""
    if not url:
        return None
    match = _PLAYLIST_ID.search(url)
    return match.group(1) if match else None


def parse_duration(duration_str: str) -> Optional[int]:
    """
    Parse ISO 8601 duration string to seconds.

    Args:
        duration_str: ISO 8601 duration (e.g., "PT4M13S")

    Returns:
        Duration in seconds, or None if parsing fails
    """
    if not duration_str or not duration_str.startswith("PT"):
        return None

    remaining = duration_str[2:]
    if not remaining:
        return None

    try:
        hours = minutes = seconds = 0

        if "H" in remaining:
            value, remaining = remaining.split("H", 1)
            hours = int(value)

        if "M" in remaining:
            value, remaining = remaining.split("M", 1)
            minutes = int(value)

        if "S" in remaining:
            value, remaining = remaining.split("S", 1)
            if value:
                seconds = int(value)

        # Anything left over was not a recognised component
        if remaining.strip():
            return None

        return hours * 3600 + minutes * 60 + seconds
    except ValueError as e:
        logger.warning("Failed to parse duration %s: %s", duration_str, e)
        return None


def format_duration(duration_str: str) -> str:
    """
    Convert an ISO 8601 duration to H:MM:SS (or M:SS under an hour).

    PT1H2M3S -> "1:02:03", PT4M13S -> "4:13", PT45S -> "0:45".
    Unparseable input gives the "unknown" sentinel.
    """
    total = parse_duration(duration_str)
    if total is None:
        return UNKNOWN_DURATION
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


@dataclass
class PlaylistResult:
    """Flattened playlist entries plus a human-readable summary."""

    videos: List[Dict[str, Any]] = field(default_factory=list)
    limit_reached: bool = False
    error: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.videos)

    @property
    def message(self) -> str:
        if self.limit_reached:
            message = f"Maximum {self.count} video limit reached"
        else:
            message = f"{self.count} videos loaded"
        if self.error:
            message += f" (playlist loading stopped early: {self.error})"
        return message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "videos": self.videos,
            "count": self.count,
            "message": self.message,
        }


class YouTubeClient:
    """YouTube Data API v3 client."""

    def __init__(self, api_key_provider: Callable[[], Optional[str]]):
        """
        Initialize YouTubeClient.

        Args:
            api_key_provider: Returns the current API key (it can change at runtime)
        """
        self.logger = logging.getLogger(__name__)
        self.api_key_provider = api_key_provider

        # Lazy-initialized YouTube API client
        self._youtube = None
        self._last_api_key: Optional[str] = None

    def _get_youtube_client(self):
        """
        Get or create YouTube API client.

        Returns None if API key is not configured.
        Reinitializes client if API key has changed (allowing runtime updates).
        """
        api_key = self.api_key_provider()

        if not api_key:
            self._youtube = None
            self._last_api_key = None
            return None

        if api_key != self._last_api_key:
            try:
                self._youtube = build("youtube", "v3", developerKey=api_key, cache_discovery=False)
                self._last_api_key = api_key
                self.logger.info("YouTube API client initialized")
            except Exception as e:
                self.logger.error("Failed to initialize YouTube API client: %s", e)
                self._youtube = None
                self._last_api_key = None

        return self._youtube

    def is_configured(self) -> bool:
        """Check if a YouTube API key is configured and usable."""
        return self._get_youtube_client() is not None

    def get_video_info(self, video_id: str) -> Optional[Dict[str, Any]]:
        """
        Get title and formatted duration for a video.

        Returns:
            {"id", "title", "duration", "channel"}, or None if not found/API not configured
        """
        youtube = self._get_youtube_client()
        if not youtube:
            self.logger.warning("YouTube API key not configured, video info unavailable")
            return None

        try:
            response = youtube.videos().list(part="snippet,contentDetails", id=video_id).execute()

            if not response.get("items"):
                self.logger.warning("Video not found: %s", video_id)
                return None

            item = response["items"][0]
            snippet = item.get("snippet", {})
            content_details = item.get("contentDetails", {})
            return {
                "id": video_id,
                "title": snippet.get("title", ""),
                "channel": snippet.get("channelTitle", ""),
                "duration": format_duration(content_details.get("duration", "")),
            }
        except HttpError as e:
            self.logger.error("YouTube API error getting video info: %s", e)
            return None
        except Exception as e:
            self.logger.error("Error getting video info: %s", e, exc_info=True)
            return None

    def search(self, query: str, max_results: int = 10) -> List[Dict[str, Any]]:
        """
        Search YouTube for videos.

        Returns:
            List of {"id", "title", "channel", "thumbnail"}; empty when the API
            key is missing or the request fails
        """
        youtube = self._get_youtube_client()
        if not youtube:
            self.logger.warning("YouTube API key not configured, search unavailable")
            return []

        try:
            response = (
                youtube.search()
                .list(
                    part="snippet",
                    q=query,
                    type="video",
                    maxResults=max_results,
                    order="relevance",
                )
                .execute()
            )
        except HttpError as e:
            self.logger.error("YouTube API error: %s", e)
            return []
        except Exception as e:
            self.logger.error("Error searching YouTube: %s", e, exc_info=True)
            return []

        results = []
        for item in response.get("items", []):
            video_id = item.get("id", {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet", {})
            results.append(
                {
                    "id": video_id,
                    "title": snippet.get("title", ""),
                    "channel": snippet.get("channelTitle", ""),
                    "thumbnail": snippet.get("thumbnails", {}).get("default", {}).get("url", ""),
                }
            )
        self.logger.info("Found %s videos for query: %s", len(results), query)
        return results

    def resolve(self, text: str) -> Tuple[str, str]:
        """
        Resolve a song request to (title, duration).

        A URL or bare ID is looked up directly; free text is searched and the
        best match looked up. Any failure falls back to (text, "unknown").
        """
        fallback = (text, UNKNOWN_DURATION)
        try:
            video_id = extract_video_id(text)
            if not video_id:
                if not self.is_configured():
                    return fallback
                matches = self.search(text, max_results=1)
                if not matches:
                    return fallback
                video_id = matches[0]["id"]

            info = self.get_video_info(video_id)
            if not info:
                return fallback
            return info["title"] or text, info["duration"]
        except Exception as e:
            self.logger.error("Error resolving %r: %s", text, e, exc_info=True)
            return fallback

    def _get_durations(self, youtube, video_ids: List[str]) -> Optional[Dict[str, str]]:
        """
        Look up formatted durations for up to 50 videos in one call.

        Returns:
            Mapping of video ID to duration (private/deleted videos are absent),
            or None if the lookup failed
        """
        if not video_ids:
            return {}
        try:
            response = (
                youtube.videos().list(part="contentDetails", id=",".join(video_ids)).execute()
            )
        except Exception as e:
            self.logger.error("Error getting playlist video durations: %s", e)
            return None

        return {
            item["id"]: format_duration(item.get("contentDetails", {}).get("duration", ""))
            for item in response.get("items", [])
        }

    def get_playlist(
        self, playlist_id: str, limit: int = DEFAULT_PLAYLIST_LIMIT
    ) -> Optional[PlaylistResult]:
        """
        Fetch every entry of a playlist, following page tokens.

        Stops at `limit` entries. If a page request fails the entries gathered
        so far are returned with the error noted instead of failing outright.

        Returns:
            PlaylistResult, or None if the API key is not configured
        """
        youtube = self._get_youtube_client()
        if not youtube:
            self.logger.warning("YouTube API key not configured, playlists unavailable")
            return None

        result = PlaylistResult()
        page_token: Optional[str] = None
        stamp = int(time.time() * 1000)

        while True:
            params = {
                "part": "snippet",
                "playlistId": playlist_id,
                "maxResults": PLAYLIST_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token

            try:
                response = youtube.playlistItems().list(**params).execute()
            except HttpError as e:
                self.logger.error("YouTube API error loading playlist %s: %s", playlist_id, e)
                result.error = str(e)
                break
            except Exception as e:
                self.logger.error("Error loading playlist %s: %s", playlist_id, e, exc_info=True)
                result.error = str(e)
                break

            entries = []
            for item in response.get("items", []):
                snippet = item.get("snippet", {})
                video_id = snippet.get("resourceId", {}).get("videoId")
                if video_id:
                    entries.append((video_id, snippet.get("title", "")))

            durations = self._get_durations(youtube, [video_id for video_id, _ in entries])
            for video_id, title in entries:
                if durations is None:
                    duration = UNKNOWN_DURATION
                elif video_id in durations:
                    duration = durations[video_id]
                else:
                    # Private or deleted
                    continue
                result.videos.append(
                    {
                        "id": f"{stamp}-{len(result.videos)}-{video_id}",
                        "videoId": video_id,
                        "url": watch_url(video_id),
                        "title": title,
                        "duration": duration,
                    }
                )
                if len(result.videos) >= limit:
                    break

            if len(result.videos) >= limit:
                result.limit_reached = True
                break

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        self.logger.info("Loaded playlist %s: %s", playlist_id, result.message)
        return result

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app_errors import InvalidTrackError

# The catalog hands out this id for songs whose row was never persisted.
NIL_TRACK_ID = "00000000-0000-0000-0000-000000000000"


@dataclass(frozen=True)
class Track:
    id: str
    title: str
    artist_id: str | None = None
    artist_name: str | None = None
    filename: str | None = None
    stream_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Track":
        artist = data.get("artist") or {}
        artist_name = artist.get("full_name") if isinstance(artist, dict) else None
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            artist_id=data.get("artist_id"),
            artist_name=artist_name,
            filename=data.get("filename"),
            stream_url=data.get("stream_url"),
        )

    @property
    def display_artist(self) -> str:
        return self.artist_name or "Unknown Artist"


def is_valid_track(track: Any) -> bool:
    if track is None:
        return False
    track_id = str(getattr(track, "id", "") or "").strip()
    title = str(getattr(track, "title", "") or "").strip()
    return bool(track_id and track_id != NIL_TRACK_ID and title)


def validate_track(track: Any) -> None:
    if not is_valid_track(track):
        raise InvalidTrackError(f"Cannot play invalid song: {getattr(track, 'id', None)!r}")


class PlaybackState:
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    ERRORED = "errored"


@dataclass(frozen=True)
class PlayerStatus:
    """Snapshot of the controller handed to UI listeners."""

    state: str = PlaybackState.IDLE
    track: Track | None = None
    position: float = 0.0
    duration: float | None = None
    volume: float = 1.0
    muted: bool = False
    repeat_one: bool = False
    shuffle: bool = False
    scrubbing: bool = False
    visualization: bool = False
    error: str | None = None
    error_kind: str | None = None

    @property
    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING


def format_time(seconds: float | None) -> str:
    try:
        total = int(max(0.0, float(seconds or 0.0)))
    except (TypeError, ValueError, OverflowError):
        total = 0
    return f"{total // 60}:{total % 60:02d}"

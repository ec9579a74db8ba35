from __future__ import annotations


class PlaybackError(Exception):
    kind = "unknown"
    retryable = False


class InvalidTrackError(PlaybackError, ValueError):
    kind = "invalid"


class StreamUnavailableError(PlaybackError):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
        self.reauth_required = status == 401
        if status == 401:
            self.kind = "auth"
        elif status == 404:
            self.kind = "not_found"
        elif status is not None and status >= 500:
            self.kind = "server"
        elif status is not None:
            self.kind = "client"
        else:
            self.kind = "network"
        self.retryable = self.kind in ("server", "network")


class AudioInitError(PlaybackError):
    kind = "audio_init"


class PlaybackRejectedError(PlaybackError):
    kind = "rejected"
    retryable = True
    guidance = "Playback was blocked. Press play again to start."


class TransportError(PlaybackError):
    kind = "media"
    retryable = True


def classify_exception(exc: Exception) -> str:
    if isinstance(exc, PlaybackError):
        return exc.kind
    text = str(exc).lower()
    if any(k in text for k in ("401", "403", "unauthorized", "forbidden", "login", "session expired", "token")):
        return "auth"
    if any(k in text for k in ("500", "502", "503", "504", "internal server error", "bad gateway", "service unavailable")):
        return "server"
    if any(k in text for k in ("timeout", "timed out", "connection", "network", "dns", "unreachable")):
        return "network"
    if any(k in text for k in ("404", "not found", "no such")):
        return "not_found"
    if any(k in text for k in ("busy", "in use", "resource busy")):
        return "busy"
    if any(k in text for k in ("json", "decode", "parse", "invalid")):
        return "parse"
    return "unknown"


def user_message(kind: str, context: str = "general") -> str:
    if context == "playback":
        mapping = {
            "invalid": "This song cannot be played.",
            "auth": "Playback unavailable. Please login again.",
            "server": "Streaming service is busy on server side. Please retry shortly.",
            "network": "Playback failed due to network issue.",
            "not_found": "Track stream is unavailable.",
            "client": "The server refused this stream request.",
            "rejected": PlaybackRejectedError.guidance,
            "media": "The audio stream could not be decoded. Please retry.",
            "busy": "Output device is busy. Try another device.",
            "unknown": "Playback failed. Please retry.",
        }
        return mapping.get(kind, mapping["unknown"])

    if context == "visualizer":
        mapping = {
            "audio_init": "Visualizer unavailable on this audio output.",
            "unknown": "Visualizer unavailable.",
        }
        return mapping.get(kind, mapping["unknown"])

    return "Operation failed. Please retry."

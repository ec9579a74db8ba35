from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Callable

from app_errors import (
    InvalidTrackError,
    PlaybackError,
    PlaybackRejectedError,
    StreamUnavailableError,
    TransportError,
)
from audio_graph import NO_VISUALIZATION
from models import PlaybackState, PlayerStatus, validate_track

logger = logging.getLogger(__name__)


class TransportEvent:
    TIME_UPDATE = "timeupdate"
    LOADED_METADATA = "loadedmetadata"
    ENDED = "ended"
    ERROR = "error"
    PLAY = "play"
    PAUSE = "pause"


def _run_inline(fn):
    fn()


def _dispatch_inline(fn, *args):
    fn(*args)


def _clamp(value, low, high):
    return max(low, min(high, value))


class PlaybackController:
    """
    Playback state machine driving one transport element.

    The transport must provide ``load(url)``, ``play()`` (raising when the
    output refuses to start), ``pause()``, ``stop()``, ``seek(seconds)``,
    ``set_volume(volume)`` and ``set_event_listener(callback)``; it reports
    media events back through ``handle_event``.

    Stream resolution runs through ``run_in_background`` and its result is
    applied via ``dispatch``, which must execute on the UI thread (e.g.
    ``GLib.idle_add``). Both default to running inline.
    """

    def __init__(
        self,
        transport,
        resolver,
        graph=None,
        visualizer=None,
        next_track_provider: Callable[[Any, bool], Any] | None = None,
        on_reauth_required: Callable[[StreamUnavailableError], None] | None = None,
        run_in_background: Callable[[Callable[[], None]], None] | None = None,
        dispatch: Callable[..., Any] | None = None,
        volume: float = 1.0,
        muted: bool = False,
        repeat_one: bool = False,
        shuffle: bool = False,
    ):
        self.transport = transport
        self.resolver = resolver
        self.graph = graph
        self.visualizer = visualizer
        self.next_track_provider = next_track_provider
        self.on_reauth_required = on_reauth_required
        self._run_in_background = run_in_background or _run_inline
        self._dispatch = dispatch or _dispatch_inline

        self._state = PlaybackState.IDLE
        self._track = None
        self._position = 0.0
        self._duration = None
        self._volume = _clamp(float(volume), 0.0, 1.0)
        self._muted = bool(muted)
        self._repeat_one = bool(repeat_one)
        self._shuffle = bool(shuffle)
        self._scrubbing = False
        self._error: PlaybackError | None = None
        self._attached_url = None
        self._visualization = NO_VISUALIZATION
        self._autoplay = True
        self._generation = 0
        self._closed = False
        self._listeners: list[Callable[[PlayerStatus], None]] = []

        self.transport.set_event_listener(self.handle_event)
        self._apply_volume()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def state(self) -> str:
        return self._state

    @property
    def current_track(self):
        return self._track

    @property
    def attached_url(self):
        return self._attached_url

    @property
    def generation(self) -> int:
        return self._generation

    def status(self) -> PlayerStatus:
        err = self._error
        return PlayerStatus(
            state=self._state,
            track=self._track,
            position=self._position,
            duration=self._duration,
            volume=self._volume,
            muted=self._muted,
            repeat_one=self._repeat_one,
            shuffle=self._shuffle,
            scrubbing=self._scrubbing,
            visualization=bool(self._visualization.visualization),
            error=str(err) if err is not None else None,
            error_kind=err.kind if err is not None else None,
        )

    def subscribe(self, listener: Callable[[PlayerStatus], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        if not self._listeners:
            return
        snapshot = self.status()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Playback listener failed")

    def _set_state(self, state: str):
        if state != self._state:
            logger.info("Playback state: %s -> %s", self._state, state)
            self._state = state
        if state != PlaybackState.ERRORED:
            self._error = None
        self._sync_visualizer()
        self._notify()

    def _sync_visualizer(self):
        if self.visualizer is None:
            return
        if self._state == PlaybackState.PLAYING and self._visualization.visualization:
            self.visualizer.start(self._visualization.analyser)
        else:
            self.visualizer.stop()

    # ------------------------------------------------------------------
    # Transport control
    # ------------------------------------------------------------------
    def play(self, track=None) -> Future:
        if self._closed:
            raise RuntimeError("Player is closed")
        if track is None:
            track = self._track
            if track is None:
                raise InvalidTrackError("No song selected")
        validate_track(track)

        same_track = self._track is not None and track.id == self._track.id
        # A rejected start leaves the stream attached; retrying only needs play().
        resumable = self._state in (PlaybackState.PAUSED, PlaybackState.PLAYING) or isinstance(
            self._error, PlaybackRejectedError
        )
        if same_track and self._attached_url and resumable:
            return self._resume()
        return self._load(track)

    def _resume(self) -> Future:
        future = Future()
        if self._state == PlaybackState.PLAYING:
            future.set_result(self.status())
            return future
        self._start_transport(future)
        return future

    def _load(self, track) -> Future:
        self._generation += 1
        generation = self._generation
        if self._state == PlaybackState.PLAYING:
            self._safe_transport("pause")
        self._track = track
        self._position = 0.0
        self._duration = None
        self._autoplay = True
        self._set_state(PlaybackState.LOADING)

        future = Future()
        resolver = self.resolver

        def task():
            try:
                url = resolver.resolve(track)
            except Exception as e:
                self._dispatch(self._apply_failure, generation, e, future)
            else:
                self._dispatch(self._apply_resolved, generation, url, future)

        self._run_in_background(task)
        return future

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _apply_resolved(self, generation, url, future):
        if self._is_stale(generation):
            logger.debug("Discarding stale stream for request %s (current %s)", generation, self._generation)
            self.resolver.release(url)
            future.cancel()
            return False

        previous = self._attached_url
        # Bind analysis first so a filter is in place before the transport prerolls.
        self._attach_visualization()
        try:
            self.transport.load(url)
        except Exception as e:
            logger.warning("Transport could not open %s: %s", url, e)
            self.resolver.release(url)
            self._detach_stream()
            self._fail(TransportError(f"Could not open stream: {e}"), future)
            return False
        self._attached_url = url
        if previous and previous != url:
            self.resolver.release(previous)
        self._apply_volume()

        if not self._autoplay:
            self._set_state(PlaybackState.PAUSED)
            future.set_result(self.status())
            return False
        self._start_transport(future)
        return False

    def _apply_failure(self, generation, exc, future):
        if self._is_stale(generation):
            logger.debug("Discarding stale resolution failure for request %s: %s", generation, exc)
            future.cancel()
            return False

        err = exc if isinstance(exc, PlaybackError) else StreamUnavailableError(str(exc))
        logger.warning("Stream unavailable for %s [%s]: %s", getattr(self._track, "id", None), err.kind, err)
        self._detach_stream()
        self._fail(err, future)
        if isinstance(err, StreamUnavailableError) and err.reauth_required and self.on_reauth_required:
            try:
                self.on_reauth_required(err)
            except Exception:
                logger.exception("Re-authentication hook failed")
        return False

    def _start_transport(self, future: Future):
        try:
            self.transport.play()
        except Exception as e:
            err = e if isinstance(e, PlaybackRejectedError) else PlaybackRejectedError(str(e) or "Playback was rejected")
            logger.warning("Transport refused to play: %s", err)
            self._safe_transport("pause")
            self._fail(err, future)
            return
        self._set_state(PlaybackState.PLAYING)
        if not future.done():
            future.set_result(self.status())

    def _fail(self, err: PlaybackError, future: Future | None = None):
        self._error = err
        self._set_state(PlaybackState.ERRORED)
        if future is not None and not future.done():
            future.set_exception(err)

    def _attach_visualization(self):
        if self.graph is None:
            return
        try:
            self.graph.resume()
            self._visualization = self.graph.connect(self.transport)
        except Exception as e:
            logger.warning("Visualizer unavailable, playing audio only: %s", e)
            self._visualization = NO_VISUALIZATION

    def _safe_transport(self, method: str, *args):
        try:
            getattr(self.transport, method)(*args)
        except Exception as e:
            logger.debug("Transport %s failed: %s", method, e)

    def _detach_stream(self):
        url = self._attached_url
        self._attached_url = None
        if url is None:
            return
        self._safe_transport("stop")
        self.resolver.release(url)

    def pause(self):
        if self._state == PlaybackState.LOADING:
            self._autoplay = False
            return
        if self._state != PlaybackState.PLAYING:
            return
        self.transport.pause()
        self._set_state(PlaybackState.PAUSED)

    def toggle(self):
        if self._state == PlaybackState.LOADING and not self._autoplay:
            self._autoplay = True
            return None
        if self._state in (PlaybackState.PLAYING, PlaybackState.LOADING):
            self.pause()
            return None
        return self.play()

    def stop(self):
        self._generation += 1
        self._detach_stream()
        self._position = 0.0
        self._scrubbing = False
        self._set_state(PlaybackState.IDLE)

    def close(self):
        if self._closed:
            return
        self.stop()
        self._closed = True
        self._safe_transport("set_event_listener", None)
        if self.graph is not None:
            self.graph.disconnect_current()
        self._visualization = NO_VISUALIZATION
        if self.visualizer is not None:
            self.visualizer.stop()
        self._track = None
        self._notify()
        self._listeners.clear()
        logger.info("Player closed")

    def seek(self, seconds: float):
        target = max(0.0, float(seconds))
        if self._duration:
            target = min(target, self._duration)
        if self._attached_url is not None:
            self.transport.seek(target)
        self._position = target
        self._notify()

    def begin_scrub(self):
        self._scrubbing = True
        self._notify()

    def scrub_to(self, seconds: float):
        target = max(0.0, float(seconds))
        if self._duration:
            target = min(target, self._duration)
        self._position = target
        self._notify()

    def end_scrub(self, seconds: float | None = None):
        self._scrubbing = False
        self.seek(self._position if seconds is None else seconds)

    def set_volume(self, volume: float):
        self._volume = _clamp(float(volume), 0.0, 1.0)
        self._apply_volume()
        self._notify()

    def set_muted(self, muted: bool):
        self._muted = bool(muted)
        self._apply_volume()
        self._notify()

    def set_repeat(self, repeat_one: bool):
        self._repeat_one = bool(repeat_one)
        self._notify()

    def set_shuffle(self, shuffle: bool):
        self._shuffle = bool(shuffle)
        self._notify()

    def _apply_volume(self):
        self._safe_transport("set_volume", 0.0 if self._muted else self._volume)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------
    def handle_event(self, event: str, value=None):
        if self._closed:
            return
        if event == TransportEvent.TIME_UPDATE:
            if self._scrubbing or self._attached_url is None:
                return
            try:
                self._position = max(0.0, float(value or 0.0))
            except (TypeError, ValueError):
                return
            self._notify()
        elif event == TransportEvent.LOADED_METADATA:
            try:
                duration = float(value)
            except (TypeError, ValueError):
                duration = 0.0
            self._duration = duration if duration > 0 else None
            self._notify()
        elif event == TransportEvent.ENDED:
            self._on_ended()
        elif event == TransportEvent.ERROR:
            self._on_transport_error(value)
        elif event == TransportEvent.PLAY:
            if self._state == PlaybackState.PAUSED:
                self._set_state(PlaybackState.PLAYING)
        elif event == TransportEvent.PAUSE:
            if self._state == PlaybackState.PLAYING:
                self._set_state(PlaybackState.PAUSED)
        else:
            logger.debug("Ignoring unknown transport event: %s", event)

    def _on_ended(self):
        if self._state not in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            return
        if self._duration:
            self._position = self._duration
        self._set_state(PlaybackState.ENDED)

        if self._repeat_one:
            self._position = 0.0
            self._set_state(PlaybackState.LOADING)
            self._safe_transport("seek", 0.0)
            self._start_transport(Future())
            return

        next_track = None
        if self.next_track_provider is not None:
            try:
                next_track = self.next_track_provider(self._track, self._shuffle)
            except Exception:
                logger.exception("Next-track provider failed")
        if next_track is not None:
            try:
                self.play(next_track)
                return
            except InvalidTrackError as e:
                logger.warning("Skipping invalid next track: %s", e)

        self._detach_stream()
        self._position = 0.0
        self._set_state(PlaybackState.IDLE)

    def _on_transport_error(self, message):
        if self._state in (PlaybackState.IDLE, PlaybackState.ERRORED):
            return
        self._safe_transport("pause")
        err = TransportError(str(message or "Media playback error"))
        logger.warning("Transport error while %s: %s", self._state, err)
        self._fail(err)

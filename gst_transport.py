import gi
import logging
from threading import Thread

gi.require_version('Gst', '1.0')
from gi.repository import Gst, GLib

from app_errors import PlaybackRejectedError
from playback_controller import TransportEvent

logger = logging.getLogger(__name__)


def run_in_thread(fn):
    Thread(target=fn, daemon=True).start()


def glib_dispatch(fn, *args):
    # Callbacks return False so idle_add runs them exactly once.
    GLib.idle_add(fn, *args)


class GstTransport:
    """
    Transport element backed by a GStreamer playbin.

    Bus messages and a position poll are translated into TransportEvent
    values for the single registered listener. Everything here runs on the
    GLib main loop.
    """

    def __init__(self, position_interval_ms=250):
        try:
            Gst.init(None)
        except Exception as e:
            logger.debug("GStreamer init skipped/failed: %s", e)

        self.pipeline = Gst.ElementFactory.make("playbin", "player")
        if self.pipeline is None:
            raise RuntimeError("GStreamer playbin element is not available")

        self.position_interval_ms = int(position_interval_ms)
        # Set by the analysis context that owns this element's audio-filter slot.
        self.analysis_owner = None
        self.audio_filter = None
        self.uri = None
        self._listener = None
        self._poll_id = None
        self._reported_duration = 0.0

        bus = self.pipeline.get_bus()
        bus.add_signal_watch()
        bus.connect("message", self._on_message)

    def set_event_listener(self, callback):
        self._listener = callback

    def _emit(self, event, value=None):
        listener = self._listener
        if listener is None:
            return
        try:
            listener(event, value)
        except Exception:
            logger.exception("Transport listener failed on %s", event)

    def load(self, uri):
        self._stop_polling()
        self.pipeline.set_state(Gst.State.NULL)
        self._reported_duration = 0.0
        self.uri = uri
        self.pipeline.set_property("uri", uri)
        # playsink only picks up a filter while it builds its chain.
        if self.audio_filter is not None:
            self.pipeline.set_property("audio-filter", self.audio_filter)
        # Preroll so duration becomes queryable before play() is issued.
        ret = self.pipeline.set_state(Gst.State.PAUSED)
        if ret == Gst.StateChangeReturn.FAILURE:
            raise RuntimeError(f"Pipeline refused to preroll {uri}")

    def play(self):
        ret = self.pipeline.set_state(Gst.State.PLAYING)
        if ret == Gst.StateChangeReturn.FAILURE:
            raise PlaybackRejectedError("Audio output refused to start")
        self._start_polling()

    def pause(self):
        self.pipeline.set_state(Gst.State.PAUSED)
        self._stop_polling()

    def stop(self):
        self._stop_polling()
        self.pipeline.set_state(Gst.State.NULL)
        self.uri = None

    def seek(self, position_seconds):
        self.pipeline.seek_simple(
            Gst.Format.TIME,
            Gst.SeekFlags.FLUSH | Gst.SeekFlags.KEY_UNIT,
            int(position_seconds * Gst.SECOND),
        )
        self._emit(TransportEvent.TIME_UPDATE, float(position_seconds))

    def set_volume(self, vol):
        self.pipeline.set_property("volume", float(vol))

    def _report_duration(self):
        try:
            ok, dur = self.pipeline.query_duration(Gst.Format.TIME)
        except Exception as e:
            logger.debug("Failed to query duration: %s", e)
            return
        if not ok or dur is None or dur <= 0:
            return
        seconds = dur / Gst.SECOND
        if abs(seconds - self._reported_duration) > 0.01:
            self._reported_duration = seconds
            self._emit(TransportEvent.LOADED_METADATA, seconds)

    def _start_polling(self):
        if self._poll_id is None:
            self._poll_id = GLib.timeout_add(self.position_interval_ms, self._poll_position)

    def _stop_polling(self):
        if self._poll_id is not None:
            GLib.source_remove(self._poll_id)
            self._poll_id = None

    def _poll_position(self):
        try:
            ok, pos = self.pipeline.query_position(Gst.Format.TIME)
        except Exception as e:
            logger.debug("Failed to query position: %s", e)
            return True
        if ok and pos is not None and pos >= 0:
            self._emit(TransportEvent.TIME_UPDATE, pos / Gst.SECOND)
        if self._reported_duration <= 0:
            self._report_duration()
        return True

    def _on_message(self, bus, message):
        t = message.type
        if t == Gst.MessageType.EOS:
            self._stop_polling()
            self._emit(TransportEvent.ENDED)

        elif t == Gst.MessageType.ERROR:
            err, debug = message.parse_error()
            logger.error("GStreamer error: code=%s msg=%s debug=%s", err.code, err.message, debug)
            self._stop_polling()
            self._emit(TransportEvent.ERROR, err.message)

        elif t in (Gst.MessageType.DURATION_CHANGED, Gst.MessageType.ASYNC_DONE):
            self._report_duration()

        elif t == Gst.MessageType.STATE_CHANGED and message.src == self.pipeline:
            old, new, pending = message.parse_state_changed()
            if pending != Gst.State.VOID_PENDING:
                return
            if new == Gst.State.PLAYING and old != Gst.State.PLAYING:
                self._emit(TransportEvent.PLAY)
            elif new == Gst.State.PAUSED and old == Gst.State.PLAYING:
                self._emit(TransportEvent.PAUSE)

    def cleanup(self):
        logger.info("Cleaning up audio resources...")
        self.stop()
        self._listener = None
        bus = self.pipeline.get_bus()
        if bus is not None:
            bus.remove_signal_watch()

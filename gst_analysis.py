import gi
import logging
import re

gi.require_version('Gst', '1.0')
from gi.repository import Gst

from visualizer import DEFAULT_MAX_DB, DEFAULT_MIN_DB, decibels_to_bytes

logger = logging.getLogger(__name__)


def _extract_spectrum_magnitudes(s):
    """Parse spectrum magnitude list with low overhead."""
    if not s:
        return []
    try:
        if not s.has_field("magnitude"):
            return []
        raw = s.get_value("magnitude")
        if raw is None:
            return []
        if isinstance(raw, (list, tuple)) or hasattr(raw, "__iter__"):
            return [float(v) for v in raw]
    except Exception as e:
        logger.debug("Spectrum magnitude read failed: %s", e)

    # Some GI builds only expose the value array through the string form.
    try:
        m = re.search(r"magnitude=.*?[\{<]\s*(.*?)\s*[\}>]", s.to_string())
        if not m:
            return []
        return [float(x.strip()) for x in m.group(1).split(",") if x.strip()]
    except Exception:
        return []


class _Destination:
    """The playbin's own audio sink; audio reaches it whether or not we connect."""

    def connect(self, node):
        return node

    def disconnect(self):
        pass


class SpectrumAnalyserNode:
    def __init__(self, context):
        self.context = context
        self.fft_size = 256
        self.min_decibels = DEFAULT_MIN_DB
        self.max_decibels = DEFAULT_MAX_DB
        self._magnitudes = None
        self._connected = False

    @property
    def frequency_bin_count(self):
        return int(self.fft_size) // 2

    def connect(self, node):
        self._connected = True
        return node

    def disconnect(self):
        self._connected = False
        self._magnitudes = None

    def push_magnitudes(self, magnitudes):
        self._magnitudes = magnitudes

    def get_byte_frequency_data(self, buffer):
        if self.context.state != "running":
            raise RuntimeError(f"analysis context is {self.context.state}")
        magnitudes = self._magnitudes
        if magnitudes is None:
            raise RuntimeError("no spectrum data received yet")
        decibels_to_bytes(magnitudes, buffer, self.min_decibels, self.max_decibels)


class MediaSourceNode:
    """Spectrum filter installed in a transport's playbin audio-filter slot."""

    def __init__(self, context, transport):
        self.context = context
        self.transport = transport
        self.target = None
        self.spectrum = Gst.ElementFactory.make("spectrum", None)
        if self.spectrum is None:
            raise RuntimeError("GStreamer spectrum element is not available")
        self._bus_handler = None

    def install(self, bands):
        self.spectrum.set_property("bands", int(bands))
        self.spectrum.set_property("threshold", int(DEFAULT_MIN_DB))
        self.spectrum.set_property("interval", 16 * Gst.MSECOND)
        self.set_messages(self.context.state == "running")
        self.transport.audio_filter = self.spectrum
        self.transport.pipeline.set_property("audio-filter", self.spectrum)
        bus = self.transport.pipeline.get_bus()
        self._bus_handler = bus.connect("message::element", self._on_element_message)

    def set_messages(self, enabled):
        spec_props = [p.name for p in self.spectrum.list_properties()]
        if "post-messages" in spec_props:
            self.spectrum.set_property("post-messages", bool(enabled))
        elif "message" in spec_props:
            self.spectrum.set_property("message", bool(enabled))

    def _on_element_message(self, bus, msg):
        target = self.target
        if target is None or msg.src != self.spectrum:
            return
        s = msg.get_structure()
        if s and s.get_name() == "spectrum":
            magnitudes = _extract_spectrum_magnitudes(s)
            if magnitudes:
                target.push_magnitudes(magnitudes)

    def connect(self, node):
        bands = int(getattr(node, "frequency_bin_count", 0) or 0)
        if bands > 0 and bands != self.spectrum.get_property("bands"):
            self.spectrum.set_property("bands", bands)
        self.target = node
        return node

    def disconnect(self):
        self.target = None

    def release(self):
        self.target = None
        self.set_messages(False)
        if self.transport.audio_filter is self.spectrum:
            self.transport.audio_filter = None
        if self._bus_handler is not None:
            bus = self.transport.pipeline.get_bus()
            if bus is not None:
                bus.disconnect(self._bus_handler)
            self._bus_handler = None


class GstAnalysisContext:
    """
    Audio analysis context for GstTransport elements.

    Starts suspended: spectrum messages only flow after ``resume()``. A
    transport's audio-filter slot holds one filter, so each transport can be
    bound to at most one context.
    """

    def __init__(self):
        try:
            Gst.init(None)
        except Exception as e:
            logger.debug("GStreamer init skipped/failed: %s", e)
        if Gst.ElementFactory.find("spectrum") is None:
            raise RuntimeError("GStreamer spectrum plugin (gst-plugins-good) is missing")
        self.state = "suspended"
        self.destination = _Destination()
        self._analysers = []
        self._sources = []

    def create_analyser(self):
        analyser = SpectrumAnalyserNode(self)
        self._analysers.append(analyser)
        return analyser

    def create_media_element_source(self, transport):
        if self.state == "closed":
            raise RuntimeError("analysis context is closed")
        if getattr(transport, "analysis_owner", None) is not None:
            raise RuntimeError("transport is already connected to an analysis context")
        source = MediaSourceNode(self, transport)
        source.install(128)
        transport.analysis_owner = self
        self._sources.append(source)
        return source

    def resume(self):
        if self.state == "closed":
            raise RuntimeError("analysis context is closed")
        self.state = "running"
        for source in self._sources:
            source.set_messages(True)

    def close(self):
        for source in self._sources:
            source.release()
        self._sources = []
        self._analysers = []
        self.state = "closed"

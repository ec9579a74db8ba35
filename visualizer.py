import logging

logger = logging.getLogger(__name__)

# Platform analyser defaults for mapping dB magnitudes onto a byte range.
DEFAULT_MIN_DB = -100.0
DEFAULT_MAX_DB = -30.0


def decibels_to_bytes(magnitudes, buffer, min_db=DEFAULT_MIN_DB, max_db=DEFAULT_MAX_DB):
    """Write dB magnitudes into ``buffer`` as 0..255 values; missing bins become 0."""
    span = float(max_db) - float(min_db)
    if span <= 0:
        span = 1.0
    count = len(buffer)
    n = min(count, len(magnitudes))
    for i in range(n):
        scaled = (float(magnitudes[i]) - min_db) / span * 255.0
        buffer[i] = int(max(0.0, min(255.0, scaled)))
    for i in range(n, count):
        buffer[i] = 0
    return buffer


def bins_to_bar_heights(buffer, bar_count, gain=0.8):
    """Average frequency bins into ``bar_count`` bars with heights in [0, 1]."""
    bar_count = max(1, int(bar_count))
    total = len(buffer)
    if total == 0:
        return [0.0] * bar_count

    heights = []
    for bar in range(bar_count):
        start = bar * total // bar_count
        end = max(start + 1, (bar + 1) * total // bar_count)
        chunk = buffer[start:min(end, total)]
        if not chunk:
            heights.append(0.0)
            continue
        avg = sum(chunk) / len(chunk)
        heights.append(max(0.0, min(1.0, avg / 255.0 * gain)))
    return heights


class VisualizerRenderer:
    """
    Per-frame sampling loop over an analyser.

    ``frame_scheduler`` provides ``request_frame(callback) -> handle`` and
    ``cancel_frame(handle)``; each request fires once, on the next displayed
    frame. The loop only runs between ``start()`` and ``stop()``.
    """

    def __init__(self, painter, frame_scheduler):
        self.painter = painter
        self.frame_scheduler = frame_scheduler
        self.frames_rendered = 0
        self.read_errors = 0
        self._analyser = None
        self._buffer = None
        self._handle = None
        self._loop_id = 0
        self._running = False
        self._error_logged = False

    @property
    def is_running(self):
        return self._running

    @property
    def buffer(self):
        return self._buffer

    def start(self, analyser):
        if self._running and analyser is self._analyser:
            return
        self.stop()
        self._analyser = analyser
        self._buffer = bytearray(int(getattr(analyser, "frequency_bin_count", 0) or 0))
        self._running = True
        self._error_logged = False
        self._loop_id += 1
        logger.debug("Visualizer loop %s started (%s bins)", self._loop_id, len(self._buffer))
        self._request_next()

    def stop(self):
        if not self._running:
            return
        self._running = False
        self._loop_id += 1
        handle = self._handle
        self._handle = None
        if handle is not None:
            try:
                self.frame_scheduler.cancel_frame(handle)
            except Exception as e:
                logger.debug("Failed to cancel frame request: %s", e)
        logger.debug("Visualizer loop stopped after %s frames", self.frames_rendered)

    def _request_next(self):
        loop_id = self._loop_id
        self._handle = self.frame_scheduler.request_frame(lambda: self._on_frame(loop_id))

    def _on_frame(self, loop_id):
        if not self._running or loop_id != self._loop_id:
            return
        self._handle = None
        try:
            self._analyser.get_byte_frequency_data(self._buffer)
        except Exception as e:
            # Analyser not ready yet (no samples flowed); try again next frame.
            self.read_errors += 1
            if not self._error_logged:
                logger.debug("Frequency data unavailable, skipping frame: %s", e)
                self._error_logged = True
        else:
            try:
                self.painter(self._buffer)
                self.frames_rendered += 1
            except Exception as e:
                logger.debug("Visualizer paint failed: %s", e)
        if self._running and loop_id == self._loop_id:
            self._request_next()

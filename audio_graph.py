from __future__ import annotations

import logging
import threading
import weakref
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable

from app_errors import AudioInitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectResult:
    visualization: bool
    analyser: Any = None
    reason: str | None = None


NO_VISUALIZATION = ConnectResult(False, None, "unavailable")


class AudioGraphManager:
    """
    Shared analysis graph: transport source -> analyser -> destination.

    One instance serves the whole process. The analysis context is created on
    first use and reused across track changes; only ``teardown()`` closes it.
    A transport element can be wrapped in a source node at most once per
    context, so created nodes are remembered per element and reused.
    """

    def __init__(self, context_factory: Callable[[], Any], fft_size: int = 256):
        self._context_factory = context_factory
        self.fft_size = int(fft_size)
        self._lock = threading.Lock()
        self._context = None
        self._context_future: Future | None = None
        self._analyser = None
        self._source = None
        self._element = None
        self._sources: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()
        self._unbindable: weakref.WeakSet = weakref.WeakSet()
        self.source_nodes_created = 0

    @property
    def analyser(self):
        return self._analyser

    @property
    def is_connected(self) -> bool:
        return self._source is not None

    def get_context(self):
        with self._lock:
            ctx = self._context
            if ctx is not None and getattr(ctx, "state", None) != "closed":
                return ctx
            if ctx is not None:
                # Closed underneath us; nodes from the old context are dead.
                self._forget_graph()
            future = self._context_future
            creator = future is None
            if creator:
                future = Future()
                self._context_future = future

        if not creator:
            return future.result()

        try:
            ctx = self._context_factory()
        except Exception as e:
            err = AudioInitError(f"Audio context creation failed: {e}")
            with self._lock:
                self._context_future = None
            future.set_exception(err)
            raise err from e

        with self._lock:
            self._context = ctx
            self._context_future = None
        logger.info("Audio analysis context created (state=%s)", getattr(ctx, "state", "?"))
        future.set_result(ctx)
        return ctx

    def resume(self) -> bool:
        ctx = self.get_context()
        if getattr(ctx, "state", None) == "suspended":
            try:
                ctx.resume()
            except Exception as e:
                logger.warning("Audio context resume failed: %s", e)
                return False
        return getattr(ctx, "state", None) == "running"

    def connect(self, element) -> ConnectResult:
        if element is self._element and self._source is not None:
            return ConnectResult(True, self._analyser)
        if element in self._unbindable:
            return NO_VISUALIZATION

        try:
            ctx = self.get_context()
        except AudioInitError as e:
            logger.warning("Visualizer disabled, no audio context: %s", e)
            return ConnectResult(False, None, str(e))

        source = self._sources.get(element)
        self.disconnect_current()
        if source is None:
            try:
                source = ctx.create_media_element_source(element)
            except Exception as e:
                logger.warning(
                    "Could not create media source, element may already be connected: %s", e
                )
                self._unbindable.add(element)
                return ConnectResult(False, None, str(e))
            self._sources[element] = source
            self.source_nodes_created += 1

        analyser = self._ensure_analyser(ctx)
        try:
            source.connect(analyser)
        except Exception as e:
            logger.warning("Could not connect media source to analyser: %s", e)
            return ConnectResult(False, None, str(e))

        self._source = source
        self._element = element
        logger.debug("Transport connected to analyser (%s bins)", getattr(analyser, "frequency_bin_count", "?"))
        return ConnectResult(True, analyser)

    def _ensure_analyser(self, ctx):
        if self._analyser is None:
            analyser = ctx.create_analyser()
            analyser.fft_size = self.fft_size
            analyser.connect(ctx.destination)
            self._analyser = analyser
        return self._analyser

    def disconnect_current(self) -> None:
        source = self._source
        self._source = None
        self._element = None
        if source is None:
            return
        try:
            source.disconnect()
        except Exception as e:
            logger.debug("Ignoring source disconnect error: %s", e)

    def _forget_graph(self) -> None:
        self._context = None
        self._analyser = None
        self._source = None
        self._element = None
        self._sources = weakref.WeakKeyDictionary()
        self._unbindable = weakref.WeakSet()

    def teardown(self) -> None:
        self.disconnect_current()
        analyser = self._analyser
        ctx = self._context
        if analyser is not None:
            try:
                analyser.disconnect()
            except Exception as e:
                logger.debug("Ignoring analyser disconnect error: %s", e)
        if ctx is not None and getattr(ctx, "state", None) != "closed":
            try:
                ctx.close()
            except Exception as e:
                logger.warning("Audio context close failed: %s", e)
        with self._lock:
            self._forget_graph()
        logger.info("Audio analysis graph torn down")

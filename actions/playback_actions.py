import logging
import random

from app_errors import PlaybackError

logger = logging.getLogger(__name__)


def _queue(app):
    return list(getattr(app, "track_list", []) or [])


def _current_index(app, total):
    current = getattr(app, "current_index", 0)
    if current is None or current < 0 or current >= total:
        return 0
    return current


def get_next_index(app, direction=1, shuffle=None, wrap=None):
    """
    Pick the queue index after ``app.current_index``.

    Shuffle only changes the pick, never the queue order. Returns -1 when the
    queue is empty or, without wrap-around, when moving past either end.
    """
    queue = _queue(app)
    total = len(queue)
    if total == 0:
        return -1

    current = _current_index(app, total)
    if shuffle is None:
        shuffle = bool(getattr(app, "shuffle", False))
    if wrap is None:
        wrap = bool(getattr(app, "queue_wrap", True))

    if shuffle and direction == 1:
        if total <= 1:
            return current if wrap else -1
        next_idx = random.randint(0, total - 1)
        while next_idx == current:
            next_idx = random.randint(0, total - 1)
        return next_idx

    target = current + direction
    if 0 <= target < total:
        return target
    if not wrap:
        return -1
    return target % total


def get_prev_index(app):
    return get_next_index(app, direction=-1, shuffle=False)


def play_index(app, index):
    queue = _queue(app)
    if index < 0 or index >= len(queue):
        return None
    app.current_index = index
    track = queue[index]
    logger.info("Playing queue item %s: %s", index, getattr(track, "title", "?"))
    try:
        return app.controller.play(track)
    except PlaybackError as e:
        logger.warning("Cannot play queue item %s: %s", index, e)
        return None


def on_play_pause(app, btn=None):
    controller = app.controller
    if controller.current_track is None:
        return play_index(app, _current_index(app, len(_queue(app))))
    return controller.toggle()


def on_next_track(app, btn=None):
    status = app.controller.status()
    next_idx = get_next_index(app, 1, shuffle=status.shuffle)
    if next_idx < 0:
        return None
    return play_index(app, next_idx)


def on_prev_track(app, btn=None):
    prev_idx = get_prev_index(app)
    if prev_idx < 0:
        return None
    return play_index(app, prev_idx)


def make_next_track_provider(app):
    """End-of-track hook for the controller: advances ``app`` and returns the track."""

    def provide(_track, shuffle):
        next_idx = get_next_index(app, 1, shuffle=shuffle)
        if next_idx < 0:
            return None
        app.current_index = next_idx
        return _queue(app)[next_idx]

    return provide


def on_seek_drag_begin(app, *_args):
    app.controller.begin_scrub()


def on_seek_drag_end(app, value):
    # drag-end can follow a cancel that already closed the scrub.
    if app.controller.status().scrubbing:
        app.controller.end_scrub(value)


def on_seek_value(app, value):
    if getattr(app, "is_programmatic_update", False):
        return False
    controller = app.controller
    if controller.status().scrubbing:
        controller.scrub_to(value)
    else:
        controller.seek(value)
    return False

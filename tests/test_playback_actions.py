from types import SimpleNamespace

from actions import playback_actions
from app_errors import InvalidTrackError
from fakes import FakeTransport, StaticResolver
from models import Track
from playback_controller import PlaybackController, TransportEvent


def _make_app(count=4, current=1, shuffle=False, wrap=True):
    app = SimpleNamespace()
    app.track_list = [Track(id=f"t{i}", title=f"Track {i}") for i in range(count)]
    app.current_index = current
    app.shuffle = shuffle
    app.queue_wrap = wrap
    app.played = []

    def play(track):
        app.played.append(track.id)
        return track.id

    app.controller = SimpleNamespace(
        play=play,
        current_track=None,
        toggle=lambda: app.played.append("toggle"),
        status=lambda: SimpleNamespace(shuffle=app.shuffle),
    )
    return app


def test_get_next_index_forward():
    assert playback_actions.get_next_index(_make_app(), 1) == 2


def test_get_next_index_backward_wrap():
    app = _make_app(current=0)
    assert playback_actions.get_next_index(app, -1) == 3


def test_get_next_index_stops_at_end_without_wrap():
    app = _make_app(current=3, wrap=False)
    assert playback_actions.get_next_index(app, 1) == -1
    app.current_index = 0
    assert playback_actions.get_prev_index(app) == -1


def test_get_next_index_invalid_current_recovers():
    app = _make_app(current=-1)
    assert playback_actions.get_next_index(app, 1) == 1


def test_get_next_index_empty_queue():
    assert playback_actions.get_next_index(_make_app(count=0, current=0), 1) == -1


def test_get_next_index_shuffle_not_same_track():
    app = _make_app(current=2, shuffle=True)
    for _ in range(30):
        next_idx = playback_actions.get_next_index(app, 1)
        assert 0 <= next_idx < len(app.track_list)
        assert next_idx != app.current_index


def test_shuffle_single_track_respects_wrap():
    assert playback_actions.get_next_index(_make_app(count=1, current=0, shuffle=True), 1) == 0
    assert playback_actions.get_next_index(_make_app(count=1, current=0, shuffle=True, wrap=False), 1) == -1


def test_on_next_and_prev_play_neighbours():
    app = _make_app()
    playback_actions.on_next_track(app)
    assert app.current_index == 2
    playback_actions.on_prev_track(app)
    assert app.played == ["t2", "t1"]


def test_play_pause_starts_queue_when_nothing_loaded():
    app = _make_app(current=3)
    playback_actions.on_play_pause(app)
    assert app.played == ["t3"]

    app.controller.current_track = app.track_list[3]
    playback_actions.on_play_pause(app)
    assert app.played == ["t3", "toggle"]


def test_play_index_swallows_playback_errors():
    app = _make_app()

    def reject(track):
        raise InvalidTrackError("bad")

    app.controller.play = reject
    assert playback_actions.play_index(app, 0) is None
    assert playback_actions.play_index(app, 10) is None


def test_next_track_provider_advances_current_index():
    app = _make_app(current=2, wrap=False)
    provide = playback_actions.make_next_track_provider(app)

    assert provide(app.track_list[2], False).id == "t3"
    assert app.current_index == 3
    assert provide(app.track_list[3], False) is None
    assert app.current_index == 3


def _seek_app():
    player = PlaybackController(FakeTransport(), StaticResolver())
    player.play(Track(id="t0", title="Track 0"))
    player.transport.emit(TransportEvent.LOADED_METADATA, 200.0)
    return SimpleNamespace(controller=player, is_programmatic_update=False), player


def test_seek_drag_scrubs_then_seeks_once_on_release():
    app, player = _seek_app()
    transport = player.transport

    playback_actions.on_seek_drag_begin(app)
    for value in (10.0, 40.0, 90.0):
        playback_actions.on_seek_value(app, value)
    assert transport.count("seek") == 0
    assert player.status().position == 90.0

    playback_actions.on_seek_drag_end(app, 90.0)
    assert player.status().scrubbing is False
    assert transport.calls[-1] == ("seek", 90.0)

    transport.tick(91.0)
    assert player.status().position == 91.0


def test_seek_drag_end_after_cancel_does_not_seek_twice():
    app, player = _seek_app()
    playback_actions.on_seek_drag_begin(app)
    playback_actions.on_seek_drag_end(app, 50.0)
    playback_actions.on_seek_drag_end(app, 50.0)
    assert player.transport.count("seek") == 1


def test_seek_value_without_drag_seeks_directly_and_ignores_programmatic_updates():
    app, player = _seek_app()
    playback_actions.on_seek_value(app, 30.0)
    assert player.transport.calls[-1] == ("seek", 30.0)

    app.is_programmatic_update = True
    playback_actions.on_seek_value(app, 60.0)
    assert player.transport.count("seek") == 1

import pytest

from app_errors import InvalidTrackError, PlaybackRejectedError, StreamUnavailableError, TransportError
from audio_graph import AudioGraphManager
from fakes import FakeContext, FakeTransport, ManualFrameScheduler, ManualJobs, StaticResolver
from models import NIL_TRACK_ID, PlaybackState, Track
from playback_controller import PlaybackController, TransportEvent
from visualizer import VisualizerRenderer

SONG_A = Track(id="a", title="First")
SONG_B = Track(id="b", title="Second")


def _player(transport=None, resolver=None, **kwargs):
    transport = transport or FakeTransport()
    resolver = resolver or StaticResolver()
    return PlaybackController(transport, resolver, **kwargs), transport, resolver


def test_play_resolves_loads_and_starts():
    player, transport, resolver = _player()
    future = player.play(SONG_A)

    assert player.state == PlaybackState.PLAYING
    assert resolver.resolved == ["a"]
    assert ("load", player.attached_url) in transport.calls
    assert transport.calls[-1] == ("play",)
    assert future.result().state == PlaybackState.PLAYING


def test_invalid_track_raises_before_any_work():
    player, transport, resolver = _player()
    with pytest.raises(InvalidTrackError):
        player.play(Track(id=NIL_TRACK_ID, title="Ghost"))
    with pytest.raises(InvalidTrackError):
        player.play()
    assert player.state == PlaybackState.IDLE
    assert resolver.resolved == []
    assert transport.count("load") == 0


def test_latest_request_wins_and_stale_url_is_released():
    jobs = ManualJobs()
    player, transport, resolver = _player(run_in_background=jobs)

    first = player.play(SONG_A)
    second = player.play(SONG_B)
    assert player.state == PlaybackState.LOADING
    jobs.run_all()

    assert first.cancelled()
    assert second.result().track == SONG_B
    assert transport.count("load") == 1
    assert player.current_track == SONG_B
    assert resolver.released == ["file:///tmp/gotify-a-1.bin"]


def test_stale_result_arriving_last_is_discarded():
    jobs = ManualJobs()
    player, transport, resolver = _player(run_in_background=jobs)

    player.play(SONG_A)
    player.play(SONG_B)
    jobs.jobs.reverse()
    jobs.run_all()

    assert player.current_track == SONG_B
    assert player.attached_url == "file:///tmp/gotify-b-1.bin"
    assert transport.count("load") == 1
    assert resolver.released == ["file:///tmp/gotify-a-2.bin"]


def test_switching_track_releases_previous_url():
    player, transport, resolver = _player()
    player.play(SONG_A)
    old_url = player.attached_url
    player.play(SONG_B)

    assert resolver.released == [old_url]
    assert player.attached_url != old_url


def test_rejected_start_marks_errored_and_pauses():
    transport = FakeTransport(reject_play=True)
    player, _, _ = _player(transport=transport)

    future = player.play(SONG_A)
    status = player.status()
    assert status.state == PlaybackState.ERRORED
    assert status.error_kind == "rejected"
    assert transport.count("pause") == 1
    assert isinstance(future.exception(), PlaybackRejectedError)


def test_retry_after_rejection_does_not_resolve_again():
    transport = FakeTransport(reject_play=True)
    player, _, resolver = _player(transport=transport)
    player.play(SONG_A)

    transport.reject_play = False
    player.toggle()
    assert player.state == PlaybackState.PLAYING
    assert player.status().error is None
    assert resolver.resolved == ["a"]


def test_pause_then_resume_keeps_position_without_reload():
    player, transport, resolver = _player()
    player.play(SONG_A)
    transport.tick(42.0)

    player.pause()
    assert player.state == PlaybackState.PAUSED
    player.play(SONG_A)

    assert player.state == PlaybackState.PLAYING
    assert player.status().position == 42.0
    assert transport.count("load") == 1
    assert transport.count("seek") == 0
    assert resolver.resolved == ["a"]


def test_pause_while_loading_lands_paused():
    jobs = ManualJobs()
    player, transport, _ = _player(run_in_background=jobs)
    future = player.play(SONG_A)
    player.pause()
    jobs.run_all()

    assert player.state == PlaybackState.PAUSED
    assert transport.count("play") == 0
    assert future.result().state == PlaybackState.PAUSED


def test_resolution_failure_stops_previous_stream():
    resolver = StaticResolver()
    player, transport, _ = _player(resolver=resolver)
    player.play(SONG_A)
    old_url = player.attached_url

    resolver.fail = StreamUnavailableError("gone", status=404)
    future = player.play(SONG_B)

    status = player.status()
    assert status.state == PlaybackState.ERRORED
    assert status.error_kind == "not_found"
    assert old_url in resolver.released
    assert player.attached_url is None
    assert transport.count("stop") == 1
    assert isinstance(future.exception(), StreamUnavailableError)


def test_unauthorized_stream_calls_reauth_hook():
    seen = []
    resolver = StaticResolver(fail=StreamUnavailableError("Authentication failed", status=401))
    player, _, _ = _player(resolver=resolver, on_reauth_required=seen.append)
    player.play(SONG_A)

    assert player.status().error_kind == "auth"
    assert len(seen) == 1 and seen[0].reauth_required


def test_unexpected_resolver_exception_is_wrapped():
    player, _, _ = _player(resolver=StaticResolver(fail=OSError("disk full")))
    future = player.play(SONG_A)
    assert player.state == PlaybackState.ERRORED
    assert isinstance(future.exception(), StreamUnavailableError)


def test_transport_load_failure_releases_url():
    transport = FakeTransport()
    transport.fail_load = True
    player, _, resolver = _player(transport=transport)
    future = player.play(SONG_A)

    assert player.status().error_kind == "media"
    assert resolver.released == ["file:///tmp/gotify-a-1.bin"]
    assert isinstance(future.exception(), TransportError)


def test_mute_is_independent_of_volume():
    player, transport, _ = _player(volume=0.6)
    player.set_muted(True)
    assert transport.volume == 0.0

    player.set_volume(0.3)
    assert transport.volume == 0.0
    assert player.status().volume == 0.3

    player.set_muted(False)
    assert transport.volume == 0.3


def test_volume_is_clamped():
    player, transport, _ = _player()
    player.set_volume(1.7)
    assert transport.volume == 1.0
    player.set_volume(-1)
    assert transport.volume == 0.0


def test_scrubbing_ignores_time_updates_and_seeks_on_release():
    player, transport, _ = _player()
    player.play(SONG_A)
    transport.emit(TransportEvent.LOADED_METADATA, 100.0)
    transport.tick(5.0)

    player.begin_scrub()
    transport.tick(6.0)
    assert player.status().position == 5.0

    player.scrub_to(150.0)
    assert player.status().position == 100.0
    player.scrub_to(50.0)
    assert transport.count("seek") == 0

    player.end_scrub()
    assert transport.calls[-1] == ("seek", 50.0)
    assert player.status().scrubbing is False
    transport.tick(51.0)
    assert player.status().position == 51.0


def test_seek_clamps_to_duration():
    player, transport, _ = _player()
    player.play(SONG_A)
    transport.emit(TransportEvent.LOADED_METADATA, 100.0)

    player.seek(150.0)
    assert transport.calls[-1] == ("seek", 100.0)
    player.seek(-5)
    assert transport.calls[-1] == ("seek", 0.0)


def test_zero_duration_metadata_is_unknown():
    player, transport, _ = _player()
    player.play(SONG_A)
    transport.emit(TransportEvent.LOADED_METADATA, 0)
    assert player.status().duration is None


def test_repeat_one_replays_without_resolving_again():
    player, transport, resolver = _player(repeat_one=True)
    player.play(SONG_A)
    transport.tick(30.0)
    transport.emit(TransportEvent.ENDED)

    assert player.state == PlaybackState.PLAYING
    assert resolver.resolved == ["a"]
    assert ("seek", 0.0) in transport.calls
    assert transport.count("play") == 2
    assert player.status().position == 0.0


def test_ended_advances_through_next_track_provider():
    asked = []

    def provider(track, shuffle):
        asked.append((track.id, shuffle))
        return SONG_B

    player, transport, resolver = _player(next_track_provider=provider, shuffle=True)
    player.play(SONG_A)
    first_url = player.attached_url
    transport.emit(TransportEvent.ENDED)

    assert asked == [("a", True)]
    assert player.current_track == SONG_B
    assert player.state == PlaybackState.PLAYING
    assert first_url in resolver.released


def test_ended_without_next_goes_idle_and_releases():
    player, transport, resolver = _player(next_track_provider=lambda t, s: None)
    player.play(SONG_A)
    url = player.attached_url
    transport.emit(TransportEvent.ENDED)

    assert player.state == PlaybackState.IDLE
    assert resolver.released == [url]
    assert player.current_track == SONG_A


def test_transport_error_event_fails_playback():
    player, transport, _ = _player()
    player.play(SONG_A)
    transport.emit(TransportEvent.ERROR, "decoder failed")

    status = player.status()
    assert status.state == PlaybackState.ERRORED
    assert status.error_kind == "media"
    assert transport.calls[-1] == ("pause",)


def test_stop_keeps_track_but_detaches_stream():
    player, transport, resolver = _player()
    player.play(SONG_A)
    url = player.attached_url
    player.stop()

    assert player.state == PlaybackState.IDLE
    assert player.current_track == SONG_A
    assert player.attached_url is None
    assert resolver.released == [url]


def test_close_discards_late_resolution():
    jobs = ManualJobs()
    player, transport, resolver = _player(run_in_background=jobs)
    future = player.play(SONG_A)
    player.close()
    jobs.run_all()

    assert future.cancelled()
    assert transport.count("load") == 0
    assert resolver.released == ["file:///tmp/gotify-a-1.bin"]
    with pytest.raises(RuntimeError):
        player.play(SONG_A)


def test_listeners_receive_snapshots_and_failures_are_isolated():
    player, _, _ = _player()
    states = []

    def broken(_status):
        raise RuntimeError("ui gone")

    player.subscribe(broken)
    unsubscribe = player.subscribe(lambda s: states.append(s.state))
    player.play(SONG_A)
    unsubscribe()
    player.pause()

    assert states == [PlaybackState.LOADING, PlaybackState.PLAYING]


def _visual_player(context_factory):
    scheduler = ManualFrameScheduler()
    painted = []
    graph = AudioGraphManager(context_factory, fft_size=64)
    visualizer = VisualizerRenderer(painted.append, scheduler)
    player, transport, resolver = _player(graph=graph, visualizer=visualizer)
    return player, transport, visualizer, scheduler, painted


def test_visualizer_runs_only_while_playing():
    ctx = FakeContext()
    player, transport, visualizer, scheduler, painted = _visual_player(lambda: ctx)

    player.play(SONG_A)
    assert ctx.state == "running"
    assert player.status().visualization is True
    assert visualizer.is_running
    scheduler.run_frame()
    assert len(painted) == 1

    player.pause()
    assert not visualizer.is_running
    assert scheduler.pending == {}


def test_track_changes_reuse_one_source_node():
    ctx = FakeContext()
    player, transport, _, _, _ = _visual_player(lambda: ctx)
    player.play(SONG_A)
    player.play(SONG_B)
    player.play(SONG_A)
    assert len(ctx.sources) == 1


def test_audio_plays_when_analysis_is_unavailable():
    def factory():
        raise OSError("no analysis backend")

    player, transport, visualizer, _, _ = _visual_player(factory)
    player.play(SONG_A)

    assert player.state == PlaybackState.PLAYING
    assert player.status().visualization is False
    assert not visualizer.is_running


def test_toggle_while_loading_restores_autoplay():
    jobs = ManualJobs()
    player, transport, _ = _player(run_in_background=jobs)
    player.play(SONG_A)
    player.toggle()
    player.toggle()
    jobs.run_all()

    assert player.state == PlaybackState.PLAYING
    assert transport.count("play") == 1


def test_transport_bound_elsewhere_still_plays_audio_only():
    ctx = FakeContext()
    player, transport, visualizer, _, _ = _visual_player(lambda: ctx)
    transport.analysis_owner = object()

    player.play(SONG_A)

    assert player.state == PlaybackState.PLAYING
    assert player.status().visualization is False
    assert not visualizer.is_running
    assert ctx.sources == []


def test_analysis_is_bound_before_the_stream_is_loaded():
    loads_at_bind = []

    class RecordingContext(FakeContext):
        def create_media_element_source(self, element):
            loads_at_bind.append(element.count("load"))
            return super().create_media_element_source(element)

    ctx = RecordingContext()
    player, transport, _, _, _ = _visual_player(lambda: ctx)
    player.play(SONG_A)

    assert loads_at_bind == [0]
    assert transport.count("load") == 1

import logging

from audio_graph import AudioGraphManager
from playback_controller import PlaybackController
from stream_source import StreamSourceResolver
from visualizer import VisualizerRenderer

logger = logging.getLogger(__name__)


def create_resolver(settings, token_provider, session=None, object_urls=None):
    return StreamSourceResolver(
        settings["api_base_url"],
        token_provider,
        mode=settings["stream_auth_mode"],
        session=session,
        object_urls=object_urls,
        token_param=settings["stream_token_param"],
        timeout=settings["stream_timeout_s"],
        retry_attempts=settings["stream_retry_attempts"],
    )


def create_player(
    settings,
    transport,
    token_provider,
    context_factory=None,
    painter=None,
    frame_scheduler=None,
    graph=None,
    next_track_provider=None,
    on_reauth_required=None,
    run_in_background=None,
    dispatch=None,
    session=None,
    object_urls=None,
):
    """
    Build a PlaybackController configured from normalized ``settings``.

    Visualization is wired only when enabled and when an analysis context
    source (``graph`` or ``context_factory``), a painter and a frame scheduler
    are all available; otherwise the player runs audio-only.
    """
    resolver = create_resolver(settings, token_provider, session=session, object_urls=object_urls)

    visualizer = None
    if settings.get("visualizer_enabled") and painter is not None and frame_scheduler is not None:
        if graph is None and context_factory is not None:
            graph = AudioGraphManager(context_factory, fft_size=settings["viz_fft_size"])
        if graph is not None:
            visualizer = VisualizerRenderer(painter, frame_scheduler)
    if visualizer is None:
        graph = None
        logger.info("Visualizer disabled; audio-only playback")

    return PlaybackController(
        transport,
        resolver,
        graph=graph,
        visualizer=visualizer,
        next_track_provider=next_track_provider,
        on_reauth_required=on_reauth_required,
        run_in_background=run_in_background,
        dispatch=dispatch,
        volume=settings["volume"] / 100.0,
        muted=settings["muted"],
        repeat_one=settings["repeat_one"],
        shuffle=settings["shuffle"],
    )

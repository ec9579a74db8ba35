import argparse
import logging
import os
from threading import Thread

import gi
gi.require_version('Gtk', '4.0')
gi.require_version('Adw', '1')
from gi.repository import Gtk, Adw, GLib

from actions import playback_actions
from app_errors import user_message
from app_logging import setup_logging
from app_settings import DEFAULT_SETTINGS_PATH, load_settings, save_settings as persist_settings
from catalog import CatalogClient, TokenStore
from gst_analysis import GstAnalysisContext
from gst_transport import GstTransport, glib_dispatch, run_in_thread
from models import PlaybackState, format_time
from player_setup import create_player
from ui.spectrum_view import FrameClockScheduler, SpectrumView

logger = logging.getLogger(__name__)

APP_ID = "io.gotify.Player"
WINDOW_WIDTH = 720
WINDOW_HEIGHT = 320


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="gotify-player", description="Gotify desktop player")
    parser.add_argument("track_ids", nargs="*", help="song ids to queue (default: whole catalog)")
    parser.add_argument("--api", dest="api_base_url", help="API base URL, e.g. http://localhost:8080/api/v1")
    parser.add_argument("--token", help="bearer token to store and use")
    parser.add_argument("--settings", default=DEFAULT_SETTINGS_PATH, help="settings file path")
    parser.add_argument("--no-visualizer", action="store_true", help="play audio only")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


class GotifyApp(Adw.Application):
    def __init__(self, args):
        super().__init__(application_id=APP_ID)
        self.args = args
        self.settings_file = os.path.expanduser(args.settings)
        self.settings = load_settings(self.settings_file)
        if args.api_base_url:
            self.settings["api_base_url"] = args.api_base_url.rstrip("/")
        if args.no_visualizer:
            self.settings["visualizer_enabled"] = False

        self.token_store = TokenStore()
        if args.token:
            self.token_store.save(args.token)
        self.catalog = CatalogClient(self.settings["api_base_url"], token_store=self.token_store)

        self.track_list = []
        self.current_index = -1
        self.shuffle = self.settings["shuffle"]
        self.queue_wrap = self.settings["queue_wrap"]
        self.controller = None
        self.transport = None
        self.win = None
        self.is_programmatic_update = False
        self._unsubscribe = None

    def do_activate(self):
        if self.win is not None:
            self.win.present()
            return

        self.win = Adw.ApplicationWindow(
            application=self,
            title="Gotify",
            default_width=WINDOW_WIDTH,
            default_height=WINDOW_HEIGHT,
        )
        self.win.connect("close-request", self.on_window_close_request)

        root = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=8)
        for side in ("top", "bottom", "start", "end"):
            getattr(root, f"set_margin_{side}")(12)
        self.win.set_content(root)

        self.title_label = Gtk.Label(label="Nothing playing", xalign=0)
        self.title_label.add_css_class("title-3")
        self.artist_label = Gtk.Label(label="", xalign=0)
        self.artist_label.add_css_class("dim-label")
        root.append(self.title_label)
        root.append(self.artist_label)

        self.spectrum = SpectrumView(bar_count=self.settings["viz_bar_count"])
        self.spectrum.set_vexpand(True)
        root.append(self.spectrum)

        root.append(self._build_progress_row())
        root.append(self._build_controls_row())

        self.status_label = Gtk.Label(label="", xalign=0)
        self.status_label.add_css_class("error")
        root.append(self.status_label)

        self._create_player()
        self.win.present()
        self._load_queue()

    def _build_progress_row(self):
        row = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL, spacing=8)
        self.pos_label = Gtk.Label(label="0:00")
        self.scale = Gtk.Scale.new_with_range(Gtk.Orientation.HORIZONTAL, 0, 1, 1)
        self.scale.set_draw_value(False)
        self.scale.set_hexpand(True)
        self.scale.connect("change-value", lambda _s, _scroll, value: playback_actions.on_seek_value(self, value))

        # A drag gesture sees both ends of a slider drag; a click gesture resets
        # once the pointer moves past the drag threshold.
        drag = Gtk.GestureDrag()
        drag.set_propagation_phase(Gtk.PropagationPhase.CAPTURE)
        drag.connect("drag-begin", lambda *_a: playback_actions.on_seek_drag_begin(self))
        drag.connect("drag-end", lambda *_a: playback_actions.on_seek_drag_end(self, self.scale.get_value()))
        drag.connect("cancel", lambda *_a: playback_actions.on_seek_drag_end(self, self.scale.get_value()))
        self.scale.add_controller(drag)

        self.dur_label = Gtk.Label(label="0:00")
        row.append(self.pos_label)
        row.append(self.scale)
        row.append(self.dur_label)
        return row

    def _build_controls_row(self):
        row = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL, spacing=6)

        self.prev_btn = Gtk.Button(icon_name="media-skip-backward-symbolic")
        self.prev_btn.connect("clicked", lambda b: playback_actions.on_prev_track(self, b))
        self.play_btn = Gtk.Button(icon_name="media-playback-start-symbolic")
        self.play_btn.connect("clicked", lambda b: playback_actions.on_play_pause(self, b))
        self.next_btn = Gtk.Button(icon_name="media-skip-forward-symbolic")
        self.next_btn.connect("clicked", lambda b: playback_actions.on_next_track(self, b))

        self.repeat_btn = Gtk.ToggleButton(icon_name="media-playlist-repeat-song-symbolic")
        self.repeat_btn.set_active(self.settings["repeat_one"])
        self.repeat_btn.connect("toggled", self.on_repeat_toggled)
        self.shuffle_btn = Gtk.ToggleButton(icon_name="media-playlist-shuffle-symbolic")
        self.shuffle_btn.set_active(self.settings["shuffle"])
        self.shuffle_btn.connect("toggled", self.on_shuffle_toggled)
        self.mute_btn = Gtk.ToggleButton(icon_name="audio-volume-muted-symbolic")
        self.mute_btn.set_active(self.settings["muted"])
        self.mute_btn.connect("toggled", self.on_mute_toggled)

        self.vol_scale = Gtk.Scale.new_with_range(Gtk.Orientation.HORIZONTAL, 0, 100, 1)
        self.vol_scale.set_draw_value(False)
        self.vol_scale.set_size_request(120, -1)
        self.vol_scale.set_value(self.settings["volume"])
        self.vol_scale.connect("value-changed", self.on_volume_changed)

        for w in (self.prev_btn, self.play_btn, self.next_btn, self.repeat_btn,
                  self.shuffle_btn, self.mute_btn, self.vol_scale):
            row.append(w)
        return row

    def _create_player(self):
        self.transport = GstTransport(position_interval_ms=self.settings["position_poll_ms"])
        self.controller = create_player(
            self.settings,
            self.transport,
            self.token_store.get,
            context_factory=GstAnalysisContext,
            painter=self.spectrum.paint,
            frame_scheduler=FrameClockScheduler(self.spectrum),
            next_track_provider=playback_actions.make_next_track_provider(self),
            on_reauth_required=self.on_reauth_required,
            run_in_background=run_in_thread,
            dispatch=glib_dispatch,
        )
        self._unsubscribe = self.controller.subscribe(self.on_status_changed)
        self.on_status_changed(self.controller.status())

    def _load_queue(self):
        track_ids = list(self.args.track_ids or [])

        def task():
            if track_ids:
                tracks = [t for t in (self.catalog.get_song(i) for i in track_ids) if t is not None]
            else:
                tracks = self.catalog.list_songs()
            GLib.idle_add(self._on_queue_loaded, tracks)

        Thread(target=task, daemon=True).start()

    def _on_queue_loaded(self, tracks):
        self.track_list = list(tracks)
        self.current_index = 0 if self.track_list else -1
        logger.info("Queue loaded: %s tracks", len(self.track_list))
        if not self.track_list:
            self.status_label.set_text("No songs available.")
        return False

    def on_status_changed(self, status):
        track = status.track
        self.title_label.set_text(track.title if track else "Nothing playing")
        self.artist_label.set_text(track.display_artist if track else "")

        icon = "media-playback-pause-symbolic" if status.state in (
            PlaybackState.PLAYING, PlaybackState.LOADING) else "media-playback-start-symbolic"
        self.play_btn.set_icon_name(icon)

        if not status.scrubbing:
            self.is_programmatic_update = True
            self.scale.set_range(0, max(1.0, status.duration or 0.0))
            self.scale.set_value(status.position)
            self.is_programmatic_update = False
        self.pos_label.set_text(format_time(status.position))
        self.dur_label.set_text(format_time(status.duration))

        if status.state == PlaybackState.ERRORED:
            self.status_label.set_text(user_message(status.error_kind or "unknown", "playback"))
        else:
            self.status_label.set_text("")
        if status.is_playing and not status.visualization and self.settings["visualizer_enabled"]:
            self.status_label.set_text(user_message("audio_init", "visualizer"))
        if not status.visualization or not status.is_playing:
            self.spectrum.clear()

    def on_repeat_toggled(self, btn):
        self.settings["repeat_one"] = btn.get_active()
        self.controller.set_repeat(btn.get_active())

    def on_shuffle_toggled(self, btn):
        self.shuffle = btn.get_active()
        self.settings["shuffle"] = self.shuffle
        self.controller.set_shuffle(self.shuffle)

    def on_mute_toggled(self, btn):
        self.settings["muted"] = btn.get_active()
        self.controller.set_muted(btn.get_active())

    def on_volume_changed(self, scale):
        value = int(scale.get_value())
        self.settings["volume"] = value
        self.controller.set_volume(value / 100.0)

    def on_reauth_required(self, err):
        logger.warning("Stream server rejected the token; login required: %s", err)
        self.token_store.clear()
        self.status_label.set_text(user_message("auth", "playback"))

    def save_settings(self):
        try:
            persist_settings(self.settings_file, self.settings)
        except Exception as e:
            logger.warning("Failed to save settings to %s: %s", self.settings_file, e)

    def on_window_close_request(self, win):
        self.save_settings()
        return False

    def do_shutdown(self):
        logger.info("Shutting down application...")
        self.save_settings()
        if self.controller is not None:
            if self._unsubscribe is not None:
                self._unsubscribe()
            self.controller.close()
            if self.controller.graph is not None:
                self.controller.graph.teardown()
            self.controller.resolver.object_urls.revoke_all()
        if self.transport is not None:
            self.transport.cleanup()
        super().do_shutdown()


def main(argv=None):
    args = parse_args(argv)
    setup_logging("DEBUG" if args.debug else None)
    return GotifyApp(args).run(None)


if __name__ == "__main__":
    raise SystemExit(main())

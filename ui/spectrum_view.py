import gi
gi.require_version('Gtk', '4.0')
from gi.repository import Gtk
import cairo
import math

from visualizer import bins_to_bar_heights


class FrameClockScheduler:
    """One-shot frame requests on a widget's frame clock."""

    def __init__(self, widget):
        self.widget = widget

    def request_frame(self, callback):
        def _tick(_widget, _clock):
            callback()
            return False

        return self.widget.add_tick_callback(_tick)

    def cancel_frame(self, handle):
        self.widget.remove_tick_callback(handle)


class SpectrumView(Gtk.DrawingArea):
    """Bar spectrum painted from analyser byte buffers."""

    def __init__(self, bar_count=64):
        super().__init__()
        self.set_draw_func(self._draw_callback, None)
        self.set_size_request(-1, 120)

        self.num_bars = max(1, int(bar_count))
        self.current_heights = [0.0] * self.num_bars

    def paint(self, buffer):
        targets = bins_to_bar_heights(buffer, self.num_bars)
        for i, target in enumerate(targets):
            # 0.45 keeps bars responsive without flicker.
            self.current_heights[i] += (target - self.current_heights[i]) * 0.45
        self.queue_draw()

    def clear(self):
        self.current_heights = [0.0] * self.num_bars
        self.queue_draw()

    def _draw_callback(self, area, cr, width, height, data=None):
        cr.set_line_width(1.0)
        cr.set_source_rgba(1.0, 1.0, 1.0, 0.02)
        for frac in (0.25, 0.5, 0.75):
            y = height * frac
            cr.move_to(0, y)
            cr.line_to(width, y)
            cr.stroke()

        n = self.num_bars
        spacing = 1.5
        bar_w = max(1.0, (width - (n - 1) * spacing) / n)

        gradient = cairo.LinearGradient(0, 0, width, 0)
        gradient.add_color_stop_rgba(0.0, 0x8B / 255, 0x5C / 255, 0xF6 / 255, 1.0)
        gradient.add_color_stop_rgba(0.5, 0x63 / 255, 0x66 / 255, 0xF1 / 255, 1.0)
        gradient.add_color_stop_rgba(1.0, 0x3B / 255, 0x82 / 255, 0xF6 / 255, 1.0)
        cr.set_source(gradient)

        for i in range(n):
            h_ratio = self.current_heights[i]
            if h_ratio < 0.001:
                continue

            h = max(1.0, min(h_ratio * height, height))
            x = i * (bar_w + spacing)
            y = max(0.0, height - h)

            radius = bar_w / 2
            if h > bar_w:
                cr.move_to(x + radius, y)
                cr.line_to(x + bar_w - radius, y)
                cr.arc(x + bar_w - radius, y + radius, radius, -math.pi / 2, 0)
                cr.line_to(x + bar_w, height)
                cr.line_to(x, height)
                cr.line_to(x, y + radius)
                cr.arc(x + radius, y + radius, radius, math.pi, 1.5 * math.pi)
            else:
                cr.rectangle(x, y, bar_w, h)
            cr.fill()

from __future__ import annotations

import html

import ipywidgets as w

from valve_speed_analyzer.analysis.session_log import Level, SessionLog


class HtmlLog(SessionLog):
    """
    Notebook-stable session log rendered into a single HTML widget.

    Features (on top of :class:`SessionLog`):
      - severity coloring: warnings in orange, errors in red
      - coalesced messages shown with an (xN) suffix
      - write() helper that classifies plain-text lines by prefix
    """

    def __init__(self, *, title: str | None = None, height_px: int = 220, max_entries: int = 2000) -> None:
        self._height_px = int(height_px)
        self.widget = w.HTML()
        super().__init__(max_entries=max_entries)
        if title:
            self.panel = w.VBox([w.HTML(f"<b>{html.escape(str(title))}</b>"), self.widget])
        else:
            self.panel = self.widget
        self._render()

    def write(self, message: str) -> None:
        txt = "" if message is None else str(message)
        for line in txt.splitlines() or [""]:
            self._add(self._classify(line), line)

    # -------------------------
    # Internals
    # -------------------------
    @staticmethod
    def _classify(line: str) -> Level:
        s = (line or "").lstrip()
        if s.startswith(("ERROR:", "Error:", "Exception:", "Traceback")):
            return "error"
        if s.startswith(("WARNING:", "Warning:", "WARN", "DetectionDegraded")):
            return "warning"
        return "info"

    def _changed(self) -> None:
        self._render()

    def _render(self) -> None:
        def color(level: Level) -> str:
            if level == "error":
                return "#b00020"
            if level == "warning":
                return "#b26a00"
            return "#222222"

        rows = []
        for e in self._entries:
            txt = html.escape(e.message)
            suffix = f" (x{e.count})" if e.count > 1 else ""
            rows.append(
                f"<div style='color:{color(e.level)}; white-space:pre-wrap; "
                f"font-family:ui-monospace, Menlo, Consolas, monospace;'>{txt}{html.escape(suffix)}</div>"
            )

        inner = "".join(rows) if rows else "<div style='color:#666;'>Log is empty.</div>"
        self.widget.value = (
            f"<div style='border:1px solid #ddd; padding:8px; height:{self._height_px}px; "
            f"overflow-y:auto; background:#fff;'>{inner}</div>"
        )

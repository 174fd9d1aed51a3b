"""GUI package - interactive ipywidgets interface.

Entry point:
    from valve_speed_analyzer.analysis.session import SpeedCheckSession
    from valve_speed_analyzer.gui.log_view import HtmlLog
    from valve_speed_analyzer.gui.review_panel import build_review_panel

    session = SpeedCheckSession(log=HtmlLog(title="Log"))
    session.ingest(waveforms)
    build_review_panel(session)

Design principles:
- Every edit requires re-approval: recalculating an approved file frees its voltage
- The panel never patches state itself; it calls the session and re-renders
"""

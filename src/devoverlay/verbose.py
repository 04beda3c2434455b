"""One-line tracing of raw stream events, enabled with ``--verbose``."""

import logging

event_logger = logging.getLogger("devoverlay.events")


def truncate(text: str, limit: int = 200) -> str:
    one_line = text.replace("\n", "\\n")
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "..."


def log_event(event_type: str, detail: str = "") -> None:
    """Trace a stream event. No-op unless the events logger is at DEBUG."""
    if not event_logger.isEnabledFor(logging.DEBUG):
        return
    if detail:
        event_logger.debug("%-14s %s", event_type, truncate(detail))
    else:
        event_logger.debug("%s", event_type)


def set_verbose(enabled: bool) -> None:
    event_logger.setLevel(logging.DEBUG if enabled else logging.INFO)

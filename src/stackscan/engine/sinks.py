"""Default log sinks for job lifecycle events."""

from __future__ import annotations

import logging

from stackscan.engine.models import JobLogEvent, LogSink

logger = logging.getLogger("stackscan.engine")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_job_event(event: JobLogEvent) -> None:
    """Forward a job event to the ``stackscan.engine`` logger."""

    logger.log(
        _LEVELS.get(event.level, logging.INFO),
        "[%s %s] %s",
        event.kind,
        event.job_id,
        event.message,
    )


def fan_out(*sinks: LogSink) -> LogSink:
    """Combine sinks so that one failing sink does not starve the others."""

    def _sink(event: JobLogEvent) -> None:
        for sink in sinks:
            try:
                sink(event)
            except Exception:  # noqa: BLE001
                logger.debug("Log sink %r failed for job %s", sink, event.job_id, exc_info=True)

    return _sink

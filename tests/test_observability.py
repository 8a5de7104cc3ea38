from __future__ import annotations

import json
import logging
import sys

from procexec.execution.local_exec import LocalExecutor
from procexec.util.observability import EventLogger, MetricsCollector, create_observability_manager


def test_metrics_collector_snapshot() -> None:
    metrics = MetricsCollector()
    metrics.increment("process.executions", 2)
    metrics.record_duration("process.duration", 1.5)
    metrics.record_duration("process.duration", 0.5)

    snapshot = metrics.snapshot()

    assert snapshot["counters"]["process.executions"] == 2
    assert snapshot["durations"]["process.duration"]["count"] == 2.0
    assert snapshot["durations"]["process.duration"]["avg_s"] == 1.0
    assert snapshot["durations"]["process.duration"]["max_s"] == 1.5


def test_event_logger_emits_json(caplog) -> None:
    logger = EventLogger("test.events", context={"component": "engine"})
    caplog.set_level(logging.INFO, logger="test.events")

    logger.log("process.started", {"pid": 42})

    assert caplog.records
    payload = json.loads(caplog.records[-1].message)
    assert payload["event_type"] == "process.started"
    assert payload["payload"]["pid"] == 42
    assert payload["context"]["component"] == "engine"


def test_manager_tracks_duration() -> None:
    manager = create_observability_manager()

    with manager.track_duration("block"):
        pass

    assert manager.metrics.snapshot()["durations"]["block"]["count"] == 1.0


def test_executor_emits_lifecycle_events(caplog) -> None:
    caplog.set_level(logging.INFO, logger="procexec.events")

    LocalExecutor().execute(sys.executable, ["-c", "pass"])

    event_types = [
        json.loads(record.message)["event_type"]
        for record in caplog.records
        if record.name == "procexec.events"
    ]
    assert event_types == ["process.started", "process.finished"]

from __future__ import annotations

import json
import threading
from pathlib import Path

from convoy.core.events import EventStream, JsonlEventSink, event_from_dict, read_events
from convoy.core.events.models import MergeBlocked, MergeQueued, TrainHalted


def test_emit_assigns_increasing_sequence_numbers() -> None:
    stream = EventStream()

    first = stream.emit(MergeQueued(task_id="T1", commit="abc"))
    second = stream.emit(TrainHalted(reason="blocked"))

    assert (first.seq, second.seq) == (1, 2)
    assert stream.types() == ["parallel:merge-queued", "parallel:train-halted"]


def test_failing_listener_does_not_stop_delivery() -> None:
    stream = EventStream()
    seen = []

    def broken(_record) -> None:
        raise RuntimeError("listener bug")

    stream.subscribe(broken)
    stream.subscribe(seen.append)

    stream.emit(TrainHalted(reason="x"))

    assert [r.type for r in seen] == ["parallel:train-halted"]


def test_unsubscribe_stops_delivery() -> None:
    stream = EventStream()
    seen = []
    unsubscribe = stream.subscribe(seen.append)

    stream.emit(TrainHalted(reason="one"))
    unsubscribe()
    stream.emit(TrainHalted(reason="two"))

    assert len(seen) == 1


def test_listeners_observe_a_total_order_across_threads() -> None:
    stream = EventStream()
    seen = []
    stream.subscribe(lambda r: seen.append(r.seq))

    def emit_many() -> None:
        for i in range(50):
            stream.emit(MergeQueued(task_id=f"T{i}", commit="c"))

    threads = [threading.Thread(target=emit_many) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert seen == list(range(1, 201))


def test_record_round_trips_through_dict() -> None:
    stream = EventStream()
    record = stream.emit(
        MergeBlocked(
            task_id="T2",
            commit="def456",
            attempts_used=2,
            conflict_files=("src/a.py",),
            reason="Conflicts remain",
            escalation="block",
        )
    )

    payload = record.to_dict()
    assert payload["type"] == "parallel:merge-blocked"
    assert payload["conflict_files"] == ["src/a.py"]

    restored = event_from_dict(json.loads(json.dumps(payload)))
    assert restored == record


def test_jsonl_sink_appends_in_emission_order(tmp_path: Path) -> None:
    log_path = tmp_path / ".convoy" / "parallel-events.jsonl"
    stream = EventStream()
    JsonlEventSink(log_path).attach(stream)

    stream.emit(MergeQueued(task_id="T1", commit="abc"))
    stream.emit(TrainHalted(reason="blocked", task_id="T1"))

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["type"] for line in lines] == ["parallel:merge-queued", "parallel:train-halted"]
    assert [r.seq for r in read_events(log_path)] == [1, 2]


def test_jsonl_sink_type_filter(tmp_path: Path) -> None:
    log_path = tmp_path / "events.jsonl"
    stream = EventStream()
    JsonlEventSink(log_path, types=["parallel:train-halted"]).attach(stream)

    stream.emit(MergeQueued(task_id="T1", commit="abc"))
    stream.emit(TrainHalted(reason="stop"))

    assert [r.type for r in read_events(log_path)] == ["parallel:train-halted"]


def test_read_events_skips_malformed_lines(tmp_path: Path) -> None:
    log_path = tmp_path / "events.jsonl"
    log_path.write_text(
        '{"type": "parallel:train-halted", "seq": 1, "timestamp": "t", "reason": "x"}\n'
        "not json\n"
        '{"type": "parallel:unknown", "seq": 2, "timestamp": "t"}\n',
        encoding="utf-8",
    )

    records = read_events(log_path)

    assert [r.seq for r in records] == [1]

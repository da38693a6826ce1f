"""Tests for the transmission log and its SQLite storage."""

from __future__ import annotations

import sqlite3

import pytest

from skyrelay.core.errors import InvalidInput, StorageNotInitialized, StorageUnavailable
from skyrelay.core.models import DetectionInput, Location, TransmissionReport
from skyrelay.core.transmission_log import MAX_QUERY_LIMIT, TransmissionLog, normalize_limit


def _report(slave_id="S1", master_id="M1", timestamp=None, detections=0, **kwargs):
    return TransmissionReport(
        slave_id=slave_id,
        master_id=master_id,
        timestamp=timestamp,
        detections=tuple(DetectionInput(id=f"{slave_id}-d{i}") for i in range(detections)),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_append_defaults_and_received_at(ready_storage, clock):
    log = TransmissionLog(ready_storage, clock=clock)
    stored, events = await log.append(_report(detections=2))

    assert stored.record_id == 1
    assert stored.location == Location(0.0, 0.0, 0.0)
    assert stored.detections_count == 2
    assert stored.timestamp == "2025-06-01T12:00:00.000Z"
    assert stored.received_at == "2025-06-01T12:00:00.000Z"
    assert stored.battery_level is None


@pytest.mark.asyncio
async def test_append_keeps_caller_timestamp(ready_storage, clock):
    log = TransmissionLog(ready_storage, clock=clock)
    stored, _ = await log.append(_report(timestamp="2024-01-01T00:00:00.000Z"))

    assert stored.timestamp == "2024-01-01T00:00:00.000Z"
    assert stored.received_at == "2025-06-01T12:00:00.000Z"


@pytest.mark.asyncio
async def test_append_event_omits_detection_contents(ready_storage, clock):
    log = TransmissionLog(ready_storage, clock=clock)
    _, events = await log.append(_report(
        detections=3,
        location=Location(lat=45.5, lng=-73.6, altitude=120.0),
        battery_level=87.0,
        isac_mode="sensing",
        signal_strength=-61.0,
        data_rate=12.5,
    ))

    assert [e.name for e in events] == ["transmission_received"]
    payload = events[0].payload
    assert payload == {
        "slaveId": "S1",
        "masterId": "M1",
        "location": {"lat": 45.5, "lng": -73.6, "altitude": 120.0},
        "batteryLevel": 87.0,
        "isacMode": "sensing",
        "signalStrength": -61.0,
        "dataRate": 12.5,
        "detectionsCount": 3,
        "timestamp": "2025-06-01T12:00:00.000Z",
    }
    assert "detections" not in payload


@pytest.mark.asyncio
@pytest.mark.parametrize("slave_id, master_id", [("", "M1"), ("S1", ""), ("  ", "M1")])
async def test_append_rejects_missing_ids(ready_storage, slave_id, master_id):
    log = TransmissionLog(ready_storage)
    with pytest.raises(InvalidInput):
        await log.append(_report(slave_id=slave_id, master_id=master_id))
    assert await log.query_by_master("M1") == []


@pytest.mark.asyncio
async def test_query_orders_by_caller_timestamp_not_arrival(ready_storage):
    log = TransmissionLog(ready_storage)
    await log.append(_report(timestamp="2025-01-01T00:00:02.000Z"))
    await log.append(_report(timestamp="2025-01-01T00:00:01.000Z"))
    await log.append(_report(timestamp="2025-01-01T00:00:03.000Z"))

    rows = await log.query_by_master("M1")
    assert [r.timestamp for r in rows] == [
        "2025-01-01T00:00:03.000Z",
        "2025-01-01T00:00:02.000Z",
        "2025-01-01T00:00:01.000Z",
    ]


@pytest.mark.asyncio
async def test_query_ties_broken_by_arrival(ready_storage):
    log = TransmissionLog(ready_storage)
    for slave in ("S1", "S2", "S3"):
        await log.append(_report(slave_id=slave, timestamp="2025-01-01T00:00:00.000Z"))

    rows = await log.query_by_master("M1")
    assert [r.slave_id for r in rows] == ["S1", "S2", "S3"]


@pytest.mark.asyncio
async def test_query_window_is_latest_arrivals(ready_storage):
    log = TransmissionLog(ready_storage)
    # Arrival order 1..4; the oldest arrival carries the newest timestamp.
    await log.append(_report(slave_id="old", timestamp="2030-01-01T00:00:00.000Z"))
    for i in range(3):
        await log.append(_report(slave_id=f"S{i}", timestamp=f"2025-01-01T00:00:0{i}.000Z"))

    rows = await log.query_by_master("M1", limit=3)
    assert len(rows) == 3
    assert "old" not in {r.slave_id for r in rows}


@pytest.mark.asyncio
async def test_query_by_master_and_slave_are_scoped(ready_storage):
    log = TransmissionLog(ready_storage)
    await log.append(_report(slave_id="S1", master_id="M1"))
    await log.append(_report(slave_id="S1", master_id="M2"))
    await log.append(_report(slave_id="S2", master_id="M1"))

    assert {r.slave_id for r in await log.query_by_master("M1")} == {"S1", "S2"}
    assert {r.master_id for r in await log.query_by_slave("S1")} == {"M1", "M2"}
    assert await log.query_by_master("M3") == []


@pytest.mark.parametrize("raw, expected", [
    (None, 100), (0, 100), (-5, 100), ("abc", 100), (True, 100), (2.5, 100),
    (7, 7), ("25", 25),
    ("99999999999999999999", MAX_QUERY_LIMIT), (10**30, MAX_QUERY_LIMIT),
])
def test_normalize_limit(raw, expected):
    assert normalize_limit(raw) == expected


@pytest.mark.asyncio
async def test_invalid_limit_falls_back_to_default(ready_storage):
    log = TransmissionLog(ready_storage, default_limit=2)
    for i in range(4):
        await log.append(_report(timestamp=f"2025-01-01T00:00:0{i}.000Z"))

    assert len(await log.query_by_master("M1", limit=-1)) == 2
    assert len(await log.query_by_master("M1", limit=3)) == 3


@pytest.mark.asyncio
async def test_distinct_slaves_most_recent_first(ready_storage):
    log = TransmissionLog(ready_storage)
    await log.append(_report(slave_id="S1", timestamp="2025-01-01T00:00:05.000Z"))
    await log.append(_report(slave_id="S2", timestamp="2025-01-01T00:00:09.000Z"))
    await log.append(_report(slave_id="S3", timestamp="2025-01-01T00:00:01.000Z"))
    await log.append(_report(slave_id="S1", timestamp="2025-01-01T00:00:07.000Z"))
    await log.append(_report(slave_id="S4", master_id="M2"))

    assert await log.distinct_slaves("M1") == ["S2", "S1", "S3"]


@pytest.mark.asyncio
async def test_distinct_slaves_tie_broken_by_latest_arrival(ready_storage):
    log = TransmissionLog(ready_storage)
    await log.append(_report(slave_id="B", timestamp="2025-01-01T00:00:00.000Z"))
    await log.append(_report(slave_id="A", timestamp="2025-01-01T00:00:00.000Z"))

    assert await log.distinct_slaves("M1") == ["A", "B"]


@pytest.mark.asyncio
async def test_uninitialized_reads_return_empty_and_initialize(storage):
    log = TransmissionLog(storage)

    with pytest.raises(StorageNotInitialized):
        await storage.query_by_master("M1", 10)

    assert await log.query_by_master("M1") == []
    # The miss initialized the schema; the adapter now answers directly.
    assert await storage.query_by_master("M1", 10) == []

    assert await log.distinct_slaves("M1") == []
    assert await log.query_by_slave("S1") == []


@pytest.mark.asyncio
async def test_uninitialized_write_initializes_and_retries(storage):
    log = TransmissionLog(storage)
    stored, _ = await log.append(_report())

    assert stored.record_id == 1
    assert [r.record_id for r in await log.query_by_master("M1")] == [1]


@pytest.mark.asyncio
async def test_recovers_from_out_of_band_reset(ready_storage):
    log = TransmissionLog(ready_storage)
    await log.append(_report())

    with sqlite3.connect(ready_storage.db_path) as conn:
        conn.execute("DROP TABLE transmissions")

    assert await log.query_by_master("M1") == []
    stored, _ = await log.append(_report(slave_id="S9"))
    assert [r.slave_id for r in await log.query_by_master("M1")] == ["S9"]
    assert stored.slave_id == "S9"


class _NeverReadyStorage:
    """Storage whose schema creation silently does nothing."""

    def __init__(self) -> None:
        self.initialize_calls = 0
        self.append_calls = 0

    async def initialize(self) -> None:
        self.initialize_calls += 1

    async def append(self, report, timestamp, received_at):
        self.append_calls += 1
        raise StorageNotInitialized("transmissions")


@pytest.mark.asyncio
async def test_write_retries_exactly_once():
    storage = _NeverReadyStorage()
    log = TransmissionLog(storage)

    with pytest.raises(StorageUnavailable):
        await log.append(_report())

    assert storage.initialize_calls == 1
    assert storage.append_calls == 2


@pytest.mark.asyncio
async def test_huge_limit_returns_whole_window(ready_storage):
    log = TransmissionLog(ready_storage)
    for i in range(3):
        await log.append(_report(slave_id=f"S{i}"))

    assert len(await log.query_by_master("M1", limit="99999999999999999999")) == 3


@pytest.mark.asyncio
async def test_append_stores_stripped_identifiers(ready_storage):
    log = TransmissionLog(ready_storage)
    stored, events = await log.append(_report(slave_id=" S1 ", master_id="\tM1 "))

    assert (stored.slave_id, stored.master_id) == ("S1", "M1")
    assert events[0].payload["masterId"] == "M1"
    assert [r.slave_id for r in await log.query_by_master("M1")] == ["S1"]
    assert await log.distinct_slaves("M1") == ["S1"]


@pytest.mark.asyncio
async def test_constraint_violation_is_storage_unavailable(ready_storage):
    # Bypasses report parsing, which never produces NaN coordinates.
    report = _report(location=Location(lat=float("nan")))

    with pytest.raises(StorageUnavailable):
        await ready_storage.append(report, "2025-01-01T00:00:00.000Z", "2025-01-01T00:00:00.000Z")


@pytest.mark.parametrize("raw", [float("inf"), float("-inf"), float("nan"), "nan", "Infinity", 1e999])
def test_report_treats_non_finite_numbers_as_missing(raw):
    report = TransmissionReport.from_dict({
        "slaveId": "S1",
        "masterId": "M1",
        "location": {"lat": raw, "lng": raw, "altitude": raw},
        "batteryLevel": raw,
        "signalStrength": raw,
        "dataRate": raw,
        "detections": [{"confidence": raw}],
    })

    assert report.location == Location(0.0, 0.0, 0.0)
    assert report.battery_level is None
    assert report.signal_strength is None
    assert report.data_rate is None
    assert report.detections[0].confidence is None

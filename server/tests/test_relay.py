"""Tests for detection relay and its per-detection failure isolation."""

from __future__ import annotations

import pytest

from skyrelay.core.errors import InvalidInput, StorageUnavailable
from skyrelay.core.models import DetectionInput, Location, StoredTransmission
from skyrelay.core.relay import DetectionRelay, build_detection_record


def _transmission(**kwargs):
    defaults = dict(
        record_id=1,
        slave_id="slave-7",
        master_id="master-1",
        location=Location(lat=45.5, lng=-73.6, altitude=80.0),
        battery_level=66.0,
        isac_mode="sensing",
        signal_strength=-70.0,
        data_rate=4.0,
        detections_count=0,
        timestamp="2025-06-01T11:59:00.000Z",
        received_at="2025-06-01T12:00:00.000Z",
    )
    defaults.update(kwargs)
    return StoredTransmission(**defaults)


class FlakySink:
    """Detection store that fails for the detection ids it is told to."""

    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.stored = []

    async def store_detection(self, record):
        if record.id in self.fail_ids:
            raise StorageUnavailable(f"cannot store {record.id}")
        self.stored.append(record)
        return record


def test_record_defaults():
    record = build_detection_record(_transmission(), DetectionInput(), id_factory=lambda: "gen-1")

    assert record.id == "gen-1"
    assert record.detection_type == "human"
    assert record.status == "detected"
    assert record.timestamp == "2025-06-01T11:59:00.000Z"
    assert record.reporting_unit_id == "slave-7"
    assert record.additional_info is None


def test_record_keeps_supplied_fields():
    detection = DetectionInput(
        id="d-42",
        coordinates={"lat": 1.0, "lng": 2.0},
        confidence=0.91,
        type="vehicle",
        timestamp="2025-06-01T11:58:30.000Z",
        additional_info={"thermal": True},
    )
    record = build_detection_record(_transmission(), detection)

    assert record.id == "d-42"
    assert record.detection_type == "vehicle"
    assert record.timestamp == "2025-06-01T11:58:30.000Z"
    assert record.confidence == 0.91
    assert record.additional_info == {"thermal": True}


def test_reporting_unit_is_never_the_master():
    record = build_detection_record(_transmission(slave_id="s", master_id="m"), DetectionInput(id="x"))
    assert record.reporting_unit_id == "s"


@pytest.mark.asyncio
async def test_second_of_three_fails():
    sink = FlakySink(fail_ids={"d2"})
    relay = DetectionRelay(sink)
    detections = [DetectionInput(id=f"d{i}") for i in (1, 2, 3)]

    outcome = await relay.relay(_transmission(), detections)

    assert [r.id for r in sink.stored] == ["d1", "d3"]
    assert outcome.relayed == 2
    assert outcome.failed == 1
    assert outcome.partial_failure
    assert [e.payload["detection"]["id"] for e in outcome.events] == ["d1", "d3"]


@pytest.mark.asyncio
async def test_event_carries_unit_metadata(clock):
    relay = DetectionRelay(FlakySink(), clock=clock)
    outcome = await relay.relay(_transmission(), [DetectionInput(id="d1")])

    event = outcome.events[0]
    assert event.name == "detection_relayed"
    assert event.payload["unitData"] == {
        "unitId": "slave-7",
        "location": {"lat": 45.5, "lng": -73.6, "altitude": 80.0},
        "isacMode": "sensing",
        "signalStrength": -70.0,
        "source": "slave",
    }
    assert event.payload["detection"]["reportingUnitId"] == "slave-7"


@pytest.mark.asyncio
async def test_no_detections_is_a_no_op():
    sink = FlakySink()
    outcome = await DetectionRelay(sink).relay(_transmission(), [])

    assert outcome.relayed == 0
    assert outcome.failed == 0
    assert outcome.events == []


@pytest.mark.asyncio
async def test_relay_into_sqlite_store(ready_storage):
    relay = DetectionRelay(ready_storage)
    outcome = await relay.relay(
        _transmission(),
        [DetectionInput(id="a", coordinates={"lat": 1, "lng": 2}), DetectionInput(id="a")],
    )

    # Duplicate id is rejected by the store; the first one stays relayed.
    assert outcome.relayed == 1
    assert outcome.failed == 1
    assert await ready_storage.count_detections("slave-7") == 1
    assert await ready_storage.count_detections("master-1") == 0


@pytest.mark.asyncio
async def test_duplicate_detection_id_is_invalid_input(ready_storage):
    record = build_detection_record(_transmission(), DetectionInput(id="dup"))
    await ready_storage.store_detection(record)

    with pytest.raises(InvalidInput, match="dup"):
        await ready_storage.store_detection(record)

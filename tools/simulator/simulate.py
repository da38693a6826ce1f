#!/usr/bin/env python3
"""SkyRelay fleet traffic simulator.

Designates a master unit, then has N slave units sweep a search area and
report telemetry (and the occasional detection) to it. At the end the
master uploads its own state and the consolidated picture is printed.

Usage:
    # 5 slaves over Montreal for 2 minutes
    python -m tools.simulator.simulate --server http://localhost:8000 --slaves 5 --duration 120

    # Stress test: 40 slaves, fast reporting
    python -m tools.simulator.simulate --slaves 40 --reports-per-minute 60

    # Search area elsewhere
    python -m tools.simulator.simulate --center 48.8566,2.3522
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import random
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

BASE = "/api/v1/master-slave"
ISAC_MODES = ("communication", "sensing", "joint")


@dataclass
class SimUnit:
    unit_id: str
    lat: float
    lng: float
    altitude: float
    heading: float
    speed_mps: float
    battery: float = 100.0
    reports_sent: int = 0
    detections_sent: int = 0
    errors: int = 0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_detection(unit: SimUnit) -> dict:
    """A possible survivor near the unit's current position."""
    return {
        "id": str(uuid.uuid4()),
        "coordinates": {
            "lat": unit.lat + random.uniform(-0.0003, 0.0003),
            "lng": unit.lng + random.uniform(-0.0003, 0.0003),
        },
        "confidence": round(random.uniform(0.5, 0.99), 2),
        "type": random.choices(["human", "animal", "vehicle"], weights=[80, 15, 5])[0],
        "timestamp": _now_iso(),
    }


def make_report(unit: SimUnit, master_id: str, detection_rate: float) -> dict:
    """Create one slave transmission payload."""
    detections = []
    if random.random() < detection_rate:
        detections.append(make_detection(unit))

    signal = -50 - random.uniform(0, 40)
    return {
        "slaveId": unit.unit_id,
        "masterId": master_id,
        "location": {
            "lat": round(unit.lat, 6),
            "lng": round(unit.lng, 6),
            "altitude": round(unit.altitude, 1),
        },
        "batteryLevel": round(unit.battery, 1),
        "isacMode": random.choice(ISAC_MODES),
        "signalStrength": round(signal, 1),
        "dataRate": round(max(0.5, (signal + 100) / 4), 2),
        "detections": detections,
        "timestamp": _now_iso(),
    }


def move_unit(unit: SimUnit, dt_seconds: float) -> None:
    """Fly along the current heading with gentle turns, draining battery."""
    unit.heading = (unit.heading + random.uniform(-20, 20)) % 360
    unit.speed_mps = max(4.0, min(18.0, unit.speed_mps + random.uniform(-1, 1)))
    unit.altitude = max(30.0, min(150.0, unit.altitude + random.uniform(-3, 3)))
    unit.battery = max(0.0, unit.battery - random.uniform(0.05, 0.2) * dt_seconds / 10)

    distance_m = unit.speed_mps * dt_seconds
    heading_rad = math.radians(unit.heading)

    # Approximate: 1 degree latitude ≈ 111,000 m
    dlat = (distance_m * math.cos(heading_rad)) / 111_000
    dlng = (distance_m * math.sin(heading_rad)) / (111_000 * math.cos(math.radians(unit.lat)))

    unit.lat += dlat
    unit.lng += dlng


async def run_slave(
    client: httpx.AsyncClient,
    unit: SimUnit,
    master_id: str,
    server_url: str,
    reports_per_minute: float,
    duration_seconds: float,
    detection_rate: float,
) -> None:
    """Simulate a single slave reporting to the master."""
    interval = 60.0 / reports_per_minute
    end_time = time.monotonic() + duration_seconds

    while time.monotonic() < end_time:
        move_unit(unit, interval)
        payload = make_report(unit, master_id, detection_rate)

        try:
            resp = await client.post(
                f"{server_url}{BASE}/slave-data",
                content=json.dumps(payload),
                headers={"content-type": "application/json"},
            )
            if resp.status_code == 200:
                unit.reports_sent += 1
                unit.detections_sent += len(payload["detections"])
            else:
                unit.errors += 1
        except httpx.RequestError:
            unit.errors += 1

        await asyncio.sleep(interval)


def _scatter(center_lat: float, center_lng: float, radius_km: float, unit_id: str) -> SimUnit:
    angle = random.uniform(0, 2 * math.pi)
    dist_km = random.uniform(0, radius_km)
    return SimUnit(
        unit_id=unit_id,
        lat=center_lat + (dist_km / 111.0) * math.cos(angle),
        lng=center_lng + (dist_km / (111.0 * math.cos(math.radians(center_lat)))) * math.sin(angle),
        altitude=random.uniform(60, 120),
        heading=random.uniform(0, 360),
        speed_mps=random.uniform(6, 14),
    )


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    center_lat, center_lng = args.center
    master = _scatter(center_lat, center_lng, 0.5, "uav-master")
    slaves = [
        _scatter(center_lat, center_lng, args.radius_km, f"uav-{i:02d}")
        for i in range(1, args.slaves + 1)
    ]

    print(f"Starting simulation: 1 master, {args.slaves} slaves, "
          f"{args.reports_per_minute} reports/min each")
    print(f"  Center: {center_lat:.4f}, {center_lng:.4f}")
    print(f"  Radius: {args.radius_km} km")
    print(f"  Duration: {args.duration}s")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.post(
            f"{args.server}{BASE}/set-master",
            content=json.dumps({"masterId": master.unit_id}),
            headers={"content-type": "application/json"},
        )
        resp.raise_for_status()

        tasks = [
            run_slave(client, unit, master.unit_id, args.server,
                      args.reports_per_minute, args.duration, args.detection_rate)
            for unit in slaves
        ]
        await asyncio.gather(*tasks)

        resp = await client.post(
            f"{args.server}{BASE}/master-data",
            content=json.dumps({
                "masterId": master.unit_id,
                "location": {"lat": master.lat, "lng": master.lng, "altitude": master.altitude},
                "batteryLevel": master.battery,
                "isacMode": "joint",
            }),
            headers={"content-type": "application/json"},
        )
        summary = resp.json().get("data", {}).get("aggregatedSlaveData", {})

        stats_resp = await client.get(f"{args.server}/api/v1/stats")

    elapsed = time.monotonic() - start
    total_reports = sum(u.reports_sent for u in slaves)
    total_detections = sum(u.detections_sent for u in slaves)
    total_errors = sum(u.errors for u in slaves)

    print(f"\nSimulation complete in {elapsed:.1f}s")
    print(f"  Reports sent: {total_reports}")
    print(f"  Detections sent: {total_detections}")
    print(f"  Errors: {total_errors}")
    print(f"  Throughput: {total_reports / elapsed:.1f} reports/sec")

    print(f"\nMaster {master.unit_id} aggregate (latest window):")
    print(f"  Slaves: {summary.get('totalSlaves', 0)}")
    print(f"  Transmissions: {summary.get('totalTransmissions', 0)}")
    print(f"  Detections: {summary.get('totalDetections', 0)}")

    if stats_resp.status_code == 200:
        stats = stats_resp.json()
        print("\nServer stats:")
        print(f"  Transmissions received: {stats['transmissions_received']}")
        print(f"  Detections relayed: {stats['detections_relayed']}")
        print(f"  Detections failed: {stats['detections_failed']}")
        print(f"  Active slaves: {stats['active_units']['slaves']}")


def main():
    parser = argparse.ArgumentParser(description="SkyRelay fleet traffic simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--slaves", type=int, default=5, help="Number of simulated slave units")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--reports-per-minute", type=float, default=12,
                        help="Reports per minute per slave")
    parser.add_argument("--detection-rate", type=float, default=0.1,
                        help="Probability that a report carries a detection")
    parser.add_argument("--center", type=str, default="45.5017,-73.5673",
                        help="Center lat,lng (default: Montreal)")
    parser.add_argument("--radius-km", type=float, default=3.0, help="Scatter radius in km")

    args = parser.parse_args()

    lat, lng = args.center.split(",")
    args.center = (float(lat), float(lng))

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()

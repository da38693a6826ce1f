"""SQLite storage implementation.

A single database file holds three tables:
- transmissions: append-only slave transmission log (arrival order = id)
- master_assignment: one row, replaced on every assignment
- detections: canonical detection records relayed from slaves

Every call opens its own connection in a worker thread, so each append is
an independent committed transaction.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Callable, TYPE_CHECKING

import structlog

from skyrelay.core.errors import InvalidInput, StorageNotInitialized, StorageUnavailable
from skyrelay.core.models import Location, MasterAssignment, StoredTransmission

if TYPE_CHECKING:
    from skyrelay.core.models import DetectionRecord, TransmissionReport

log = structlog.get_logger()

TRANSMISSIONS_TABLE = "transmissions"
ASSIGNMENT_TABLE = "master_assignment"
DETECTIONS_TABLE = "detections"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS transmissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slave_id TEXT NOT NULL,
    master_id TEXT NOT NULL,
    lat REAL NOT NULL,
    lng REAL NOT NULL,
    altitude REAL NOT NULL,
    battery_level REAL,
    isac_mode TEXT,
    signal_strength REAL,
    data_rate REAL,
    detections_count INTEGER NOT NULL DEFAULT 0,
    timestamp TEXT NOT NULL,
    received_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transmissions_master
ON transmissions(master_id, id);

CREATE INDEX IF NOT EXISTS idx_transmissions_slave
ON transmissions(slave_id, id);

CREATE TABLE IF NOT EXISTS master_assignment (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    master_id TEXT NOT NULL,
    assigned_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS detections (
    id TEXT PRIMARY KEY,
    coordinates TEXT,
    confidence REAL,
    detection_type TEXT NOT NULL,
    reporting_unit_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    status TEXT NOT NULL,
    additional_info TEXT
);

CREATE INDEX IF NOT EXISTS idx_detections_unit
ON detections(reporting_unit_id, timestamp);
"""

_TRANSMISSION_COLUMNS = (
    "id, slave_id, master_id, lat, lng, altitude, battery_level, isac_mode, "
    "signal_strength, data_rate, detections_count, timestamp, received_at"
)


def _row_to_transmission(row: sqlite3.Row) -> StoredTransmission:
    return StoredTransmission(
        record_id=row["id"],
        slave_id=row["slave_id"],
        master_id=row["master_id"],
        location=Location(lat=row["lat"], lng=row["lng"], altitude=row["altitude"]),
        battery_level=row["battery_level"],
        isac_mode=row["isac_mode"],
        signal_strength=row["signal_strength"],
        data_rate=row["data_rate"],
        detections_count=row["detections_count"],
        timestamp=row["timestamp"],
        received_at=row["received_at"],
    )


class SqliteStorage:
    """TransmissionStorage, AssignmentStorage and DetectionStorage on one SQLite file."""

    def __init__(self, db_path: str | Path, timeout_seconds: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout_seconds
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=self._timeout)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _has_table(conn: sqlite3.Connection, table: str) -> bool:
        cursor = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        )
        return cursor.fetchone() is not None

    def _call(self, table: str, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        """Run ``fn`` on a fresh connection, translating driver errors."""
        conn = self._connect()
        try:
            return fn(conn)
        except sqlite3.OperationalError as exc:
            try:
                missing = not self._has_table(conn, table)
            except sqlite3.Error:
                missing = False
            if missing:
                raise StorageNotInitialized(table) from exc
            raise StorageUnavailable(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StorageUnavailable(str(exc)) from exc
        finally:
            conn.close()

    async def _run(self, table: str, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        return await asyncio.to_thread(self._call, table, fn)

    # -- lifecycle ---------------------------------------------------------

    def _initialize_sync(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.executescript(_SCHEMA)
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"schema initialization failed: {exc}") from exc
        finally:
            conn.close()

    async def initialize(self) -> None:
        """Create all tables and indexes. Idempotent."""
        await asyncio.to_thread(self._initialize_sync)
        log.info("storage_initialized", path=str(self._db_path))

    # -- transmissions -----------------------------------------------------

    async def append(
        self, report: TransmissionReport, timestamp: str, received_at: str,
    ) -> StoredTransmission:
        params = (
            report.slave_id,
            report.master_id,
            report.location.lat,
            report.location.lng,
            report.location.altitude,
            report.battery_level,
            report.isac_mode,
            report.signal_strength,
            report.data_rate,
            report.detections_count,
            timestamp,
            received_at,
        )

        def insert(conn: sqlite3.Connection) -> int:
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO transmissions (
                        slave_id, master_id, lat, lng, altitude,
                        battery_level, isac_mode, signal_strength, data_rate,
                        detections_count, timestamp, received_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
                return cursor.lastrowid

        record_id = await self._run(TRANSMISSIONS_TABLE, insert)
        return StoredTransmission(
            record_id=record_id,
            slave_id=report.slave_id,
            master_id=report.master_id,
            location=report.location,
            battery_level=report.battery_level,
            isac_mode=report.isac_mode,
            signal_strength=report.signal_strength,
            data_rate=report.data_rate,
            detections_count=report.detections_count,
            timestamp=timestamp,
            received_at=received_at,
        )

    async def _query_window(self, column: str, key: str, limit: int) -> list[StoredTransmission]:
        # The window is the `limit` latest arrivals; within it, caller
        # timestamp descending with arrival order breaking ties.
        query = f"""
            SELECT {_TRANSMISSION_COLUMNS} FROM (
                SELECT {_TRANSMISSION_COLUMNS}
                FROM transmissions
                WHERE {column} = ?
                ORDER BY id DESC
                LIMIT ?
            )
            ORDER BY timestamp DESC, id ASC
        """

        def select(conn: sqlite3.Connection) -> list[StoredTransmission]:
            return [_row_to_transmission(row) for row in conn.execute(query, (key, limit))]

        return await self._run(TRANSMISSIONS_TABLE, select)

    async def query_by_master(self, master_id: str, limit: int) -> list[StoredTransmission]:
        return await self._query_window("master_id", master_id, limit)

    async def query_by_slave(self, slave_id: str, limit: int) -> list[StoredTransmission]:
        return await self._query_window("slave_id", slave_id, limit)

    async def distinct_slaves(self, master_id: str) -> list[str]:
        def select(conn: sqlite3.Connection) -> list[str]:
            cursor = conn.execute(
                """
                SELECT slave_id
                FROM transmissions
                WHERE master_id = ?
                GROUP BY slave_id
                ORDER BY MAX(timestamp) DESC, MAX(id) DESC, slave_id ASC
                """,
                (master_id,),
            )
            return [row["slave_id"] for row in cursor]

        return await self._run(TRANSMISSIONS_TABLE, select)

    # -- master assignment -------------------------------------------------

    async def save_assignment(self, assignment: MasterAssignment) -> None:
        def upsert(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO master_assignment (
                        id, master_id, assigned_at, updated_at
                    ) VALUES (1, ?, ?, ?)
                    """,
                    (assignment.master_id, assignment.assigned_at, assignment.updated_at),
                )

        await self._run(ASSIGNMENT_TABLE, upsert)

    async def load_assignment(self) -> MasterAssignment | None:
        def select(conn: sqlite3.Connection) -> MasterAssignment | None:
            row = conn.execute(
                "SELECT master_id, assigned_at, updated_at FROM master_assignment WHERE id = 1"
            ).fetchone()
            if row is None:
                return None
            return MasterAssignment(
                master_id=row["master_id"],
                assigned_at=row["assigned_at"],
                updated_at=row["updated_at"],
            )

        return await self._run(ASSIGNMENT_TABLE, select)

    # -- detections --------------------------------------------------------

    async def store_detection(self, record: DetectionRecord) -> DetectionRecord:
        params = (
            record.id,
            json.dumps(record.coordinates) if record.coordinates is not None else None,
            record.confidence,
            record.detection_type,
            record.reporting_unit_id,
            record.timestamp,
            record.status,
            json.dumps(record.additional_info) if record.additional_info is not None else None,
        )

        def insert(conn: sqlite3.Connection) -> None:
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO detections (
                            id, coordinates, confidence, detection_type,
                            reporting_unit_id, timestamp, status, additional_info
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        params,
                    )
            except sqlite3.IntegrityError as exc:
                raise InvalidInput(f"detection {record.id} already stored") from exc

        await self._run(DETECTIONS_TABLE, insert)
        log.debug("detection_written", detection_id=record.id,
                  unit=record.reporting_unit_id)
        return record

    async def count_detections(self, reporting_unit_id: str | None = None) -> int:
        def count(conn: sqlite3.Connection) -> int:
            if reporting_unit_id:
                cursor = conn.execute(
                    "SELECT COUNT(*) FROM detections WHERE reporting_unit_id = ?",
                    (reporting_unit_id,),
                )
            else:
                cursor = conn.execute("SELECT COUNT(*) FROM detections")
            return cursor.fetchone()[0]

        return await self._run(DETECTIONS_TABLE, count)

    async def ping(self) -> bool:
        """Return True when the database file can be opened and queried."""
        def probe(conn: sqlite3.Connection) -> bool:
            conn.execute("SELECT 1").fetchone()
            return True

        try:
            return await self._run(TRANSMISSIONS_TABLE, probe)
        except StorageUnavailable:
            return False

"""SkyRelay server — main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, events, storage, and API layers.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TextIO

import structlog
from fastapi import FastAPI

from skyrelay.api.master_slave import router as master_slave_router
from skyrelay.api.monitoring import router as monitoring_router
from skyrelay.config import AppConfig, load_config
from skyrelay.core.aggregator import Aggregator
from skyrelay.core.processor import FleetProcessor
from skyrelay.core.registry import MasterRegistry
from skyrelay.core.relay import DetectionRelay
from skyrelay.core.stats import FleetStats
from skyrelay.core.transmission_log import TransmissionLog
from skyrelay.events.asyncio_broadcaster import AsyncioEventBroadcaster, run_event_logger
from skyrelay.storage.sqlite_storage import SqliteStorage

log = structlog.get_logger()

# Module-level singletons (set during startup)
_processor: FleetProcessor | None = None
_stats: FleetStats | None = None
_config: AppConfig | None = None
_storage: SqliteStorage | None = None


def get_processor() -> FleetProcessor:
    assert _processor is not None, "Server not initialized"
    return _processor


def get_stats() -> FleetStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_storage() -> SqliteStorage:
    assert _storage is not None, "Server not initialized"
    return _storage


def _setup_logging(config: AppConfig) -> TextIO | None:
    """Configure structlog based on the logging config.

    Returns the opened log file, if any, so the caller can close it.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    logger_factory = None
    log_file = None
    if config.logging.file:
        log_file = open(config.logging.file, "a")
        logger_factory = structlog.WriteLoggerFactory(file=log_file)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        logger_factory=logger_factory or structlog.PrintLoggerFactory(),
    )
    return log_file


def build_processor(
    config: AppConfig,
    storage: SqliteStorage,
    notifier: AsyncioEventBroadcaster,
    stats: FleetStats,
) -> FleetProcessor:
    """Assemble the core components around a storage backend and notifier."""
    transmission_log = TransmissionLog(
        storage, default_limit=config.limits.default_query_limit,
    )
    return FleetProcessor(
        registry=MasterRegistry(storage),
        transmission_log=transmission_log,
        relay=DetectionRelay(storage),
        aggregator=Aggregator(transmission_log),
        notifier=notifier,
        stats=stats,
        push_aggregate_on_transmission=config.events.push_aggregate_on_transmission,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _processor, _stats, _config, _storage

    _config = load_config()
    log_file = _setup_logging(_config)

    log.info("server_starting",
             env=_config.server.env,
             storage_backend=_config.storage.backend,
             db_path=_config.storage.db_path)

    if _config.storage.backend != "sqlite":
        raise ValueError(f"unsupported storage backend: {_config.storage.backend!r}")

    # Create components
    _stats = FleetStats(active_window_seconds=_config.limits.active_window_seconds)
    _storage = SqliteStorage(
        db_path=_config.storage.db_path,
        timeout_seconds=_config.storage.timeout_seconds,
    )
    await _storage.initialize()
    broadcaster = AsyncioEventBroadcaster(queue_size=_config.events.subscriber_queue_size)
    _processor = build_processor(_config, _storage, broadcaster, _stats)

    # Start background event logger
    logger_task = asyncio.create_task(run_event_logger(broadcaster))

    log.info("server_started",
             host=_config.server.host,
             port=_config.server.port)

    yield

    # Shutdown
    logger_task.cancel()
    try:
        await logger_task
    except asyncio.CancelledError:
        pass
    log.info("server_stopped")
    if log_file is not None:
        structlog.reset_defaults()
        log_file.close()


app = FastAPI(
    title="SkyRelay",
    description="Master/slave telemetry aggregation for search-and-rescue fleets",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(master_slave_router)
app.include_router(monitoring_router)

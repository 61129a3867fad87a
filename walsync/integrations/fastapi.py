# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
walsync FastAPI Integration - Plugin for FastAPI applications.

This module provides a complete integration with FastAPI including:
- Lifespan management (startup/shutdown of the engine and its worker)
- Protected admin endpoints
- Periodic catch-up cycles
- Health checks
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, UTC
from typing import Iterable, Sequence

import aiosqlite
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from walsync.cdc.postgres import mask_password
from walsync.config import CDCConfig
from walsync.core import (
    CDCState,
    get_metrics,
    initialize_cdc_state,
    resume_cdc,
    shutdown_cdc_state,
)
from walsync.exceptions import CycleFailure, CycleTimeout
from walsync.journal import get_journal_stats, list_cycles
from walsync.registry import EntityMapping
from walsync.scheduler import CycleScheduler
from walsync.sinks import SinkAdapter

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the WALSYNC_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("WALSYNC_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="WALSYNC_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_walsync_routes(
    app: FastAPI,
    config: CDCConfig,
    state: CDCState,
    scheduler: CycleScheduler,
    prefix: str = "/admin/walsync",
) -> None:
    """
    Register walsync admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: walsync configuration
        state: Runtime state
        scheduler: Running cycle scheduler
        prefix: URL prefix for endpoints (default: /admin/walsync)
    """

    @app.post(f"{prefix}/cycle", dependencies=[Depends(verify_api_key)])
    async def trigger_cycle(timeout: float | None = None) -> dict:
        """
        Run a catch-up cycle through the scheduler and wait for it.
        """
        future = scheduler.submit()
        try:
            result = await scheduler.wait(future, timeout)
        except CycleTimeout as e:
            raise HTTPException(status_code=504, detail=str(e))
        except CycleFailure as e:
            raise HTTPException(
                status_code=409,
                detail={"error": type(e).__name__, "message": str(e)},
            )
        return asdict(result)

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def get_status() -> dict:
        """
        Get current engine status.
        """
        return {
            "last_run_at": (
                state["last_run_at"].isoformat() if state["last_run_at"] else None
            ),
            "total_cycles": state["total_cycles"],
            "failed_cycles": state["failed_cycles"],
            "total_transactions": state["total_transactions"],
            "halted": state["halted_reason"] is not None,
            "halted_reason": state["halted_reason"],
            "cycle_in_flight": scheduler.in_flight,
            "slot_name": config.slot_name,
        }

    @app.get(f"{prefix}/metrics", dependencies=[Depends(verify_api_key)])
    async def get_cdc_metrics() -> dict:
        """
        Get detailed CDC metrics, including records pending in the slot.
        """
        metrics = await get_metrics(state)
        return {
            **asdict(metrics),
            "last_run_at": (
                metrics.last_run_at.isoformat() if metrics.last_run_at else None
            ),
        }

    @app.get(f"{prefix}/cycles", dependencies=[Depends(verify_api_key)])
    async def list_recorded_cycles(
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
    ) -> dict:
        """
        List journaled cycles with pagination.

        Args:
            limit: Maximum number of cycles to return
            offset: Number of cycles to skip
            status: Filter by status (running, completed, failed)
        """
        if config.journal_path is None:
            raise HTTPException(status_code=404, detail="Cycle journal is disabled")
        async with aiosqlite.connect(config.journal_path) as db:
            return {
                "cycles": await list_cycles(db, limit, offset, status),
                "stats": await get_journal_stats(db),
            }

    @app.post(f"{prefix}/resume", dependencies=[Depends(verify_api_key)])
    async def resume_engine() -> dict:
        """
        Resume cycles after a consistency failure has been investigated.
        """
        previous = state["halted_reason"]
        resume_cdc(state)
        return {"resumed": previous is not None, "halted_reason": previous}

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the replication slot is reachable and the worker is alive.
        Runs on the monitor connection, so it answers while a cycle is running.
        """
        slot_ok = False
        slot_error = None
        try:
            slot_ok = await state["source"].ping()
            if not slot_ok:
                slot_error = f"Replication slot '{state['slot_name']}' not found"
        except Exception as e:
            slot_error = str(e)

        worker_ok = scheduler.running
        halted = state["halted_reason"] is not None

        status = "healthy"
        if not slot_ok or halted:
            status = "degraded"
        if not worker_ok:
            status = "unhealthy"

        return {
            "status": status,
            "slot_reachable": slot_ok,
            "slot_error": slot_error,
            "worker_running": worker_ok,
            "halted": halted,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration (sensitive values redacted).
        """
        return {
            "connection_url": mask_password(config.connection_url),
            "slot_name": config.slot_name,
            "cycle_timeout_seconds": config.cycle_timeout_seconds,
            "create_slot": config.create_slot,
            "journal_enabled": config.journal_path is not None,
            "catch_up_interval_seconds": config.catch_up_interval_seconds,
            "tables": state["registry"].tables,
        }


def _setup_catch_up_job(config: CDCConfig, scheduler: CycleScheduler) -> AsyncIOScheduler:
    """Set up APScheduler to trigger catch-up cycles through the worker."""
    job_scheduler = AsyncIOScheduler()

    async def catch_up() -> None:
        """Run a catch-up cycle."""
        try:
            transactions = await scheduler.run_cycle()
            logger.debug("catch_up_cycle_completed", transactions=transactions)
        except Exception as e:
            logger.error("catch_up_cycle_failed", error=str(e))

    job_scheduler.add_job(
        catch_up,
        trigger=IntervalTrigger(seconds=config.catch_up_interval_seconds),
        id="walsync_catch_up",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    job_scheduler.start()

    logger.info(
        "catch_up_job_started",
        interval_seconds=config.catch_up_interval_seconds,
    )
    return job_scheduler


@asynccontextmanager
async def walsync_lifespan(
    app: FastAPI,
    config: CDCConfig,
    mappings: Iterable[EntityMapping],
    sinks: Sequence[SinkAdapter],
    prefix: str = "/admin/walsync",
):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: walsync_lifespan(app, config, mappings, sinks))

    Args:
        app: FastAPI application
        config: walsync configuration
        mappings: Static entity mappings
        sinks: Sink adapters, in registration order
        prefix: URL prefix for admin endpoints
    """
    logger.info("walsync_lifespan_starting", slot_name=config.slot_name)

    state = await initialize_cdc_state(config, mappings, sinks)
    scheduler = CycleScheduler(state, timeout=config.cycle_timeout_seconds)
    await scheduler.start()

    app.state.walsync_config = config
    app.state.walsync_state = state
    app.state.walsync_scheduler = scheduler

    register_walsync_routes(app, config, state, scheduler, prefix)

    job_scheduler = None
    if config.catch_up_interval_seconds:
        job_scheduler = _setup_catch_up_job(config, scheduler)

    logger.info("walsync_lifespan_started")

    try:
        yield
    finally:
        logger.info("walsync_lifespan_stopping")
        if job_scheduler is not None:
            job_scheduler.shutdown(wait=False)
        await scheduler.stop()
        await shutdown_cdc_state(state)
        logger.info("walsync_lifespan_stopped")


def get_walsync_scheduler(app: FastAPI) -> CycleScheduler:
    """
    Get the cycle scheduler from a FastAPI app.

    Useful for wrapping writes in custom endpoints with synced_write().

    Raises:
        RuntimeError: If walsync is not initialized
    """
    scheduler = getattr(app.state, "walsync_scheduler", None)
    if scheduler is None:
        raise RuntimeError("walsync not initialized. Use walsync_lifespan first.")
    return scheduler


def get_walsync_state(app: FastAPI) -> CDCState:
    """
    Get walsync state from a FastAPI app.

    Raises:
        RuntimeError: If walsync is not initialized
    """
    state = getattr(app.state, "walsync_state", None)
    if not state:
        raise RuntimeError("walsync not initialized. Use walsync_lifespan first.")
    return state

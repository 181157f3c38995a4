"""
Control REST API for Lite Failover Monitor.

This module implements the FastAPI application that exposes the running
engine: reading the current loss statistics and adding or stopping
probes at runtime.

Endpoints are plain (non-async) functions because every engine request
blocks until the engine loop has answered; FastAPI runs them in its
worker thread pool.
"""

from fastapi import FastAPI, HTTPException
from typing import Optional
import logging

from models import Probe, ProbeStats, StatsResponse, snapshot_to_list
from monitor.engine import Engine, EngineState
from monitor.errors import (
    DuplicateProbeError,
    EngineNotRunning,
    ProbeValidationError,
    UnknownProbeError,
)
from monitor.selector import lowest_loss

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Lite Failover Monitor API",
    description="REST API for probe statistics and runtime probe control",
    version="1.0.0"
)

# Engine served by the API, bound by the daemon at startup
_engine: Optional[Engine] = None


def bind_engine(engine: Optional[Engine]) -> None:
    """Set (or clear) the engine served by the API."""
    global _engine
    _engine = engine


def _require_engine() -> Engine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not available")
    return _engine


@app.get("/api/v1/stats", response_model=StatsResponse, status_code=200)
def get_stats() -> StatsResponse:
    """
    Return the latest smoothed statistics of every measured destination.

    Raises:
        HTTPException 503: If the engine is not running

    Example Response:
        {
            "stats": [
                {"destination": "1.1.1.1", "source": null, "loss": 0.0},
                {"destination": "8.8.8.8", "source": "192.168.1.10", "loss": 20.0}
            ]
        }
    """
    engine = _require_engine()
    try:
        snapshot = engine.stats()
    except EngineNotRunning as e:
        raise HTTPException(status_code=503, detail=str(e))

    return StatsResponse(stats=snapshot_to_list(snapshot))


@app.get("/api/v1/stats/lowest", response_model=ProbeStats, status_code=200)
def get_lowest_loss() -> ProbeStats:
    """
    Return the destination with the lowest loss.

    Raises:
        HTTPException 404: If no destination has been measured yet
        HTTPException 503: If the engine is not running
    """
    engine = _require_engine()
    try:
        snapshot = engine.stats()
    except EngineNotRunning as e:
        raise HTTPException(status_code=503, detail=str(e))

    best = lowest_loss(snapshot)
    if best is None:
        raise HTTPException(status_code=404, detail="No measurements yet")
    return best


@app.get("/api/v1/stats/{name}", response_model=ProbeStats, status_code=200)
def get_destination_stats(name: str) -> ProbeStats:
    """
    Return the latest statistics of one destination.

    name may be the resolved address or the name the probe was added under.

    Raises:
        HTTPException 404: If the destination is unknown or not measured yet
        HTTPException 503: If the engine is not running
    """
    engine = _require_engine()
    try:
        stats = engine.probe_stats(name)
    except EngineNotRunning as e:
        raise HTTPException(status_code=503, detail=str(e))

    if stats is None:
        raise HTTPException(status_code=404, detail=f"No measurements for {name}")
    return stats


@app.post("/api/v1/probes", response_model=Probe, status_code=201)
def add_probe(probe: Probe) -> Probe:
    """
    Start measuring a new destination.

    Returns:
        The probe with its addresses resolved

    Raises:
        HTTPException 400: If the probe cannot be resolved
        HTTPException 409: If the destination is already measured
        HTTPException 503: If the engine is not running

    Example Request:
        POST /api/v1/probes
        {"destination": "example.com", "source": "eth1"}
    """
    engine = _require_engine()
    try:
        resolved = engine.add_probe(probe)
    except ProbeValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateProbeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except EngineNotRunning as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(f"Probe added via API: {resolved.source or '-'} -> {resolved.destination}")
    return resolved


@app.delete("/api/v1/probes/{destination}", status_code=200)
def delete_probe(destination: str):
    """
    Stop measuring a destination.

    Raises:
        HTTPException 404: If the destination is not measured
        HTTPException 503: If the engine is not running
    """
    engine = _require_engine()
    try:
        engine.stop_probe(destination)
    except UnknownProbeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EngineNotRunning as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(f"Probe stopped via API: {destination}")
    return {"status": "ok"}


@app.get("/health")
def health_check():
    """
    Health check endpoint.

    Returns basic engine status information.
    """
    if _engine is None:
        return {"status": "unavailable", "engine": None}

    return {
        "status": "healthy" if _engine.state == EngineState.RUNNING else "degraded",
        "engine": _engine.state.value
    }

# File: nsg_controller/api/rest_api_server.py
"""
Controller HTTP API

Small FastAPI app for probes and scraping:
- /health  liveness
- /ready   readiness, once a reconciliation pass has succeeded
- /status  coalescer state and last reconciliation results
- /metrics Prometheus exposition
"""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from .. import __version__

app = FastAPI(title="Host-Network NSG Controller", version=__version__)
app.state.controller = None


class HealthResponse(BaseModel):
    status: str


class CoalescerStatus(BaseModel):
    state: str
    pending: bool
    cooldown_elapsed: bool
    queued_signals: int
    passes: int
    failures: int


class ReconciliationSummary(BaseModel):
    success: bool
    changed: bool
    nsg_id: Optional[str] = None
    managed_rules: int
    foreign_rules: int
    skipped_pods: List[str]
    errors: List[str]
    duration_ms: float
    finished_at: Optional[datetime] = None


class ControllerStatus(BaseModel):
    running: bool
    ready: bool
    coalescer: CoalescerStatus
    last_result: Optional[ReconciliationSummary] = None
    last_success: Optional[ReconciliationSummary] = None
    engine: Dict[str, float]


def set_controller(controller):
    app.state.controller = controller


def _controller(request: Request):
    controller = request.app.state.controller
    if controller is None:
        raise HTTPException(status_code=503, detail="Controller not started")
    return controller


@app.get("/health", response_model=HealthResponse)
def health():
    return {"status": "healthy"}


@app.get("/ready", response_model=HealthResponse)
def ready(request: Request):
    controller = _controller(request)
    if not controller.ready:
        raise HTTPException(status_code=503, detail="No successful reconciliation yet")
    return {"status": "ready"}


@app.get("/status", response_model=ControllerStatus)
def status(request: Request):
    return _controller(request).status()


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

from __future__ import annotations

from threading import Lock

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dnr import db
from dnr.api_models import (
    ApplyResponse,
    DisconnectedContainer,
    DocumentRequest,
    NetworkDetail,
    PlanResponse,
    Reconstruction,
    apply_response,
    disconnected_container,
    network_detail,
    plan_response,
)
from dnr.coordinator import Coordinator
from dnr.errors import (
    ConflictInProgress,
    Indeterminate,
    InvalidSpec,
    MalformedDocument,
    NotFound,
    ReconcilerError,
    RuntimeUnavailable,
)
from dnr.settings import settings

app = FastAPI(title="Declarative Network Reconciler")
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

_STATUS = {
    NotFound: 404,
    ConflictInProgress: 409,
    MalformedDocument: 422,
    InvalidSpec: 422,
    RuntimeUnavailable: 503,
    Indeterminate: 504,
}

_coordinator: Coordinator | None = None
_coordinator_lock = Lock()


def get_coordinator() -> Coordinator:
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            if settings.runtime == "memory":
                from dnr.memory_runtime import InMemoryRuntime

                runtime = InMemoryRuntime()
            else:
                from dnr.docker_ops import DockerRuntime

                runtime = DockerRuntime()
            _coordinator = Coordinator(runtime)
        return _coordinator


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    db.log_event("INFO", f"API started (runtime={settings.runtime})")


@app.exception_handler(ReconcilerError)
def reconciler_error(request: Request, exc: ReconcilerError) -> JSONResponse:
    status = next((code for cls, code in _STATUS.items() if isinstance(exc, cls)), 500)
    body: dict = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, InvalidSpec):
        body["errors"] = exc.errors
    return JSONResponse(status_code=status, content=body)


@app.get("/api/health")
def health(coordinator: Coordinator = Depends(get_coordinator)) -> dict:
    return {"status": "ok", "runtime": settings.runtime, "runtime_reachable": coordinator.runtime.ping()}


@app.get("/api/networks/{network_id}/", response_model=NetworkDetail)
def get_network(network_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> NetworkDetail:
    return network_detail(coordinator.detail(network_id))


@app.get("/api/networks/{network_id}/disconnected/", response_model=list[DisconnectedContainer])
def get_disconnected(network_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> list[DisconnectedContainer]:
    return [disconnected_container(a) for a in coordinator.disconnected(network_id)]


@app.get("/api/networks/{network_id}/reconstruct/", response_model=Reconstruction)
def reconstruct(network_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> Reconstruction:
    return Reconstruction(yaml=coordinator.reconstruct(network_id))


@app.post("/api/networks/{network_id}/plan/", response_model=PlanResponse)
def plan_network(
    network_id: str, req: DocumentRequest, coordinator: Coordinator = Depends(get_coordinator)
) -> PlanResponse:
    return plan_response(coordinator.preview(network_id, req.yaml))


@app.post("/api/networks/{network_id}/apply/", response_model=ApplyResponse)
def apply_network(
    network_id: str, req: DocumentRequest, coordinator: Coordinator = Depends(get_coordinator)
) -> ApplyResponse:
    return apply_response(coordinator.apply(network_id, req.yaml))


@app.post("/api/containers/{container_id}/start/")
def start_container(container_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> dict:
    coordinator.start_container(container_id)
    return {"id": container_id, "action": "start", "ok": True}


@app.post("/api/containers/{container_id}/stop/")
def stop_container(container_id: str, coordinator: Coordinator = Depends(get_coordinator)) -> dict:
    coordinator.stop_container(container_id)
    return {"id": container_id, "action": "stop", "ok": True}


@app.get("/api/events")
def events(limit: int = Query(100, ge=1, le=1000), network: str | None = None) -> list[dict]:
    return db.latest_events(limit=limit, network=network)

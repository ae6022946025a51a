from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from fro.api_models import KIND, AdmitRouteRequest, CreateFreshRSSRequest, FreshRSS, UpdateFreshRSSRequest
from fro.components import MANAGED_KINDS, ROUTE
from fro.db import AlreadyExists, Conflict, Forbidden, NotFound, Store, StoreError, StoreUnavailable
from fro.ownership import OwnerReferenceError
from fro.reconciler import Controller, FreshRSSReconciler


def _status_for(exc: StoreError) -> int:
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (AlreadyExists, Conflict)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, Forbidden):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, StoreUnavailable):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


def create_app(store: Store | None = None, run_controller: bool = True) -> FastAPI:
    store = store or Store()
    app = FastAPI(title="FreshRSS Reconciler")
    app.state.store = store
    app.state.controller = Controller(store) if run_controller else None

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    @app.exception_handler(OwnerReferenceError)
    async def owner_error_handler(request: Request, exc: OwnerReferenceError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.on_event("startup")
    def startup() -> None:
        store.init_db()
        if app.state.controller is not None:
            app.state.controller.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        if app.state.controller is not None:
            app.state.controller.stop()

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/freshrsses")
    def list_freshrsses(namespace: str | None = None) -> list[dict[str, Any]]:
        return store.list(KIND, namespace)

    @app.post("/freshrsses", status_code=status.HTTP_201_CREATED)
    def create_freshrss(req: CreateFreshRSSRequest) -> dict[str, Any]:
        obj = store.create(req.to_resource().manifest())
        store.log_event("INFO", "FreshRSS created", namespace=req.namespace, name=req.name)
        return obj

    @app.get("/freshrsses/{namespace}/{name}")
    def get_freshrss(namespace: str, name: str) -> dict[str, Any]:
        return store.get(KIND, namespace, name)

    @app.put("/freshrsses/{namespace}/{name}")
    def update_freshrss(namespace: str, name: str, req: UpdateFreshRSSRequest) -> dict[str, Any]:
        instance = FreshRSS.model_validate(store.get(KIND, namespace, name))
        instance.spec.title = req.title
        instance.spec.default_user = req.default_user
        return store.update(instance.manifest())

    @app.delete("/freshrsses/{namespace}/{name}")
    def delete_freshrss(namespace: str, name: str) -> dict[str, str]:
        store.delete(KIND, namespace, name)
        store.log_event("INFO", "FreshRSS deleted", namespace=namespace, name=name)
        return {"deleted": f"{namespace}/{name}"}

    @app.get("/objects/{kind}/{namespace}/{name}")
    def get_object(kind: str, namespace: str, name: str) -> dict[str, Any]:
        if kind not in MANAGED_KINDS:
            raise HTTPException(status_code=400, detail=f"Unknown kind '{kind}'. Use one of: {', '.join(MANAGED_KINDS)}")
        return store.get(kind, namespace, name)

    @app.put("/routes/{namespace}/{name}/status")
    def admit_route(namespace: str, name: str, req: AdmitRouteRequest) -> dict[str, Any]:
        """Record the hosts a router admitted the route under."""
        route = store.get(ROUTE, namespace, name)
        route["status"] = {"ingress": [{"host": h} for h in req.hosts]}
        return store.update_status(route)

    @app.post("/reconcile/{namespace}/{name}")
    def reconcile(namespace: str, name: str) -> JSONResponse:
        controller: Controller | None = app.state.controller
        if controller is not None:
            # the controller owns serialization per identity; hand it the key
            controller.queue.add((namespace, name))
            return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"queued": f"{namespace}/{name}"})
        result = FreshRSSReconciler(store).reconcile(namespace, name)
        return JSONResponse(content=result.summary())

    @app.get("/events")
    def events(limit: int = 100) -> list[dict[str, Any]]:
        return store.latest_events(max(1, min(1000, limit)))

    return app


app = create_app()

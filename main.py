from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query

from predip import db
from predip.allocation import PoolKey
from predip.api_models import MemberEvent, PoolView, ReconcileResponse, ReleaseResponse
from predip.errors import (
    AnnotationConflictExhausted,
    ConfigurationError,
    ConflictError,
    MalformedIdentity,
    NotFoundError,
    PoolExhausted,
)
from predip.network import build_provider
from predip.reconciler import AnnotationReconciler
from predip.settings import settings
from predip.store import build_store

app = FastAPI(title="Predictable IP allocator")

STORE = build_store()
RECONCILER = AnnotationReconciler(STORE, build_provider(STORE))


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    if settings.resync_interval_s > 0:
        RECONCILER.start()


@app.on_event("shutdown")
def shutdown() -> None:
    RECONCILER.stop()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.post("/members/events", response_model=ReconcileResponse)
def member_event(ev: MemberEvent) -> ReconcileResponse:
    """Reconcile one member. Failures are journaled and left for redelivery."""
    try:
        res = RECONCILER.reconcile(ev.namespace, ev.name)
    except MalformedIdentity as e:
        db.log_event("ERROR", str(e), member=ev.name)
        raise HTTPException(status_code=422, detail=str(e))
    except (AnnotationConflictExhausted, ConflictError) as e:
        db.log_event("ERROR", str(e), member=ev.name)
        raise HTTPException(status_code=409, detail=str(e))
    except NotFoundError as e:
        # Deleted while being reconciled; the deletion event follows.
        db.log_event("WARN", str(e), member=ev.name)
        raise HTTPException(status_code=404, detail=str(e))
    except (PoolExhausted, ConfigurationError) as e:
        db.log_event("ERROR", str(e), member=ev.name)
        raise HTTPException(status_code=503, detail=str(e))
    return ReconcileResponse(member=res.member, outcome=res.outcome, address=res.address, pool=res.pool)


@app.get("/pools/{name}", response_model=PoolView)
def get_pool(name: str) -> PoolView:
    table, version = RECONCILER.ipset(name).snapshot()
    key = PoolKey(name, RECONCILER.pool_namespace)
    return PoolView(name=key.name, namespace=key.namespace, version=version, allocations=table)


@app.get("/pools/{name}/addresses/{address}")
def is_allocated(name: str, address: str) -> dict[str, bool]:
    return {"allocated": RECONCILER.ipset(name).is_allocated(address)}


@app.delete("/pools/{name}/addresses/{address}", response_model=ReleaseResponse)
def release(name: str, address: str) -> ReleaseResponse:
    try:
        released = RECONCILER.ipset(name).release_ip(address)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.log_event("INFO", f"Manual release of {address} ({'released' if released else 'not held'})", pool=name)
    return ReleaseResponse(pool=name, address=address, released=released)


@app.get("/events")
def events(limit: int = Query(100, ge=1, le=1000), member: str | None = None) -> list[dict]:
    return db.latest_events(limit=limit, member=member)

import logging
import time
import threading
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from blastradius import ImpactEngine
from blastradius.errors import ConfigError, DuplicateRouteError, StorageError
from blastradius.report import ENGINE_VERSION, REPORT_VERSION

from .models import (
    ContractsResponse, ImpactRequest, ImpactResponse, ReportRequest, ScanRequest, ScanResponse
)
from .settings import settings

logger = logging.getLogger(__name__)


_engine: Optional[ImpactEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> ImpactEngine:
    """Get the process-wide engine, creating it on first use."""
    global _engine
    with _engine_lock:
        if _engine is None:
            try:
                _engine = ImpactEngine.from_config_file(settings.config_path, db_path=settings.db_path)
            except ConfigError as e:
                logger.error(f"Invalid engine configuration: {e}")
                raise HTTPException(status_code=500, detail=f"Invalid engine configuration: {e}")
            except StorageError as e:
                logger.error(f"Graph storage unavailable: {e}")
                raise HTTPException(status_code=500, detail=f"Graph storage unavailable: {e}")
            logger.info(f"Engine ready (config={settings.config_path or 'auto'}, db={settings.db_path or 'memory'})")
        return _engine


def reset_engine() -> None:
    """Drop the process-wide engine (mainly for testing)."""
    global _engine
    with _engine_lock:
        _engine = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging on startup."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Starting blastradius service (engine {ENGINE_VERSION}, report v{REPORT_VERSION})")
    yield


app = FastAPI(
    title="blastradius - change impact analysis",
    lifespan=lifespan,
)

# If no origins configured, allow localhost for development
allowed_origins = settings.allowed_origins if settings.allowed_origins else [
    "http://localhost:*",
    "http://127.0.0.1:*",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.get("/health")
def health():
    """
    Health check endpoint.
    Used by load balancers and orchestrators.
    """
    return {
        "status": "ok",
        "engine": "blastradius",
        "version": ENGINE_VERSION,
        "report_version": REPORT_VERSION,
        "timestamp": int(time.time()),
        "persistence": bool(settings.db_path),
    }


@app.post("/scan", response_model=ScanResponse)
def scan(req: ScanRequest = Body(...), engine: ImpactEngine = Depends(get_engine)):
    """Scan files into the graph. Per-file failures are reported, not raised."""
    jobs = req.jobs or settings.jobs
    try:
        if req.rebuild:
            report = engine.rebuild(req.files, jobs=jobs)
        else:
            report = engine.scan(req.files, jobs=jobs)
    except StorageError as e:
        logger.error(f"Scan failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return ScanResponse(**report.to_dict())


@app.post("/impact", response_model=ImpactResponse)
def impact(req: ImpactRequest = Body(...), engine: ImpactEngine = Depends(get_engine)):
    """
    Compute the impact of a change set, with its change plan.

    Returns 404 when none of the changed ids is in the graph.
    """
    snapshot = engine.snapshot()
    if req.changes and not any(snapshot.has_entity(entity_id) for entity_id in req.changes):
        raise HTTPException(status_code=404, detail=f"Unknown entities: {', '.join(sorted(req.changes))}")

    consistency = engine.check_consistency(snapshot)
    try:
        result = engine.analyze_impact(
            req.changes,
            dimensions=req.dimensions,
            max_depth=req.max_depth,
            direction=req.direction,
            snapshot=snapshot,
            consistency=consistency,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    plan = engine.plan(result, consistency) if req.include_plan else None
    return ImpactResponse(impact=result.to_dict(), plan=plan.to_dict() if plan else None)


@app.get("/contracts", response_model=ContractsResponse)
def contracts(
    declared_side: Optional[str] = Query(default=None, pattern="^(frontend|backend)$"),
    engine: ImpactEngine = Depends(get_engine),
):
    """ContractPairs with mismatches, plus orphan and duplicate findings."""
    try:
        report = engine.check_consistency(declared_side=declared_side, strict=settings.strict_contracts)
    except DuplicateRouteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ContractsResponse(**report.to_dict())


@app.get("/report")
def get_report(engine: ImpactEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Report for the current graph, without change sets."""
    return engine.report()


@app.post("/report")
def post_report(req: ReportRequest = Body(...), engine: ImpactEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Report for the current graph and each requested change set."""
    try:
        return engine.report(req.change_sets, dimensions=req.dimensions, max_depth=req.max_depth)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/graph/stats")
def graph_stats(engine: ImpactEngine = Depends(get_engine)):
    """Graph statistics, critical entities and dependency cycles."""
    snapshot = engine.snapshot()
    return {
        **snapshot.stats(),
        "critical_entities": snapshot.critical_entities(engine.config.critical_dependents_threshold),
        "cycles": snapshot.cycles(),
    }


def cli():
    import uvicorn
    uvicorn.run("blastradius_api.main:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":
    cli()

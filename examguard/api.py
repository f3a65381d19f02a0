"""
Exam Proctoring Database REST API
FastAPI diagnostics for the persistence layer: which backend was selected,
whether it is reachable, and whether its schema matches the declared fields.
"""

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
import logging
import uvicorn

from examguard import __version__
from examguard.database import AdapterFactory, DatabaseAdapter, ProctoringDatabase
from examguard.logging_config import setup_logging

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    backend: str
    response_time_ms: Optional[float] = None
    error: Optional[str] = None
    timestamp: str


class StatusResponse(BaseModel):
    """Backend selection status."""
    backend: str = Field(..., description="Backend serving requests")
    available: bool = Field(..., description="Whether the backend can serve calls")
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str


def create_app(adapter: Optional[DatabaseAdapter] = None, factory: Optional[AdapterFactory] = None) -> FastAPI:
    """
    Build the API with its database selected once at startup.

    Args:
        adapter: Adapter to serve from; skips backend selection when given
        factory: Factory used to select the adapter when none is given
    """
    app = FastAPI(
        title="Exam Proctoring Database API",
        description="Diagnostics for the exam proctoring persistence layer",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.factory = factory or AdapterFactory()
    app.state.db = ProctoringDatabase(adapter) if adapter is not None else None

    @app.on_event("startup")
    async def startup_event():
        if app.state.db is None:
            setup_logging()
            app.state.db = await ProctoringDatabase.from_factory(app.state.factory)
        logger.info(f"Database backend selected: {app.state.db.backend}")

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.db is not None:
            await app.state.db.close()

    def get_database(request: Request) -> ProctoringDatabase:
        db = request.app.state.db
        if db is None:
            raise HTTPException(status_code=503, detail="Database not initialized")
        return db

    @app.get("/", response_model=dict)
    async def root():
        return {
            "service": "Exam Proctoring Database API",
            "version": __version__,
            "endpoints": ["/health", "/database/status", "/database/schema"],
        }

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        db = get_database(request)
        result = await db.health_check()
        return HealthResponse(
            status=result.get("status", "unknown"),
            backend=result.get("backend", db.backend),
            response_time_ms=result.get("response_time_ms"),
            error=result.get("error"),
            timestamp=datetime.now().isoformat(),
        )

    @app.get("/database/status", response_model=StatusResponse)
    async def database_status(request: Request):
        db = get_database(request)
        details = db.get_status()
        return StatusResponse(
            backend=db.backend,
            available=db.is_available,
            details=details,
            timestamp=datetime.now().isoformat(),
        )

    @app.get("/database/schema", response_model=dict)
    async def database_schema(request: Request):
        db = get_database(request)
        if not db.is_available:
            raise HTTPException(status_code=503, detail=f"{db.backend} database not available")

        missing = await db.verify_schema()
        return {"backend": db.backend, "matches": not missing, "missing_columns": missing}

    return app


# ASGI entry point: uvicorn examguard.api:app
app = create_app()


def main(host: str = "0.0.0.0", port: int = 8000):
    """Serve the diagnostics API."""
    print("=" * 70)
    print("Exam Proctoring Database API")
    print("=" * 70)
    print(f"API will be available at: http://localhost:{port}")
    print(f"  - Interactive docs: http://localhost:{port}/docs")
    print("=" * 70)

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info"
    )


if __name__ == "__main__":
    main()

import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from .api.endpoints import router as api_router
from .config import config, setup_logging
from .db import Database
from .errors import register_exception_handlers
from .persistence import get_user
from .schemas import SimulationRequest
from .simulator import Simulator

logger = logging.getLogger(__name__)

def create_app(database: Optional[Database] = None, simulator: Optional[Simulator] = None) -> FastAPI:
    """Build the application around an explicitly constructed database."""
    database = database or Database(config.database_url, echo=config.db_echo)
    simulator = simulator or Simulator(database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        database.init_db()
        logger.info("Database ready")
        yield
        simulator.stop()
        database.dispose()
        logger.info("Database connections released")

    app = FastAPI(
        title="Driver Assist Backend",
        description="Trip, event and driver score ingestion for the driver assist app",
        version="1.0.0",
        debug=config.debug,
        lifespan=lifespan
    )
    app.state.database = database
    app.state.simulator = simulator

    if config.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"]
        )
    register_exception_handlers(app)

    # Include API routes
    app.include_router(api_router, prefix="/api")

    @app.get("/")
    async def root():
        return {"message": "Driver Assist Backend", "docs": "/docs"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post("/api/start_simulation")
    async def api_start_simulation(payload: SimulationRequest, request: Request):
        """Start replaying recorded tracks for a driver."""
        if not config.simulation_enabled:
            return {"success": False, "error": "Simulation disabled"}
        db = request.app.state.database.session()
        try:
            get_user(db, payload.user_id)
        finally:
            db.close()
        if not request.app.state.simulator.start(payload.user_id, payload.track_id):
            return {"success": True, "message": "Simulation already running"}
        return {"success": True, "message": "simulation started"}

    @app.post("/api/stop_simulation")
    async def api_stop_simulation(request: Request):
        """Stop the track replay."""
        request.app.state.simulator.stop()
        return {"success": True, "message": "simulation stopped"}

    @app.get("/api/simulation_status")
    async def api_simulation_status(request: Request):
        """Get current simulation status."""
        return {"success": True, "is_running": request.app.state.simulator.is_running()}

    return app

app = create_app()

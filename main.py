from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import engine, Base, SessionLocal, verify_db_connection
from routers import auth, vehicles, bookings, location, maps
from services.auth_service import AuthService
from services.consistency import run_periodic_sweep
from services.realtime_store import get_store
from utils.errors import TrackingError
from config import settings
import models  # noqa: F401  registers tables on Base
import asyncio
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="LogiTrack API",
    description="Fleet live-tracking, driver assignment and booking backend",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError):
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.__class__.__name__}
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to prevent information leakage"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."}
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

app.include_router(auth.router)
app.include_router(vehicles.router)
app.include_router(bookings.router)
app.include_router(location.router)
app.include_router(maps.router)

background_tasks = []

@app.on_event("startup")
async def startup_event():
    """Create tables, seed the admin account and start the consistency sweep"""
    if engine is None:
        logger.error("DATABASE_URL not configured - database features disabled")
        return

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created/verified")

        db = SessionLocal()
        try:
            AuthService.ensure_admin(db, get_store())
        except Exception as e:
            logger.error(f"Admin init error: {e}")
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Startup error: {e}")

    if settings.consistency_sweep_interval_seconds > 0:
        background_tasks.append(asyncio.ensure_future(
            run_periodic_sweep(get_store(), settings.consistency_sweep_interval_seconds)
        ))
        logger.info(f"Consistency sweep every {settings.consistency_sweep_interval_seconds}s")

@app.on_event("shutdown")
async def shutdown_event():
    for task in background_tasks:
        task.cancel()
    background_tasks.clear()

@app.get("/")
def root():
    return {
        "message": "LogiTrack API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }

@app.get("/health")
def health_check():
    db_status = "connected" if verify_db_connection() else "not connected"
    return {
        "status": "healthy",
        "database": db_status
    }

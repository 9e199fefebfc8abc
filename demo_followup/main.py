import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from demo_followup.config import settings
from demo_followup.database import init_db
from demo_followup.api import routes
from demo_followup.dependencies import build_executor, run_no_show_check
from demo_followup.services.scheduler import SchedulerService

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize database
init_db()

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)

scheduler_service: SchedulerService | None = None


@app.on_event("startup")
async def startup_event():
    """Start the background sweep on app startup"""
    global scheduler_service
    if not settings.sweep_enabled:
        logger.info("%s started - background sweep disabled, use /cron or the worker", settings.app_name)
        return

    scheduler_service = SchedulerService(
        executor_factory=build_executor,
        no_show_check=run_no_show_check,
        sweep_interval_seconds=settings.sweep_interval_seconds,
        no_show_interval_seconds=settings.no_show_interval_seconds,
    )
    scheduler_service.start()
    logger.info("%s started - sweep every %ss", settings.app_name, settings.sweep_interval_seconds)


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the background sweep on app shutdown"""
    if scheduler_service is not None:
        scheduler_service.stop()
    logger.info("%s stopped", settings.app_name)


@app.get("/")
def read_root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

import logging

from fastapi import FastAPI

from config import get_settings
from scheduler import SchedulerManager


logger = logging.getLogger(__name__)

app = FastAPI(title="BudgetWise")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()
    else:
        logger.info("Scheduler disabled by configuration")


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/healthz")
def healthz() -> dict[str, object]:
    return {"status": "ok", "scheduler_running": scheduler_manager.running}

import asyncio
import logging

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from .db import SessionLocal, init_db
from .cleanup import purge_older_than_one_week
from .logging_setup import setup_logging
from .routers import auth, health, speaking

logger = logging.getLogger(__name__)

app = FastAPI(title="IELTS Speaking Examiner API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(speaking.router)


@app.get("/", include_in_schema=False)
async def redirect_root_to_docs():
	return RedirectResponse(url="/docs")


def _purge_once() -> None:
	db = SessionLocal()
	try:
		removed = purge_older_than_one_week(db)
		if removed:
			logger.info("Purged %d stale row(s)", removed)
	except Exception:
		logger.exception("Weekly cleanup failed")
	finally:
		db.close()


async def _cleanup_watcher():
	while True:
		await asyncio.sleep(24 * 60 * 60)
		_purge_once()


@app.on_event("startup")
async def startup_event():
	setup_logging()
	init_db()
	_purge_once()
	app.state.cleanup_task = asyncio.create_task(_cleanup_watcher())


@app.on_event("shutdown")
async def shutdown_event():
	task = getattr(app.state, "cleanup_task", None)
	if task is not None:
		task.cancel()

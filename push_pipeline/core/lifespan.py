import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from push_pipeline.core.database import dispose_engine
from push_pipeline.core.firebase import initialize_firebase
from push_pipeline.core.logging import initialize_logging
from push_pipeline.notifications.factory import build_enqueuer, build_queue, build_worker


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Wire the queue, enqueuer and worker for the lifetime of the process."""
  from push_pipeline.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("push_pipeline.core.lifespan")

  try:
    initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except (OSError, RuntimeError):
    # Console logging still works when the log directory is not writable.
    logger.warning("File logging setup failed; continuing with default handlers.", exc_info=True)

  if settings.push_provider == "firebase":
    initialize_firebase(settings)

  queue = build_queue(settings)
  app.state.queue = queue
  app.state.enqueuer = build_enqueuer(settings, queue=queue)
  app.state.worker = None

  if settings.worker_enabled:
    worker = build_worker(settings, queue=queue)
    await worker.start()
    app.state.worker = worker
  else:
    logger.info("Notification worker disabled (PUSH_WORKER_ENABLED=false); serving enqueue and operator endpoints only.")

  try:
    yield
  finally:
    if app.state.worker is not None:
      await app.state.worker.stop()
    await queue.close()
    await dispose_engine()
    logger.info("Shutdown complete.")

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request

from push_pipeline.api.routes import ops
from push_pipeline.core.exceptions import global_exception_handler, http_exception_handler
from push_pipeline.core.lifespan import lifespan

__version__ = "0.1.0"

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)


@app.get("/health", include_in_schema=False)
async def health_check(request: Request) -> dict[str, str]:
  """Return a simple health status with the worker state."""
  worker = getattr(request.app.state, "worker", None)
  worker_state = "running" if worker is not None and worker.running else "stopped"
  return {"status": "ok", "version": __version__, "worker": worker_state}


app.include_router(ops.router, prefix="/internal", tags=["ops"])

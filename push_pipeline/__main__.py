import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("push_pipeline")


def main() -> None:
  """Replace this process with uvicorn so it receives SIGTERM directly."""
  host = os.getenv("PUSH_HOST", "0.0.0.0")
  port = os.getenv("PUSH_PORT", "8080")
  logger.info("Starting push pipeline on %s:%s (run alembic upgrade head in the deploy pipeline)...", host, port)
  # A single uvicorn worker; delivery concurrency comes from PUSH_WORKER_CONCURRENCY.
  os.execvp("uvicorn", ["uvicorn", "push_pipeline.main:app", "--host", host, "--port", port, "--no-server-header"])


if __name__ == "__main__":
  main()

import logging
from typing import Any

import firebase_admin
from firebase_admin import credentials

from push_pipeline.config import Settings

logger = logging.getLogger(__name__)

_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _build_credential(settings: Settings) -> credentials.Base | None:
  """Resolve service-account credentials from a JSON file or inline FCM env values."""
  if settings.firebase_service_account_json_path:
    return credentials.Certificate(settings.firebase_service_account_json_path)

  if settings.fcm_client_email and settings.fcm_private_key:
    service_account: dict[str, Any] = {
      "type": "service_account",
      "project_id": settings.firebase_project_id,
      "client_email": settings.fcm_client_email,
      "private_key": settings.fcm_private_key,
      "token_uri": _TOKEN_URI,
    }
    return credentials.Certificate(service_account)

  # Fall back to Google Application Default Credentials.
  return None


def initialize_firebase(settings: Settings) -> firebase_admin.App | None:
  """Initializes the Firebase Admin SDK used for Cloud Messaging."""
  if firebase_admin._apps:
    return firebase_admin.get_app()

  if not settings.firebase_project_id:
    logger.warning("Firebase Project ID not set. Firebase Admin SDK not initialized.")
    return None

  options = {"projectId": settings.firebase_project_id, "httpTimeout": settings.provider_timeout_seconds}
  try:
    cred = _build_credential(settings)
    app = firebase_admin.initialize_app(cred, options) if cred is not None else firebase_admin.initialize_app(options=options)
  except (ValueError, OSError) as exc:
    logger.error("Failed to initialize Firebase Admin SDK: %s", exc)
    return None

  logger.info("Firebase Admin SDK initialized for project %s.", settings.firebase_project_id)
  return app

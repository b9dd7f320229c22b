from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import firebase_admin
from firebase_admin import auth, credentials, firestore_async

from .config import Settings

logger = logging.getLogger(__name__)


def _service_account_path(settings: Settings) -> Optional[Path]:
    if settings.firebase_service_account_key:
        path = Path(settings.firebase_service_account_key).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Firebase service account file not found: {path}")
        return path
    return None


def initialize_firebase(settings: Settings) -> firebase_admin.App:
    if firebase_admin._apps:
        return firebase_admin.get_app()

    svc_path = _service_account_path(settings)
    if svc_path:
        cred = credentials.Certificate(str(svc_path))
        # Project ID is read from the service account JSON
        return firebase_admin.initialize_app(cred)

    # Fallback to application default credentials
    cred = credentials.ApplicationDefault()
    return firebase_admin.initialize_app(cred)


def get_async_firestore_client(settings: Settings):
    """Get an async Firestore client, initializing Firebase if needed."""
    app = initialize_firebase(settings)
    return firestore_async.client(app)


def verify_id_token(id_token: str, settings: Settings) -> Optional[str]:
    """Return the uid of a valid Firebase ID token, or None when it is rejected."""
    initialize_firebase(settings)
    try:
        decoded = auth.verify_id_token(id_token)
    except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError) as exc:
        logger.info("Rejected ID token: %s", exc)
        return None
    except auth.CertificateFetchError:
        logger.exception("Could not fetch Firebase public keys")
        raise
    return decoded.get("uid")

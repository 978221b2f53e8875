import logging

import firebase_admin
from firebase_admin import credentials

from ..core.config import settings


logger = logging.getLogger(__name__)


def get_firebase_app() -> firebase_admin.App:
    """The default Firebase app, initialized from settings on first use.

    Falls back to application default credentials when no service account
    is configured.
    """
    if firebase_admin._apps:  # type: ignore[attr-defined]
        return firebase_admin.get_app()

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    if settings.FIREBASE_CLIENT_EMAIL and settings.FIREBASE_PRIVATE_KEY and settings.FIREBASE_PROJECT_ID:
        cred = credentials.Certificate({
            "type": "service_account",
            "project_id": settings.FIREBASE_PROJECT_ID,
            "private_key_id": "dummy",
            "private_key": settings.FIREBASE_PRIVATE_KEY,
            "client_email": settings.FIREBASE_CLIENT_EMAIL,
            "client_id": "dummy",
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
            "client_x509_cert_url": f"https://www.googleapis.com/robot/v1/metadata/x509/{settings.FIREBASE_CLIENT_EMAIL}",
        })
    else:
        logger.warning("Firebase service account is not configured; using application default credentials")
        cred = credentials.ApplicationDefault()

    app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase app initialized")
    return app

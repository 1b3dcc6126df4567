"""Firebase Admin SDK bootstrap: one app per process, used for Firestore and ID token checks."""

import json
import logging

import firebase_admin
from firebase_admin import credentials, firestore

from common.config import get_settings

logger = logging.getLogger(__name__)


def _credentials(source: str):
    """SERVICE_FILE_LOC holds either the key JSON itself or a path to the key file."""
    if source.strip().startswith("{"):
        return credentials.Certificate(json.loads(source))
    return credentials.Certificate(source)


def get_firebase_app() -> firebase_admin.App:
    """Return the default Firebase app, initializing it on first use."""
    if firebase_admin._apps:
        return firebase_admin.get_app()

    source = get_settings().service_file_loc
    if source:
        app = firebase_admin.initialize_app(_credentials(source))
        logger.info("Firebase app initialized from SERVICE_FILE_LOC")
    else:
        app = firebase_admin.initialize_app()
        logger.info("Firebase app initialized with application default credentials")
    return app


def firestore_client():
    return firestore.client(app=get_firebase_app())

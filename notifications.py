"""
Push notifications through Firebase Cloud Messaging.

Firebase Admin is initialized on first use from FIREBASE_CREDENTIALS_B64
(a base64 encoded service account JSON) or application default credentials.
Sending is best effort: failures are logged and never reach the caller.
"""
import base64
import json
import logging
import os
from typing import Dict, Iterable, Optional

import firebase_admin
from firebase_admin import credentials, messaging
from pymongo.database import Database

from database import get_documents, parse_object_id

logger = logging.getLogger(__name__)


def init_firebase() -> bool:
    if firebase_admin._apps:
        return True
    encoded = os.getenv("FIREBASE_CREDENTIALS_B64")
    try:
        if encoded:
            sa_json = json.loads(base64.b64decode(encoded).decode("utf-8"))
            firebase_admin.initialize_app(credentials.Certificate(sa_json))
        else:
            firebase_admin.initialize_app()
        return True
    except Exception as e:
        # Firebase is optional for local dev
        logger.warning("Firebase init warning: %s", e)
        return False


def notify_users(
    db: Database,
    user_ids: Iterable,
    title: str,
    body: str,
    data: Optional[Dict[str, str]] = None,
) -> int:
    """Send a notification to every device registered for the given users. Returns the success count."""
    try:
        ids = [parse_object_id(u, "user_id") for u in user_ids]
        tokens = []
        for user in get_documents(db, "user", {"_id": {"$in": ids}}):
            tokens.extend(user.get("device_tokens") or [])
        if not tokens:
            return 0
        if not init_firebase():
            return 0

        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=body),
            data=data or {},
        )
        response = messaging.send_each_for_multicast(message)
        return response.success_count
    except Exception as e:
        logger.warning("FCM send warning: %s", e)
        return 0

"""
Push delivery through Firebase Cloud Messaging.

The gateway is a soft dependency: when credentials are missing or broken it
stays unavailable, and every send answers {"status": "unavailable"} instead
of raising. Delivery is best-effort; failures are logged and counted, never
retried.
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import FirebaseError

logger = logging.getLogger(__name__)

APP_NAME = "campus-market"
# FCM accepts at most 500 messages per send_each call
MAX_BATCH = 500

UNAVAILABLE = {"status": "unavailable"}


def _string_data(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    # FCM data values must be strings
    return {str(k): "" if v is None else str(v) for k, v in (data or {}).items()}


def build_message(token: str, title: str, body: str, data: Dict[str, Any] = None) -> messaging.Message:
    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body),
        data=_string_data(data),
    )


class PushGateway:
    def __init__(self, app=None):
        self.app = app

    @classmethod
    def from_env(cls) -> "PushGateway":
        raw = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")
        if not raw:
            logger.warning("FIREBASE_SERVICE_ACCOUNT_KEY not set; push delivery disabled")
            return cls(None)

        try:
            return cls(firebase_admin.get_app(APP_NAME))
        except ValueError:
            pass

        try:
            service_account = json.loads(raw)
            if service_account.get("private_key"):
                service_account["private_key"] = service_account["private_key"].replace("\\n", "\n")
            app = firebase_admin.initialize_app(credentials.Certificate(service_account), name=APP_NAME)
        except (ValueError, FirebaseError) as e:
            logger.error("Failed to initialize Firebase Admin: %s", e)
            return cls(None)

        logger.info("Firebase Admin initialized successfully")
        return cls(app)

    @property
    def available(self) -> bool:
        return self.app is not None

    def send(self, token: str, title: str, body: str, data: Dict[str, Any] = None) -> Dict[str, Any]:
        if not self.available:
            return dict(UNAVAILABLE)
        try:
            message_id = messaging.send(build_message(token, title, body, data), app=self.app)
        except (FirebaseError, ValueError) as e:
            logger.error("Push send error: %s", e)
            return {"status": "failed", "error": str(e)}
        return {"status": "sent", "message_id": message_id}

    def send_many(self, tokens: Iterable[str], title: str, body: str,
                  data: Dict[str, Any] = None) -> Dict[str, Any]:
        """Send the same message to every token, MAX_BATCH tokens per call"""
        if not self.available:
            return dict(UNAVAILABLE)

        tokens: List[str] = [t for t in tokens if t]
        success_count, failure_count = 0, 0
        for start in range(0, len(tokens), MAX_BATCH):
            chunk = tokens[start:start + MAX_BATCH]
            messages = [build_message(t, title, body, data) for t in chunk]
            try:
                batch = messaging.send_each(messages, app=self.app)
            except (FirebaseError, ValueError) as e:
                logger.error("Push batch of %d failed: %s", len(chunk), e)
                failure_count += len(chunk)
                continue
            for token, response in zip(chunk, batch.responses):
                if response.success:
                    success_count += 1
                else:
                    failure_count += 1
                    logger.warning("Push to %s... failed: %s", token[:12], response.exception)

        return {"status": "sent", "success_count": success_count, "failure_count": failure_count}

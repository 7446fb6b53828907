#!/usr/bin/env python3
"""
HTTP Broker Client
Places slice orders on a broker gateway using simple HTTP requests.

    POST {base_url}/orders
    {"instrument": "NSE:RELIANCE", "side": "BUY", "quantity": 10}

    2xx  -> {"broker_order_id": "..."}
    else -> BrokerError

Each executor thread gets its own requests.Session, so one slow broker
call never holds up the others.
"""

import logging
import threading
from typing import Callable, Optional

import requests

from pulse_platform.brokers.base import BrokerClient
from pulse_platform.execution.errors import BrokerError

logger = logging.getLogger(__name__)


class HttpBrokerClient(BrokerClient):
    """Gateway client. No retries: a slice reaches the broker at most once."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # an injected session is shared by every thread as-is
        self._shared_session = session
        self._session_factory = session_factory
        self._local = threading.local()

    def _session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session

        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            self._local.session = session
        return session

    def place_order(self, instrument: str, side: str, quantity: int) -> str:
        url = f"{self.base_url}/orders"
        data = {
            "instrument": instrument,
            "side": side,
            "quantity": quantity,
        }

        try:
            response = self._session().post(url, json=data, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Broker request failed: {e}")
            raise BrokerError(f"broker unreachable: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Broker rejected order: HTTP {response.status_code}")
            logger.error(f"Response: {response.text[:500]}")
            raise BrokerError(f"broker rejected order: HTTP {response.status_code} {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise BrokerError(f"broker returned invalid JSON: {e}") from e

        broker_order_id = body.get("broker_order_id") if isinstance(body, dict) else None
        if not broker_order_id:
            raise BrokerError(f"broker response missing broker_order_id: {body}")

        return str(broker_order_id)

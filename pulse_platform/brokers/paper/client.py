#!/usr/bin/env python3
"""
PAPER BROKER
============

In-memory broker for dry runs and local development.
Every order is accepted immediately unless its instrument is listed in
`reject_instruments`. Thread-safe: several executor threads may share one
instance.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from pulse_platform.brokers.base import BrokerClient
from pulse_platform.execution.errors import BrokerError
from pulse_platform.utils.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaperFill:
    broker_order_id: str
    instrument: str
    side: str
    quantity: int
    placed_at: datetime


class PaperBroker(BrokerClient):

    name = "paper"

    def __init__(self, reject_instruments: Optional[Iterable[str]] = None):
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._fills: List[PaperFill] = []
        self.reject_instruments = set(reject_instruments or ())

    def place_order(self, instrument: str, side: str, quantity: int) -> str:
        if instrument in self.reject_instruments:
            logger.warning("PAPER_REJECT | %s %s x%s", side, instrument, quantity)
            raise BrokerError(f"paper broker rejects {instrument}")

        with self._lock:
            broker_order_id = f"PAPER-{next(self._counter):08d}"
            self._fills.append(
                PaperFill(
                    broker_order_id=broker_order_id,
                    instrument=instrument,
                    side=side,
                    quantity=quantity,
                    placed_at=utc_now(),
                )
            )

        logger.info("PAPER_FILL | %s | %s %s x%s", broker_order_id, side, instrument, quantity)
        return broker_order_id

    @property
    def fills(self) -> List[PaperFill]:
        with self._lock:
            return list(self._fills)

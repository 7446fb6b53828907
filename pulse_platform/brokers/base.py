"""
Broker boundary.

The executor only ever sees BrokerClient.place_order(). Implementations
raise BrokerError for rejections and transport failures; anything else
escaping place_order() is treated as a failure by the executor as well.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


# ======================================================
# BASE CLIENT
# ======================================================
class BrokerClient(ABC):
    """
    Base interface for all broker gateways.
    """

    name = "broker"

    @abstractmethod
    def place_order(self, instrument: str, side: str, quantity: int) -> str:
        """
        Place one market order.

        Returns the broker's order id. Raises BrokerError on rejection.
        Called at most once per slice.
        """
        raise NotImplementedError


# ======================================================
# FACTORY
# ======================================================
def create_broker(config) -> BrokerClient:
    """Build the configured broker client (BROKER_MODE = paper | http)."""
    if config.broker_mode == "http":
        from pulse_platform.brokers.http.client import HttpBrokerClient

        broker = HttpBrokerClient(base_url=config.broker_url, timeout=config.broker_timeout)
    else:
        from pulse_platform.brokers.paper.client import PaperBroker

        broker = PaperBroker()

    logger.info("Broker client ready: %s", broker.name)
    return broker

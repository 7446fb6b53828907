"""
Worker wiring.

Roles:
    splitter  -> SplitterService
    executor  -> SliceExecutorService
    monitor   -> TimeoutMonitorService

A process may run any subset; several processes may run the same role
against one database.
"""

from typing import Iterable

from pulse_platform.brokers.base import BrokerClient
from pulse_platform.core.config import Config
from pulse_platform.execution.slice_executor import SliceExecutorService
from pulse_platform.execution.splitter import SplitterService
from pulse_platform.execution.timeout_monitor import TimeoutMonitorService
from pulse_platform.persistence.repository import OrderSliceRepository, ParentOrderRepository
from pulse_platform.services.service_manager import ServiceManager

ROLES = ("splitter", "executor", "monitor")


def parse_roles(value: str) -> list:
    """'splitter,executor' -> ['splitter', 'executor']; 'all' -> every role."""
    if value.strip().lower() == "all":
        return list(ROLES)

    roles = [r.strip().lower() for r in value.split(",") if r.strip()]
    unknown = [r for r in roles if r not in ROLES]
    if unknown:
        raise ValueError(f"Unknown role(s): {', '.join(unknown)}. Choose from {', '.join(ROLES)} or 'all'")
    if not roles:
        raise ValueError("At least one role is required")
    return roles


def build_services(config: Config, broker: BrokerClient, roles: Iterable[str] = ROLES) -> ServiceManager:
    manager = ServiceManager()
    order_repo = ParentOrderRepository()
    slice_repo = OrderSliceRepository()

    for role in roles:
        if role == "splitter":
            manager.register_service(
                SplitterService(
                    poll_interval=config.splitter_poll_interval,
                    order_repo=order_repo,
                    slice_repo=slice_repo,
                )
            )
        elif role == "executor":
            manager.register_service(
                SliceExecutorService(
                    broker=broker,
                    poll_interval=config.executor_poll_interval,
                    batch_size=config.executor_batch_size,
                    order_repo=order_repo,
                    slice_repo=slice_repo,
                )
            )
        elif role == "monitor":
            manager.register_service(
                TimeoutMonitorService(
                    interval=config.monitor_interval,
                    split_timeout_seconds=config.split_timeout_seconds,
                    execution_timeout_seconds=config.execution_timeout_seconds,
                    order_repo=order_repo,
                    slice_repo=slice_repo,
                )
            )
        else:
            raise ValueError(f"Unknown role: {role}")

    return manager

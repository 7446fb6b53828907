#!/usr/bin/env python3
"""
WORKER SUPERVISION
==================

Every pipeline worker (splitter, slice executor, timeout monitor) is a
PollingService: a `schedule` job that calls poll_once() on a fixed
interval inside its own supervised thread.

- A failing iteration is logged and the next one still runs
- A crash of the whole loop restarts it after a short back-off
- One worker going down never takes the others with it

Workers hold no state between iterations. Instances in this process and
in any other process coordinate only through the database.

Usage:
    manager = ServiceManager()
    manager.register_service(SplitterService(...))
    manager.start_all()
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import schedule

from pulse_platform.logging.logger_config import get_component_logger
from pulse_platform.utils.utils import utc_now


class ServiceStatus(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"
    RECOVERING = "recovering"


@dataclass
class ServiceHealth:
    """Live counters for one worker, read by /health and the health log."""
    name: str
    status: ServiceStatus = ServiceStatus.STOPPED
    started_at: Optional[datetime] = None
    iterations: int = 0
    rows_handled: int = 0
    last_iteration_at: Optional[datetime] = None
    restart_count: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def describe(self) -> str:
        line = (
            f"{self.name:16} {self.status.value:10} "
            f"iterations={self.iterations} rows={self.rows_handled}"
        )
        if self.restart_count:
            line += f" restarts={self.restart_count}"
        if self.status in (ServiceStatus.ERROR, ServiceStatus.RECOVERING):
            line += f" error={self.last_error}"
        return line

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "iterations": self.iterations,
            "rows_handled": self.rows_handled,
            "restarts": self.restart_count,
            "last_iteration_at": self.last_iteration_at.isoformat() if self.last_iteration_at else None,
            "error": self.last_error,
        }


class IsolatedService:
    """
    A named loop running in its own non-daemon thread.

    Subclasses implement run(), which must return once should_stop() is true.
    """

    RESTART_DELAY_SECONDS = 3

    def __init__(self, name: str, component_key: str, enable_auto_restart: bool = True):
        self.name = name
        self.logger = get_component_logger(component_key)
        self.enable_auto_restart = enable_auto_restart
        self.health = ServiceHealth(name=name)
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        with self._lock:
            if self.health.status != ServiceStatus.STOPPED:
                self.logger.warning(f"{self.name}: start ignored, already {self.health.status.value}")
                return

            self._stop_event.clear()
            self.health.status = ServiceStatus.STARTING
            self._thread = threading.Thread(target=self._supervise, name=f"{self.name}-worker", daemon=False)
            self._thread.start()

        self.logger.info(f"🚀 {self.name} started on thread {self._thread.name}")

    def _supervise(self) -> None:
        crashed = False
        while not self._stop_event.is_set():
            self.health.status = ServiceStatus.RUNNING
            self.health.started_at = utc_now()
            try:
                self.run()
                crashed = False
                break
            except Exception as e:
                crashed = True
                self.health.status = ServiceStatus.ERROR
                self.health.last_error = f"{type(e).__name__}: {e}"
                self.health.last_error_at = utc_now()
                self.logger.error(f"❌ {self.name} loop crashed: {e}", exc_info=True)

                if not self.enable_auto_restart or not self._back_off():
                    break

        if not crashed:
            self.health.status = ServiceStatus.STOPPED

    def _back_off(self) -> bool:
        """Wait before a restart. False when stop() arrived while waiting."""
        self.health.status = ServiceStatus.RECOVERING
        self.health.restart_count += 1
        self.logger.warning(
            f"🔄 {self.name}: restart #{self.health.restart_count} in {self.RESTART_DELAY_SECONDS}s"
        )
        return not self._stop_event.wait(self.RESTART_DELAY_SECONDS)

    def run(self) -> None:
        raise NotImplementedError("Subclasses must implement run()")

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            self._stop_event.set()
            if self.health.status != ServiceStatus.STOPPED:
                self.health.status = ServiceStatus.STOPPING

        thread = self._thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)
            if thread.is_alive():
                self.logger.error(f"{self.name}: still busy after {timeout}s, leaving thread behind")

        self.health.status = ServiceStatus.STOPPED
        self.logger.info(f"🛑 {self.name} stopped")

    def is_running(self) -> bool:
        return self.health.status == ServiceStatus.RUNNING

    def should_stop(self) -> bool:
        return self._stop_event.is_set()


class PollingService(IsolatedService):
    """
    Timer-driven worker loop.

    poll_once() is registered as a `schedule` job every `interval` seconds
    and also runs once immediately on start. The loop sleeps on the stop
    event, so stop() interrupts the wait instead of sitting out the interval.
    """

    def __init__(self, name: str, component_key: str, interval: float, enable_auto_restart: bool = True):
        super().__init__(name, component_key, enable_auto_restart)
        self.interval = interval
        self.scheduler = schedule.Scheduler()

    def poll_once(self) -> int:
        """One iteration. Returns the number of rows acted upon."""
        raise NotImplementedError("Subclasses must implement poll_once()")

    def run(self) -> None:
        self.scheduler.clear()
        self.scheduler.every(self.interval).seconds.do(self._tick)
        self.logger.info(f"{self.name}: polling every {self.interval}s")

        try:
            self._tick()
            while not self.should_stop():
                self.scheduler.run_pending()
                idle = self.scheduler.idle_seconds
                if idle is None:
                    idle = self.interval
                self._stop_event.wait(min(max(idle, 0.01), self.interval))
        finally:
            self.scheduler.clear()

    def _tick(self) -> None:
        try:
            self.health.rows_handled += self.poll_once() or 0
        except Exception:
            self.logger.exception(f"{self.name}: iteration failed, continuing")
        finally:
            self.health.iterations += 1
            self.health.last_iteration_at = utc_now()


class ServiceManager:
    """
    Owns the worker services of one process.

    Starts them in registration order, stops them in reverse, and logs a
    health line per worker every `health_log_interval` seconds.
    """

    def __init__(self, health_log_interval: float = 60.0):
        self.logger = get_component_logger('service')
        self.services: Dict[str, IsolatedService] = {}
        self.health_log_interval = health_log_interval
        self._health_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def register_service(self, service: IsolatedService) -> None:
        if service.name in self.services:
            raise ValueError(f"Service already registered: {service.name}")
        self.services[service.name] = service
        self.logger.info(f"Registered worker: {service.name}")

    def start_all(self, start_health_check: bool = True) -> None:
        self.logger.info(f"🚀 Starting {len(self.services)} worker(s): {', '.join(self.services)}")

        for service in self.services.values():
            try:
                service.start()
            except Exception as e:
                self.logger.error(f"Failed to start {service.name}: {e}")

        if start_health_check:
            self._stop_event.clear()
            self._health_thread = threading.Thread(
                target=self._health_log_loop, name="worker-health", daemon=True
            )
            self._health_thread.start()

    def stop_all(self) -> None:
        self.logger.info("🛑 Stopping all workers")
        self._stop_event.set()

        for service in reversed(list(self.services.values())):
            try:
                service.stop()
            except Exception as e:
                self.logger.error(f"Error stopping {service.name}: {e}")

        self.logger.info("✅ All workers stopped")

    def _health_log_loop(self) -> None:
        while not self._stop_event.wait(self.health_log_interval):
            try:
                for service in self.services.values():
                    self.logger.info(f"📋 {service.health.describe()}")
            except Exception as e:
                self.logger.error(f"Health log error: {e}")

    def get_status_summary(self) -> Dict[str, Dict[str, Any]]:
        return {name: service.health.to_dict() for name, service in self.services.items()}

    def all_running(self) -> bool:
        return all(s.is_running() for s in self.services.values())

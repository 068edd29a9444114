"""
Ticketing External Service Integrations
=======================================

Runtime collaborators outside the request path:
- YAML config file watcher (policy seeds, vendor schedule)
- Survey requests routed through the outbox
- APScheduler for the breach scan and outbox relay jobs
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk.core import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.ticketing.application import IEventSink, ISurveyService, Clock, utc_now
from helpdesk.ticketing.domain import SLAConfig, SurveyRequested, Ticket

logger = get_logger(__name__)

ReloadListener = Callable[[SLAConfig], None]


class ConfigFileHandler(FileSystemEventHandler):
    """
    Watchdog handler reloading the SLA config when its file changes.

    Editors that save through a temp file and rename show up as a move onto
    the watched path, so moves and creations are handled too.
    """

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path.resolve()
        super().__init__()

    def _is_config(self, path) -> bool:
        return bool(path) and Path(path).resolve() == self.config_path

    def _reload(self, path) -> None:
        logger.info("SLA config file changed", extra={"path": str(path)})
        self.config_manager.reload()

    def on_modified(self, event):
        if not event.is_directory and self._is_config(event.src_path):
            self._reload(event.src_path)

    def on_created(self, event):
        if not event.is_directory and self._is_config(event.src_path):
            self._reload(event.src_path)

    def on_moved(self, event):
        if not event.is_directory and self._is_config(getattr(event, "dest_path", None)):
            self._reload(event.dest_path)


class SLAConfigManager:
    """
    Thread-safe SLA configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. Reload listeners run on the watcher
    thread after every successful reload.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None
        self._listeners: List[ReloadListener] = []

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: file exists but is not a valid SLA config
        """
        self._path = Path(path)
        try:
            config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA config file: {self._path}", {"error": str(e)}
            ) from e

        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning(f"SLA config file not found: {path}, using defaults")
            return SLAConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAConfig(**data)

    def add_reload_listener(self, listener: ReloadListener) -> None:
        """Register a callback for successful reloads."""
        self._listeners.append(listener)

    def reload(self) -> bool:
        """Reload configuration from file; a bad file keeps the old config."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(f"Failed to reload SLA config: {e}")
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully")

        for listener in self._listeners:
            listener(new_config)
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable
        (e.g. some containers).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                f"Config file doesn't exist, skipping file watch: {self._path}. "
                "Using default SLA configuration."
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info(f"Started watching config file: {self._path}")
        except OSError as e:
            logger.warning(
                f"File watching not available, using static config: {e}"
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> SLAConfig:
        """Get current configuration."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    @property
    def is_loaded(self) -> bool:
        return self._config is not None

    def vendor_visit_weekday(self, default: str) -> str:
        """Weekday from the file when set, `default` otherwise."""
        return self.config.vendor_schedule.visit_weekday or default


# Global config manager instance
_config_manager: Optional[SLAConfigManager] = None


def get_config_manager() -> SLAConfigManager:
    """Get the global config manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = SLAConfigManager()
    return _config_manager


class OutboxSurveyService(ISurveyService):
    """
    Requests satisfaction surveys by queueing a SurveyRequested event.

    The survey system subscribes to the relayed event, so the request commits
    or rolls back together with the resolution.
    """

    def __init__(self, event_sink: IEventSink, clock: Clock = utc_now):
        self._events = event_sink
        self._clock = clock

    async def request_survey(self, ticket: Ticket) -> None:
        await self._events.publish(SurveyRequested(
            ticket_id=ticket.id,
            requester_id=ticket.requester_id,
            occurred_at=self._clock(),
        ))


@dataclass
class ScheduledJob:
    """Interval job registered with the scheduler."""
    job_id: str
    name: str
    func: Callable[[], Awaitable[Any]]
    interval_seconds: int


class SLAScheduler:
    """
    Wrapper for APScheduler running the engine's background jobs.

    Manages the lifecycle of the scheduler and jobs. Each job runs with
    max_instances=1, so a slow run is never overlapped by the next one.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._jobs: List[ScheduledJob] = []
        self._running = False

    def add_interval_job(
        self,
        job_id: str,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int
    ) -> None:
        """Register a job; takes effect on start()."""
        self._jobs.append(ScheduledJob(job_id, name, func, interval_seconds))

    async def start(self) -> None:
        """Start the scheduler with the registered jobs."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        for job in self._jobs:
            self._scheduler.add_job(
                job.func,
                "interval",
                seconds=job.interval_seconds,
                id=job.job_id,
                name=job.name,
                misfire_grace_time=job.interval_seconds,
                coalesce=True,
                max_instances=1,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"jobs": {job.job_id: job.interval_seconds for job in self._jobs}}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def job_ids(self) -> List[str]:
        return [job.job_id for job in self._jobs]

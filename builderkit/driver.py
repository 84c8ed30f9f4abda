"""Build drivers: their life cycle, features and the registry of factories."""

from __future__ import annotations

import abc
import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from .nodegroup import Node
from .platform import Platform
from .progress import SolveStatus

__all__ = [
    "DEFAULT_IMAGE",
    "QEMU_IMAGE",
    "DEFAULT_ROOTLESS_IMAGE",
    "Status",
    "Feature",
    "Info",
    "InitConfig",
    "DriverNotRunning",
    "DriverNotConnecting",
    "Driver",
    "Factory",
    "CachedDriver",
    "DriverRegistry",
    "boot",
]

DEFAULT_IMAGE = "moby/buildkit:buildx-stable-1"
QEMU_IMAGE = "tonistiigi/binfmt:latest"
DEFAULT_ROOTLESS_IMAGE = DEFAULT_IMAGE + "-rootless"

Logger = Callable[[SolveStatus], None]


class DriverNotRunning(Exception):
    """The driver's BuildKit daemon is not running."""

    def __init__(self, message: str = "driver not running") -> None:
        super().__init__(message)


class DriverNotConnecting(Exception):
    """The driver cannot reach its daemon."""

    def __init__(self, message: str = "driver not connecting") -> None:
        super().__init__(message)


class Status(enum.IntEnum):
    """Life-cycle state of a driver's daemon."""

    INACTIVE = 0
    STARTING = 1
    RUNNING = 2
    STOPPING = 3
    STOPPED = 4

    def __str__(self) -> str:
        return self.name.lower()


class Feature(str, enum.Enum):
    """Capabilities a driver may offer."""

    OCI_EXPORTER = "OCI exporter"
    DOCKER_EXPORTER = "Docker exporter"
    CACHE_EXPORT = "cache export"
    MULTI_PLATFORM = "multiple platforms"


@dataclass
class Info:
    """State of a driver.

    ``dynamic_nodes`` stays empty when the nodes are listed statically in
    the store.
    """

    status: Status
    dynamic_nodes: list[Node] = field(default_factory=list)


@dataclass
class InitConfig:
    """Everything a factory needs to create a driver."""

    name: str = ""
    docker_api: Any = None
    kube_client_config: Any = None
    buildkit_flags: list[str] | None = None
    files: dict[str, bytes] | None = None
    driver_opts: dict[str, str] | None = None
    auth: Any = None
    platforms: list[Platform] = field(default_factory=list)
    context_path_hash: str = ""


class Driver(abc.ABC):
    """A way of running a BuildKit daemon."""

    @abc.abstractmethod
    def factory(self) -> "Factory":
        """Return the factory that made this driver."""

    @abc.abstractmethod
    def bootstrap(self, logger: Logger) -> None:
        """Start the daemon, reporting progress to ``logger``."""

    @abc.abstractmethod
    def info(self) -> Info:
        """Return the current state of the daemon."""

    @abc.abstractmethod
    def stop(self, force: bool) -> None:
        """Stop the daemon."""

    @abc.abstractmethod
    def rm(self, force: bool, rm_volume: bool, rm_daemon: bool) -> None:
        """Remove the daemon and, if asked, its state."""

    @abc.abstractmethod
    def client(self) -> Any:
        """Return a client connected to the daemon."""

    @abc.abstractmethod
    def features(self) -> dict[Feature, bool]:
        """Return which features the driver supports."""

    @abc.abstractmethod
    def is_moby_driver(self) -> bool:
        """Tell whether the daemon is built into the Docker engine."""

    @abc.abstractmethod
    def config(self) -> InitConfig:
        """Return the configuration the driver was made with."""


class Factory(abc.ABC):
    """Creates drivers of one kind."""

    @abc.abstractmethod
    def name(self) -> str:
        """Return the driver name."""

    @abc.abstractmethod
    def usage(self) -> str:
        """Return a usage string."""

    @abc.abstractmethod
    def priority(self, api: Any) -> int:
        """Return the priority for default selection; lower wins."""

    @abc.abstractmethod
    def new(self, config: InitConfig) -> Driver:
        """Create a driver."""

    @abc.abstractmethod
    def allows_instances(self) -> bool:
        """Tell whether named builder instances may use this driver."""


class CachedDriver(Driver):
    """A driver whose client is created once and then reused."""

    def __init__(self, driver: Driver) -> None:
        self.driver = driver
        self._lock = threading.Lock()
        self._done = False
        self._client: Any = None
        self._error: BaseException | None = None

    def client(self) -> Any:
        """Return the client; the first result, or error, is kept for good."""
        with self._lock:
            if not self._done:
                try:
                    self._client = self.driver.client()
                except Exception as exc:
                    self._error = exc
                self._done = True
        if self._error is not None:
            raise self._error
        return self._client

    def factory(self) -> Factory:
        return self.driver.factory()

    def bootstrap(self, logger: Logger) -> None:
        self.driver.bootstrap(logger)

    def info(self) -> Info:
        return self.driver.info()

    def stop(self, force: bool) -> None:
        self.driver.stop(force)

    def rm(self, force: bool, rm_volume: bool, rm_daemon: bool) -> None:
        self.driver.rm(force, rm_volume, rm_daemon)

    def features(self) -> dict[Feature, bool]:
        return self.driver.features()

    def is_moby_driver(self) -> bool:
        return self.driver.is_moby_driver()

    def config(self) -> InitConfig:
        return self.driver.config()


class DriverRegistry:
    """Driver factories, keyed by name."""

    def __init__(self) -> None:
        self._factories: dict[str, Factory] = {}

    def register(self, factory: Factory) -> None:
        """Add a factory, replacing any with the same name."""
        self._factories[factory.name()] = factory

    def default_factory(self, api: Any, instance_required: bool) -> Factory:
        """Return the factory of lowest priority value for the given API."""
        if not self._factories:
            raise LookupError("no drivers available")
        candidates = [
            (f.priority(api), f)
            for f in self._factories.values()
            if not instance_required or f.allows_instances()
        ]
        if not candidates:
            raise LookupError("no drivers available")
        candidates.sort(key=lambda pair: pair[0])
        return candidates[0][1]

    def get_factory(self, name: str, instance_required: bool) -> Factory | None:
        """Return the factory with this name, or ``None``."""
        for factory in self._factories.values():
            if instance_required and not factory.allows_instances():
                continue
            if factory.name() == name:
                return factory
        return None

    def get_driver(self, config: InitConfig, factory: Factory | None = None) -> CachedDriver:
        """Create a driver, choosing the default factory when none is given."""
        if factory is None:
            factory = self.default_factory(config.docker_api, False)
        return CachedDriver(factory.new(config))

    def factories(self) -> list[Factory]:
        """Return all factories sorted by name."""
        return sorted(self._factories.values(), key=lambda f: f.name())


def boot(driver: Driver, logger: Logger) -> Any:
    """Start the driver if needed and return its client.

    Bootstraps at most twice and retries while the client reports the
    daemon is not running.
    """
    attempt = 0
    while True:
        info = driver.info()
        attempt += 1
        if info.status != Status.RUNNING:
            if attempt > 2:
                raise RuntimeError(
                    f"failed to bootstrap {type(driver).__name__} driver in attempts"
                )
            driver.bootstrap(logger)
        try:
            return driver.client()
        except DriverNotRunning:
            if attempt <= 2:
                continue
            raise
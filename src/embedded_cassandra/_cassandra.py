"""Orchestration of one embedded Cassandra node.

AsyncCassandra ties the pieces together: it allocates ports, prepares and
customizes a working directory, builds the launch command and drives a
ProcessHandle. Cassandra is the blocking facade over it for synchronous
callers.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack
from typing import TYPE_CHECKING, Self, final

import anyio
import anyio.abc
import anyio.to_thread
from anyio.from_thread import start_blocking_portal

from embedded_cassandra.config import PORT_REGISTRY, ConfigBuilder, Settings, allocate
from embedded_cassandra.customizers import apply_customizers, default_customizers, install_resources
from embedded_cassandra.distribution import (
    Distribution,
    prepare_working_directory,
    remove_paths,
    remove_working_directory,
)
from embedded_cassandra.exceptions import ConfigError, ProcessError, StopError
from embedded_cassandra.process import LifecycleState, ProcessHandle, ReadinessRules, build_launch
from embedded_cassandra.utils import create_logger
from embedded_cassandra.version import Version

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path
    from types import TracebackType

    from anyio.from_thread import BlockingPortal
    from structlog.typing import FilteringBoundLogger

    from embedded_cassandra.config import NodeConfig, PortRegistry
    from embedded_cassandra.customizers import Customizer, Resource
    from embedded_cassandra.process import LaunchSpec, OutputSink

    ConfigCustomizer = Callable[[ConfigBuilder], object]

_V4 = Version.of(4, 0)


def _logger_from_settings(settings: Settings, **context: object) -> FilteringBoundLogger:
    logging_settings = settings.logging
    return create_logger(
        level=logging_settings.level.value,
        log_format=logging_settings.format.value,
        log_file=logging_settings.file,
        max_bytes=logging_settings.max_bytes,
        backup_count=logging_settings.backup_count,
        **context,
    )


@final
class AsyncCassandra:
    """One embedded Cassandra node, driven from async code.

    Must be used as an async context manager: the context owns the task
    group that runs the output pump, and leaving it stops the node.

    Example:
        >>> async with AsyncCassandra("/opt/cassandra", "4.1.3") as cassandra:
        ...     await cassandra.start()
        ...     port = cassandra.bound_config.native_transport_port
    """

    __slots__: tuple[str, ...] = (
        "_builder",
        "_closed",
        "_config_customizers",
        "_customizers",
        "_distribution",
        "_handle",
        "_is_temporary",
        "_lock",
        "_logger",
        "_name",
        "_output_sink",
        "_readiness",
        "_registry",
        "_resources",
        "_settings",
        "_task_group",
        "_version",
        "_working_directory",
    )

    def __init__(  # noqa: PLR0913
        self,
        distribution: Distribution | Path | str,
        version: Version | str,
        *,
        config: ConfigBuilder | None = None,
        config_customizers: Iterable[ConfigCustomizer] = (),
        customizers: Iterable[Customizer] | None = None,
        resources: Iterable[Resource] = (),
        readiness: ReadinessRules | None = None,
        settings: Settings | None = None,
        output_sink: OutputSink | None = None,
        name: str = "cassandra",
        registry: PortRegistry | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the node. Nothing touches the disk or network until start().

        Args:
            distribution: Unpacked distribution, or its directory.
            version: Server version, parsed when given as text.
            config: Node configuration; copied, so later changes have no effect.
            config_customizers: Callables editing a copy of ``config`` before
                ports are allocated.
            customizers: File customizers; ``default_customizers()`` when None.
            resources: Files copied into the working directory before the
                customizers run.
            readiness: Readiness rules; the per-version defaults when None.
            settings: Orchestrator settings; defaults when None.
            output_sink: Sink for process output and lifecycle events.
            name: Node name used in logs, events and errors.
            registry: Port registry shared by concurrent runs.
            logger: Logger; built from ``settings.logging`` when None.

        Raises:
            FormatError: If ``version`` is malformed.
            FileError: If ``distribution`` is a path that is not a distribution.
        """
        self._version: Version = Version.parse(version) if isinstance(version, str) else version
        self._distribution: Distribution = (
            distribution if isinstance(distribution, Distribution) else Distribution.from_directory(distribution)
        )
        self._builder: ConfigBuilder = config.copy() if config is not None else ConfigBuilder()
        self._config_customizers: tuple[ConfigCustomizer, ...] = tuple(config_customizers)
        self._customizers: tuple[Customizer, ...] = (
            tuple(customizers) if customizers is not None else default_customizers()
        )
        self._resources: tuple[Resource, ...] = tuple(resources)
        self._readiness: ReadinessRules | None = readiness
        self._settings: Settings = settings if settings is not None else Settings()
        self._output_sink: OutputSink | None = output_sink
        self._name: str = name
        self._registry: PortRegistry = registry if registry is not None else PORT_REGISTRY
        self._logger: FilteringBoundLogger = (
            logger
            if logger is not None
            else _logger_from_settings(self._settings, node=name, version=str(self._version))
        )
        self._lock: anyio.Lock = anyio.Lock()
        self._task_group: anyio.abc.TaskGroup | None = None
        self._handle: ProcessHandle | None = None
        self._working_directory: Path | None = None
        self._is_temporary: bool = False
        self._closed: bool = False

    async def __aenter__(self) -> Self:
        task_group = anyio.create_task_group()
        _ = await task_group.__aenter__()
        self._task_group = task_group
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        task_group = self._task_group
        try:
            with anyio.CancelScope(shield=True):
                await self.stop()
        finally:
            self._task_group = None
            if task_group is not None:
                # Only pump and watcher tasks live here; the body's exception propagates unwrapped
                task_group.cancel_scope.cancel()
                _ = await task_group.__aexit__(None, None, None)
        return None

    @property
    def name(self) -> str:
        """Return the node name."""
        return self._name

    @property
    def version(self) -> Version:
        """Return the server version."""
        return self._version

    @property
    def distribution(self) -> Distribution:
        """Return the distribution the node runs from."""
        return self._distribution

    @property
    def settings(self) -> Settings:
        """Return the orchestrator settings."""
        return self._settings

    @property
    def state(self) -> LifecycleState:
        """Return the lifecycle state of the node."""
        if self._handle is None:
            return LifecycleState.STOPPED if self._closed else LifecycleState.NOT_STARTED
        return self._handle.state

    @property
    def bound_config(self) -> NodeConfig | None:
        """Return the configuration with concrete ports, None before start()."""
        return self._handle.bound_config if self._handle is not None else None

    @property
    def working_directory(self) -> Path | None:
        """Return the working directory, None before start() or after removal."""
        return self._working_directory

    @property
    def pid(self) -> int | None:
        """Return the server process ID, None if never spawned."""
        return self._handle.pid if self._handle is not None else None

    def is_running(self) -> bool:
        """Check if the node is ready and its process alive."""
        return self._handle is not None and self._handle.is_running()

    async def wait(self) -> int:
        """Wait for the server process to exit and return its exit code.

        Raises:
            ProcessError: If the node has not been started.
        """
        if self._handle is None:
            msg = f"Cassandra node '{self._name}' has not been started"
            raise ProcessError(msg, node=self._name)
        return await self._handle.wait()

    async def start(self) -> None:
        """Start the node and wait until it is ready.

        Idempotent. After stop() it is a no-op.

        Raises:
            ConfigError: If the configuration is invalid.
            PortAllocationError: If ports cannot be allocated.
            FileError: If the working directory cannot be prepared.
            StartError: If the node does not become ready.
        """
        handle = await self._prepare()
        if handle is not None:
            await handle.start()

    async def stop(self) -> None:
        """Stop the node and release its ports and temporary directory.

        When the process cannot be stopped, its ports and working directory
        stay reserved and stop() may be retried.

        Raises:
            StopError: If the process cannot be stopped.
        """
        self._closed = True
        async with self._lock:
            handle = self._handle
        if handle is not None:
            await handle.close()
        async with self._lock:
            await anyio.to_thread.run_sync(self._release_resources)

    async def _prepare(self) -> ProcessHandle | None:
        async with self._lock:
            if self._closed:
                return None
            if self._handle is not None:
                return self._handle
            if self._task_group is None:
                msg = f"Cassandra node '{self._name}' must be started inside 'async with'"
                raise ProcessError(msg, node=self._name)

            config, launch = await anyio.to_thread.run_sync(self._prepare_blocking)
            rules = self._readiness if self._readiness is not None else ReadinessRules.for_node(self._version, config)
            self._handle = ProcessHandle(
                launch,
                version=self._version,
                config=config,
                rules=rules,
                task_group=self._task_group,
                settings=self._settings,
                output_sink=self._output_sink,
                logger=self._logger,
                name=self._name,
            )
            return self._handle

    def _prepare_blocking(self) -> tuple[NodeConfig, LaunchSpec]:
        builder = self._builder.copy()
        for customize in self._config_customizers:
            _ = customize(builder)

        if builder.start_rpc and self._version.is_at_least(_V4):
            msg = f"The Thrift RPC transport does not exist in Cassandra {self._version}"
            raise ConfigError(msg, key="start_rpc")

        try:
            allocated = allocate(
                builder,
                attempts=self._settings.port_attempts,
                registry=self._registry,
                owner=self,
                logger=self._logger,
            )
            config = allocated.freeze()
            working_directory, is_temporary = prepare_working_directory(self._distribution, config.working_directory)
            self._working_directory = working_directory
            self._is_temporary = is_temporary
            self._logger.info("working_directory_prepared", path=str(working_directory), temporary=is_temporary)

            _ = install_resources(self._resources, working_directory, logger=self._logger)

            _ = apply_customizers(
                self._customizers,
                working_directory,
                self._version,
                self._distribution.platform,
                config,
                logger=self._logger,
            )
            launch = build_launch(self._distribution, self._version, config, working_directory)
        except Exception:
            self._release_resources()
            raise
        return config, launch

    def _release_resources(self) -> None:
        released = self._registry.release(self)
        if released:
            self._logger.debug("ports_released", ports=sorted(released))

        working_directory = self._working_directory
        if working_directory is None:
            return
        if self._is_temporary and self._settings.delete_working_directory:
            if remove_working_directory(working_directory, logger=self._logger):
                self._working_directory = None
        elif self._settings.delete_only:
            _ = remove_paths(working_directory, self._settings.delete_only, logger=self._logger)


def _register_exit_hook(callback: Callable[[], object]) -> None:
    # Interpreter shutdown joins non-daemon threads, the portal's worker
    # threads among them, before atexit handlers run
    register = threading._register_atexit  # noqa: SLF001  # pyright: ignore[reportPrivateUsage]
    register(callback)


@final
class _ShutdownHook:
    """Stops every Cassandra still running when the interpreter exits."""

    __slots__: tuple[str, ...] = ("_lock", "_nodes", "_registered")

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._nodes: set[Cassandra] = set()
        self._registered: bool = False

    def __contains__(self, cassandra: object) -> bool:
        return cassandra in self._nodes

    def add(self, cassandra: Cassandra) -> None:
        with self._lock:
            self._nodes.add(cassandra)
            if not self._registered:
                _register_exit_hook(self.run)
                self._registered = True

    def discard(self, cassandra: Cassandra) -> None:
        with self._lock:
            self._nodes.discard(cassandra)

    def run(self) -> None:
        """Stop the tracked nodes.

        Raises:
            ExceptionGroup: If some nodes could not be stopped.
        """
        with self._lock:
            nodes = list(self._nodes)
        errors: list[StopError] = []
        for cassandra in nodes:
            try:
                cassandra.stop()
            except StopError as e:
                errors.append(e)
        if errors:
            msg = "Cassandra nodes could not be stopped at exit"
            raise ExceptionGroup(msg, errors)


_SHUTDOWN_HOOK = _ShutdownHook()


@final
class Cassandra:
    """Blocking facade over AsyncCassandra.

    The async core runs on a blocking portal started by the first start()
    and shut down by stop(). start() does not hold the facade lock while
    waiting for readiness, so stop() from another thread interrupts it.

    Unless ``register_shutdown_hook`` is False, a started node is stopped
    when the interpreter exits, so a forgotten stop() does not leave the
    server running. The hook runs before shutdown joins threads.

    Example:
        >>> with Cassandra("/opt/cassandra", "4.1.3") as cassandra:
        ...     port = cassandra.bound_config.native_transport_port
    """

    __slots__: tuple[str, ...] = (
        "_cassandra",
        "_exit_stack",
        "_lock",
        "_portal",
        "_register_shutdown_hook",
    )

    def __init__(  # noqa: PLR0913
        self,
        distribution: Distribution | Path | str,
        version: Version | str,
        *,
        config: ConfigBuilder | None = None,
        config_customizers: Iterable[ConfigCustomizer] = (),
        customizers: Iterable[Customizer] | None = None,
        resources: Iterable[Resource] = (),
        readiness: ReadinessRules | None = None,
        settings: Settings | None = None,
        output_sink: OutputSink | None = None,
        name: str = "cassandra",
        registry: PortRegistry | None = None,
        logger: FilteringBoundLogger | None = None,
        register_shutdown_hook: bool = True,
    ) -> None:
        """Initialize the node.

        Arguments match AsyncCassandra, plus ``register_shutdown_hook``,
        which stops the node at interpreter exit.
        """
        self._cassandra: AsyncCassandra = AsyncCassandra(
            distribution,
            version,
            config=config,
            config_customizers=config_customizers,
            customizers=customizers,
            resources=resources,
            readiness=readiness,
            settings=settings,
            output_sink=output_sink,
            name=name,
            registry=registry,
            logger=logger,
        )
        self._register_shutdown_hook: bool = register_shutdown_hook
        self._lock: threading.Lock = threading.Lock()
        self._exit_stack: ExitStack | None = None
        self._portal: BlockingPortal | None = None

    def __enter__(self) -> Self:
        try:
            self.start()
        except BaseException:
            self.stop()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()

    @property
    def name(self) -> str:
        """Return the node name."""
        return self._cassandra.name

    @property
    def version(self) -> Version:
        """Return the server version."""
        return self._cassandra.version

    @property
    def state(self) -> LifecycleState:
        """Return the lifecycle state of the node."""
        return self._cassandra.state

    @property
    def bound_config(self) -> NodeConfig | None:
        """Return the configuration with concrete ports, None before start()."""
        return self._cassandra.bound_config

    @property
    def working_directory(self) -> Path | None:
        """Return the working directory, None before start() or after removal."""
        return self._cassandra.working_directory

    @property
    def pid(self) -> int | None:
        """Return the server process ID, None if never spawned."""
        return self._cassandra.pid

    def is_running(self) -> bool:
        """Check if the node is ready and its process alive."""
        return self._cassandra.is_running()

    def start(self) -> None:
        """Start the node and block until it is ready.

        Raises:
            StartError: If the node does not become ready.
        """
        with self._lock:
            if self._portal is None:
                stack = ExitStack()
                try:
                    portal = stack.enter_context(start_blocking_portal())
                    _ = stack.enter_context(portal.wrap_async_context_manager(self._cassandra))
                except BaseException:
                    stack.close()
                    raise
                self._exit_stack = stack
                self._portal = portal
                if self._register_shutdown_hook:
                    _SHUTDOWN_HOOK.add(self)
            portal = self._portal
        portal.call(self._cassandra.start)

    def wait(self) -> int:
        """Block until the server process exits and return its exit code.

        Raises:
            ProcessError: If the node has not been started.
        """
        portal = self._portal
        if portal is None:
            msg = f"Cassandra node '{self.name}' has not been started"
            raise ProcessError(msg, node=self.name)
        return portal.call(self._cassandra.wait)

    def stop(self) -> None:
        """Stop the node and shut down the portal.

        Raises:
            StopError: If the process cannot be stopped.
        """
        with self._lock:
            portal = self._portal
            stack = self._exit_stack
            if portal is None or stack is None:
                return
            try:
                portal.call(self._cassandra.stop)
            finally:
                self._portal = None
                self._exit_stack = None
                _SHUTDOWN_HOOK.discard(self)
                stack.close()

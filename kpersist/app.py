"""Application bootstrap for kpersist.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → run directory
              → resource watcher → pod watcher

Shutdown stops the watchers in reverse startup order.  Each watcher's stop
error is caught and logged independently so that a failure in one does not
prevent the other from shutting down cleanly.

The worker-failure policy lives here and nowhere else: it is the only place
that turns the failure of a single entity's worker into a process exit.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kpersist.collector.pod_watcher import PodWatcher
from kpersist.collector.resource_watcher import ResourceWatcher
from kpersist.config import load_config
from kpersist.errors import WatchSetupError
from kpersist.models.config import FailurePolicy, KPersistConfig
from kpersist.observability.logging import get_logger, setup_logging
from kpersist.storage.layout import RESOURCE_KIND, RunLayout

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KPersistApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already
    stopped) is safe.
    """

    def __init__(self, config: KPersistConfig | None = None) -> None:
        self.config: KPersistConfig | None = config
        self.layout: RunLayout | None = None
        self._resource_watcher: ResourceWatcher | None = None
        self._pod_watcher: PodWatcher | None = None
        self._api_client: Any = None

        self._shutdown = asyncio.Event()
        self._fatal: BaseException | None = None
        self._running = False
        self._stopped = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def fatal_error(self) -> BaseException | None:
        """The failure that made the process stop, if any."""
        return self._fatal

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) re-raises this as a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("kpersist starting", version=_kpersist_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Run directory --------------------------------------------
        self._create_run_dir()

        # --- 5. Resource watcher -----------------------------------------
        await self._start_resource_watcher()

        # --- 6. Pod watcher ----------------------------------------------
        await self._start_pod_watcher()

        self._running = True
        self._log.info("kpersist started", path=str(self.layout.run_dir) if self.layout else "")

    async def _start_k8s_client(self) -> None:
        """Configure kubernetes-asyncio from KUBECONFIG, in-cluster config or the default kubeconfig."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            if self.config.kubeconfig:
                await k8s_config.load_kube_config(config_file=self.config.kubeconfig)
                self._log.info("k8s client configured from kubeconfig", path=self.config.kubeconfig)
            else:
                try:
                    k8s_config.load_incluster_config()
                    self._log.info("k8s client configured from in-cluster service account")
                except k8s_config.ConfigException:
                    await k8s_config.load_kube_config()
                    self._log.info("k8s client configured from default kubeconfig")

            # One connection pool shared by both watch streams.
            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _create_run_dir(self) -> None:
        assert self._log is not None
        assert self.config is not None
        layout = RunLayout(base_dir=Path(self.config.output.base_dir))
        self._log.info("creating directory for storing files", path=str(layout.run_dir))
        try:
            layout.create()
        except OSError as exc:
            raise _ComponentError("run_dir", exc) from exc
        self.layout = layout

    async def _start_resource_watcher(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.layout is not None
        self._log.info("initializing resource watcher", **_describe(self.config))
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            watcher = ResourceWatcher(
                k8s_client.CustomObjectsApi(self._api_client),
                self.config.resources,
                self.layout,
                inbox_capacity=self.config.tracker.inbox_capacity,
                on_worker_failure=self.handle_worker_failure,
            )
            await watcher.start()
            self._watch_for_setup_failure(watcher)
            self._resource_watcher = watcher
        except Exception as exc:
            raise _ComponentError("resource_watcher", exc) from exc

    async def _start_pod_watcher(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.layout is not None
        self._log.info("initializing pod log persisters", label_selector=self.config.pods.label_selector)
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            watcher = PodWatcher(
                k8s_client.CoreV1Api(self._api_client),
                self.config.pods,
                self.layout,
                on_worker_failure=self.handle_worker_failure,
            )
            await watcher.start()
            self._watch_for_setup_failure(watcher)
            self._pod_watcher = watcher
        except Exception as exc:
            raise _ComponentError("pod_watcher", exc) from exc

    def _watch_for_setup_failure(self, watcher: ResourceWatcher | PodWatcher) -> None:
        task = watcher.task
        if task is None:
            return

        def _done(t: asyncio.Task[None]) -> None:
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._fail(exc)

        task.add_done_callback(_done)

    # ------------------------------------------------------------------
    # Failure policy
    # ------------------------------------------------------------------

    def handle_worker_failure(self, kind: str, entity: str, exc: BaseException) -> None:
        """Decide what a failed entity worker means for the whole process.

        Resource trackers follow the configured policy: ``fatal`` stops the
        process with a non-zero status, ``degrade`` keeps every other
        entity running.  Pod followers never stop the process.
        """
        log = self._log or get_logger("app")
        policy = self.config.tracker.failure_policy if self.config else FailurePolicy.FATAL
        if kind == RESOURCE_KIND and policy is FailurePolicy.FATAL:
            log.critical("resource tracking failed", resource=entity, error=str(exc))
            self._fail(exc)
            return
        log.error("entity tracking degraded", entity_kind=kind, entity=entity, error=str(exc))

    def _fail(self, exc: BaseException) -> None:
        if self._fatal is None:
            self._fatal = exc
        self.request_shutdown()

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def wait_for_shutdown(self) -> None:
        await self._shutdown.wait()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the watchers in reverse startup order."""
        if self._stopped or (not self._running and self._log is None):
            return
        self._stopped = True

        log = self._log or get_logger("app")
        log.info("kpersist shutting down")
        self._running = False

        await self._stop_component("pod_watcher", self._pod_watcher)
        self._pod_watcher = None
        await self._stop_component("resource_watcher", self._resource_watcher)
        self._resource_watcher = None
        await self._stop_k8s_client()

        log.info("kpersist stopped")

    async def _stop_component(self, name: str, component: ResourceWatcher | PodWatcher | None) -> None:
        if component is None:
            return
        log = self._log or get_logger("app")
        try:
            await asyncio.wait_for(component.stop(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        api_client, self._api_client = self._api_client, None
        if api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))


def _describe(config: KPersistConfig) -> dict[str, str]:
    res = config.resources
    return {
        "group": res.group,
        "version": res.version,
        "plural": res.plural,
        "namespace": res.namespace or "*",
    }


def _kpersist_version() -> str:
    from kpersist import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: KPersistConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KPersistApp(config)
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_shutdown)

    try:
        await app.start()
        await app.wait_for_shutdown()
    except _ComponentError as exc:
        # A mandatory component failed; log and exit non-zero
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        raise SystemExit(1) from exc
    finally:
        await app.stop()

    if app.fatal_error is not None:
        cause = app.fatal_error
        log = get_logger("app")
        if isinstance(cause, WatchSetupError):
            log.critical("fatal watch error", stream=cause.stream, error=str(cause.cause))
        raise SystemExit(1) from cause

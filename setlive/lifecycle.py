from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

from .events import EventLog
from .intent import IntentApp
from .supervisor import CommandError, ServiceBuilder, ServiceDescriptor, Supervisor


class AppState(str, Enum):
    UNPREPARED = "unprepared"
    STOPPING = "stopping"
    CONFIGURING = "configuring"
    RELINKING = "relinking"
    STARTING = "starting"
    LIVE = "live"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class Transition:
    app: str
    version: str | None
    state: AppState
    reason: str = ""
    # Stage that was running when the app failed.
    failed_at: AppState | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            "app": self.app,
            "version": self.version,
            "state": self.state.value,
            "reason": self.reason,
            "failed_at": self.failed_at.value if self.failed_at else None,
        }


class Lifecycle:
    """Moves one application to its active version.

    Sequence: stop, configure servicebuilder, relink ``current``, start. The
    first failing step ends the sequence for that application; nothing already
    done is rolled back and nothing is retried.
    """

    def __init__(self, supervisor: Supervisor, builder: ServiceBuilder, log: EventLog) -> None:
        self.supervisor = supervisor
        self.builder = builder
        self.log = log

    def set_live(self, app: IntentApp) -> Transition:
        active = app.active_versions()
        if not active:
            # TODO: ensure the service is stopped once intent can express that.
            self.log.info("No active version, skipping", app=app.name)
            return Transition(app.name, None, AppState.SKIPPED, "no active version")

        version = active[0]
        if len(active) > 1:
            self.log.error(f"{len(active)} versions marked active ({', '.join(active)}), using {version}", app=app.name)

        install = app.install_dir(version)
        if not os.path.exists(install):
            self.log.info(f"{install} not prepared, skipping", app=app.name, version=version)
            return Transition(app.name, version, AppState.SKIPPED, "not prepared")

        # No lease is taken before stopping; a cluster-wide lock would go here.
        stage = AppState.STOPPING
        try:
            self.log.info("Stopping", app=app.name, version=version)
            self.supervisor.stop(app.name)

            stage = AppState.CONFIGURING
            self.log.info("Configuring service builder", app=app.name, version=version)
            self.builder.configure(ServiceDescriptor(app_name=app.name, run=[app.launch_path]))

            stage = AppState.RELINKING
            self.log.info("Symlinking", app=app.name, version=version)
            self._relink(app.current_link, install)

            stage = AppState.STARTING
            self.log.info("Starting", app=app.name, version=version)
            self.supervisor.start(app.name)
        except (CommandError, OSError, ValueError) as e:
            reason = f"{_describe(stage)}: {e}"
            self.log.error(reason, app=app.name, version=version)
            return Transition(app.name, version, AppState.FAILED, reason, failed_at=stage)

        self.log.info("Live", app=app.name, version=version)
        return Transition(app.name, version, AppState.LIVE)

    def _relink(self, current: str, install: str) -> None:
        try:
            os.remove(current)
        except OSError as e:
            raise OSError(e.errno, f"could not remove current symlink: {e.strerror}", current) from e
        os.symlink(install, current)


def _describe(stage: AppState) -> str:
    return {
        AppState.STOPPING: "Could not stop",
        AppState.CONFIGURING: "Could not configure servicebuilder",
        AppState.RELINKING: "Could not symlink current",
        AppState.STARTING: "Could not start",
    }.get(stage, stage.value)

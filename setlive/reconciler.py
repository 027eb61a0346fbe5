from __future__ import annotations

import queue
import socket
from dataclasses import dataclass, field
from threading import Thread
from typing import Callable

from .events import EventLog
from .intent import IntentApp, IntentNode, Invalid, KVReader, decode_app, list_host_apps
from .kv import KVError
from .lifecycle import AppState, Lifecycle, Transition

_DONE = object()


class ReconcileError(Exception):
    """The run cannot proceed at all (host unknown or intent store unreachable)."""


@dataclass
class RunReport:
    host: str
    transitions: list[Transition] = field(default_factory=list)
    invalid: list[Invalid] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "host": self.host,
            "transitions": [t.as_dict() for t in self.transitions],
            "invalid": [{"app": i.name, "reason": i.reason} for i in self.invalid],
        }


def resolve_hostname(override: str | None = None) -> str:
    if override:
        return override
    try:
        host = socket.gethostname()
    except OSError as e:
        raise ReconcileError(f"Could not determine hostname: {e}") from e
    if not host:
        raise ReconcileError("Could not determine hostname")
    return host


class Reconciler:
    """Runs one reconciliation pass for this host."""

    def __init__(self, kv: KVReader, lifecycle: Lifecycle, log: EventLog, queue_size: int = 1) -> None:
        self.kv = kv
        self.lifecycle = lifecycle
        self.log = log
        self.queue_size = max(1, int(queue_size))

    def poll_once(
        self,
        host: str,
        on_app: Callable[[IntentApp], None] | None = None,
        on_invalid: Callable[[Invalid], None] | None = None,
    ) -> IntentNode:
        """Read the intent for ``host``, calling ``on_app`` for each valid app as it is decoded.

        Raises KVError if the host's application list cannot be read.
        """
        self.log.info("Polling intent store")
        raw_apps = list_host_apps(self.kv, host)

        intent = IntentNode(host=host)
        for name in sorted(raw_apps):
            self.log.info(f"Checking spec for {name}")
            result = decode_app(self.kv, name, raw_apps[name])
            if isinstance(result, Invalid):
                self.log.error(result.reason, app=name)
                if on_invalid:
                    on_invalid(result)
                continue
            intent.apps[name] = result.app
            if on_app:
                on_app(result.app)
        return intent

    def run(self, host: str, pipelined: bool = True) -> RunReport:
        report = RunReport(host=host)
        if pipelined:
            self._run_pipelined(report)
        else:
            self._run_inline(report)
        return report

    def _execute(self, app: IntentApp) -> Transition:
        try:
            return self.lifecycle.set_live(app)
        except Exception as e:
            reason = f"Unexpected error: {type(e).__name__}: {e}"
            self.log.error(reason, app=app.name)
            return Transition(app.name, app.active_version(), AppState.FAILED, reason)

    def _run_inline(self, report: RunReport) -> None:
        try:
            self.poll_once(
                report.host,
                on_app=lambda app: report.transitions.append(self._execute(app)),
                on_invalid=report.invalid.append,
            )
        except KVError as e:
            self._fatal(report.host, e)

    def _run_pipelined(self, report: RunReport) -> None:
        q: queue.Queue = queue.Queue(maxsize=self.queue_size)

        def consume() -> None:
            while True:
                item = q.get()
                if item is _DONE:
                    return
                report.transitions.append(self._execute(item))

        worker = Thread(target=consume, name="setlive-lifecycle", daemon=True)
        worker.start()
        error: KVError | None = None
        try:
            self.poll_once(report.host, on_app=q.put, on_invalid=report.invalid.append)
        except KVError as e:
            error = e
        finally:
            q.put(_DONE)
            worker.join()
        if error is not None:
            self._fatal(report.host, error)

    def _fatal(self, host: str, err: Exception) -> None:
        msg = f"Could not read intent for {host}: {err}"
        self.log.fatal(msg)
        raise ReconcileError(msg) from err

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace

from .events import EventLog
from .intent import Invalid
from .kv import KVClient, KVError
from .lifecycle import Lifecycle
from .reconciler import ReconcileError, Reconciler, resolve_hostname
from .settings import Settings, settings
from .supervisor import ServiceBuilder, Supervisor


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def build_reconciler(cfg: Settings, kv: KVClient, log: EventLog) -> Reconciler:
    lifecycle = Lifecycle(Supervisor(cfg), ServiceBuilder(cfg), log)
    return Reconciler(kv, lifecycle, log, queue_size=cfg.queue_size)


def main(argv: list[str] | None = None, cfg: Settings | None = None) -> int:
    p = argparse.ArgumentParser(prog="setlive", description="Node-local deployment reconciler")
    p.add_argument("--consul", help="Consul address (default from SETLIVE_CONSUL_ADDR)")
    p.add_argument("--prefix", help="KV key prefix")
    p.add_argument("--host", help="Reconcile for this host instead of the local hostname")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_run = sub.add_parser("run", help="Run one reconciliation pass")
    s_run.add_argument("--inline", action="store_true", help="Execute each app as it is decoded, without the worker")

    s_intent = sub.add_parser("intent", help="Print the decoded intent for this host and exit")

    # Accepted after the subcommand as well; SUPPRESS keeps a global --host intact.
    for s in (s_run, s_intent):
        s.add_argument("--host", default=argparse.SUPPRESS, help="Reconcile for this host instead of the local hostname")

    args = p.parse_args(argv)

    cfg = cfg or settings
    overrides = {}
    if args.consul:
        overrides["consul_addr"] = args.consul
    if args.prefix is not None:
        overrides["kv_prefix"] = args.prefix
    if args.host:
        overrides["hostname"] = args.host
    if getattr(args, "inline", False):
        overrides["pipelined"] = False
    cfg = replace(cfg, **overrides) if overrides else cfg

    logging.basicConfig(
        level=logging.INFO if args.verbose or args.cmd == "run" else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log = EventLog(cfg.events_db)

    try:
        host = resolve_hostname(cfg.hostname)
    except ReconcileError as e:
        log.fatal(str(e))
        return 1

    with KVClient(cfg.consul_addr, prefix=cfg.kv_prefix, timeout_s=cfg.kv_timeout_s) as kv:
        rec = build_reconciler(cfg, kv, log)

        if args.cmd == "intent":
            invalid: list[Invalid] = []
            try:
                node = rec.poll_once(host, on_invalid=invalid.append)
            except KVError as e:
                log.fatal(f"Could not read intent for {host}: {e}")
                return 1
            _print(
                {
                    "host": node.host,
                    "apps": {
                        name: {
                            "basedir": app.basedir,
                            "versions": app.versions,
                            "active_version": app.active_version(),
                        }
                        for name, app in node.apps.items()
                    },
                    "invalid": [{"app": i.name, "reason": i.reason} for i in invalid],
                }
            )
            return 0

        if args.cmd == "run":
            try:
                report = rec.run(host, pipelined=cfg.pipelined)
            except ReconcileError:
                return 1
            _print(report.as_dict())
            return 0

    return 2


def entrypoint() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    entrypoint()

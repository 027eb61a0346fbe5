import os
import subprocess

import pytest

from setlive.events import EventLog
from setlive.kv import KVError
from setlive.lifecycle import Lifecycle
from setlive.reconciler import Reconciler
from setlive.settings import Settings
from setlive.supervisor import ServiceBuilder, Supervisor


class FakeKV:
    """In-memory intent store with the same get/list contract as KVClient."""

    def __init__(self, data=None, fail_keys=()):
        self.data = dict(data or {})
        self.fail_keys = set(fail_keys)

    def get(self, key):
        if key in self.fail_keys:
            raise KVError(f"GET {key}: connection refused")
        return self.data.get(key)

    def list(self, prefix):
        if prefix in self.fail_keys:
            raise KVError(f"GET {prefix}/: connection refused")
        out = {}
        for key, value in self.data.items():
            if not key.startswith(prefix + "/"):
                continue
            rest = key[len(prefix) + 1 :]
            if rest and "/" not in rest:
                out[rest] = value
        return out


class RecordingLog(EventLog):
    def __init__(self):
        super().__init__(None)
        self.records = []

    def _record(self, level, message, app, version):
        self.records.append((level, app, message))
        super()._record(level, message, app, version)

    def messages(self, level=None, app=None):
        return [m for (lv, a, m) in self.records if (level is None or lv == level) and (app is None or a == app)]


class FakeRunner:
    """Stands in for subprocess.run; records every command line."""

    def __init__(self):
        self.calls = []
        self.fail = []

    def fail_on(self, *prefix):
        self.fail.append(tuple(prefix))

    def __call__(self, cmd, capture_output=False, text=False):
        cmd = list(cmd)
        self.calls.append(cmd)
        failed = any(tuple(cmd[: len(f)]) == f for f in self.fail)
        return subprocess.CompletedProcess(cmd, 1 if failed else 0, "", "boom" if failed else "")

    def for_app(self, service_path):
        return [c for c in self.calls if c[-1] == service_path]


@pytest.fixture
def cfg(tmp_path):
    sb = tmp_path / "servicebuilder.d"
    sb.mkdir()
    return Settings(
        consul_addr="127.0.0.1:8500",
        kv_prefix="",
        hostname="node1",
        sb_path=str(sb),
        runit_staging_path=str(tmp_path / "service-stage"),
        runit_path=str(tmp_path / "service"),
        sv_bin="sv",
        servicebuilder_bin="servicebuilder",
        queue_size=1,
        pipelined=True,
        events_db=None,
    )


@pytest.fixture
def runner(monkeypatch):
    r = FakeRunner()
    monkeypatch.setattr("setlive.supervisor.subprocess.run", r)
    return r


@pytest.fixture
def log():
    return RecordingLog()


@pytest.fixture
def lifecycle(cfg, log, runner):
    return Lifecycle(Supervisor(cfg), ServiceBuilder(cfg), log)


@pytest.fixture
def make_reconciler(lifecycle, log):
    def _make(kv, queue_size=1):
        return Reconciler(kv, lifecycle, log, queue_size=queue_size)

    return _make


def prepare_app(basedir, name, version, current_target=None):
    """Create the on-disk layout for an installed version and an existing current link."""
    install = basedir / "installs" / f"{name}_{version}"
    install.mkdir(parents=True)
    if current_target is not None:
        os.symlink(str(current_target), str(basedir / "current"))
    return install


def app_records(name, basedir, versions, cluster="prod", host="node1"):
    return {
        f"nodes/{host}/{name}": {"cluster": cluster},
        f"clusters/{name}/{cluster}/versions": versions,
        f"clusters/{name}/{cluster}/deploy_config": {"basedir": str(basedir)},
    }

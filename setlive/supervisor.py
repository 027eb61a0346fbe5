from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass

import yaml

from .settings import Settings

APP_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,127}$")
VERSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,63}$")


class CommandError(Exception):
    """An external command could not be run or exited non-zero."""

    def __init__(self, cmd: list[str], returncode: int | None, stderr: str = "") -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f"exit {returncode}" if returncode is not None else "could not execute"
        if self.stderr:
            detail = f"{detail}: {self.stderr}"
        super().__init__(f"{' '.join(cmd)}: {detail}")


def validate_app_name(name: str) -> None:
    # App names become file names and runit service directories.
    if not APP_NAME_RE.match(name):
        raise ValueError(f"invalid application name {name!r}")


def validate_version(version: str) -> None:
    # Version-ids become part of the install path and the symlink target.
    if not VERSION_RE.match(version):
        raise ValueError(f"invalid version id {version!r}")


def run_command(cmd: list[str]) -> None:
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise CommandError(cmd, None, str(e)) from e
    if proc.returncode != 0:
        raise CommandError(cmd, proc.returncode, proc.stderr or "")


class Supervisor:
    """runit ``sv`` wrapper."""

    def __init__(self, cfg: Settings) -> None:
        self.sv_bin = cfg.sv_bin
        self.runit_path = cfg.runit_path

    def service_path(self, app: str) -> str:
        return os.path.join(self.runit_path, app)

    def stop(self, app: str) -> None:
        run_command([self.sv_bin, "stop", self.service_path(app)])

    def start(self, app: str) -> None:
        run_command([self.sv_bin, "start", self.service_path(app)])


@dataclass(frozen=True)
class ServiceDescriptor:
    app_name: str
    run: list[str]

    def to_yaml(self) -> str:
        return yaml.safe_dump({self.app_name: {"run": list(self.run)}}, default_flow_style=False)


class ServiceBuilder:
    """Writes descriptor files and regenerates runit services from them."""

    def __init__(self, cfg: Settings) -> None:
        self.bin = cfg.servicebuilder_bin
        self.sb_path = cfg.sb_path
        self.runit_path = cfg.runit_path
        self.staging_path = cfg.runit_staging_path

    def descriptor_path(self, app: str) -> str:
        return os.path.join(self.sb_path, f"{app}.yaml")

    def write_descriptor(self, desc: ServiceDescriptor) -> str:
        validate_app_name(desc.app_name)
        path = self.descriptor_path(desc.app_name)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(desc.to_yaml())
        os.chmod(path, 0o644)
        return path

    def build(self) -> None:
        run_command([self.bin, "-c", self.sb_path, "-d", self.runit_path, "-s", self.staging_path])

    def configure(self, desc: ServiceDescriptor) -> str:
        path = self.write_descriptor(desc)
        self.build()
        return path

"""Intent model and decoder.

KV values arrive as generic trees (whatever JSON decoded to). They are first
checked to be flat string maps, then validated into typed records. Decoding
never coerces types and never raises for bad data: every application yields
either ``Decoded`` or ``Invalid``.
"""
from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, TypeAdapter, ValidationError, field_validator

from .kv import KVError
from .supervisor import validate_app_name, validate_version

ACTIVE = "active"

_STRING_MAP = TypeAdapter(dict[StrictStr, StrictStr])


class KVReader(Protocol):
    def get(self, key: str) -> Any: ...

    def list(self, prefix: str) -> dict[str, Any]: ...


class NodeRecord(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    cluster: StrictStr = Field(..., min_length=1)


class DeployConfig(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    basedir: StrictStr

    @field_validator("basedir")
    @classmethod
    def _absolute(cls, v: str) -> str:
        if not os.path.isabs(v):
            raise ValueError("relative basedir is not allowed")
        return v


@dataclass(frozen=True)
class IntentApp:
    name: str
    basedir: str
    versions: dict[str, str] = field(default_factory=dict)

    def active_versions(self) -> list[str]:
        return sorted(vid for vid, status in self.versions.items() if status == ACTIVE)

    def active_version(self) -> str | None:
        """Version that should be live, or None.

        When several versions claim to be active the smallest version-id wins.
        """
        active = self.active_versions()
        return active[0] if active else None

    def install_dir(self, version: str) -> str:
        return os.path.join(self.basedir, "installs", f"{self.name}_{version}")

    @property
    def current_link(self) -> str:
        return os.path.join(self.basedir, "current")

    @property
    def launch_path(self) -> str:
        return os.path.join(self.basedir, "current", "bin", "launch")


@dataclass
class IntentNode:
    host: str
    apps: dict[str, IntentApp] = field(default_factory=dict)


@dataclass(frozen=True)
class Decoded:
    app: IntentApp


@dataclass(frozen=True)
class Invalid:
    name: str
    reason: str


DecodeResult = Union[Decoded, Invalid]


def string_map(raw: Any) -> dict[str, str] | None:
    """Return ``raw`` as a flat str->str dict, or None if it is anything else."""
    try:
        return _STRING_MAP.validate_python(raw, strict=True)
    except ValidationError:
        return None


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(x) for x in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def node_key(host: str) -> str:
    return posixpath.join("nodes", host)


def versions_key(app: str, cluster: str) -> str:
    return posixpath.join("clusters", app, cluster, "versions")


def deploy_config_key(app: str, cluster: str) -> str:
    return posixpath.join("clusters", app, cluster, "deploy_config")


def _get_map(kv: KVReader, key: str) -> dict[str, str]:
    try:
        raw = kv.get(key)
    except KVError as e:
        raise ValueError(f"could not fetch {key}: {e}") from e
    if raw is None:
        raise ValueError(f"no data for {key}")
    mapped = string_map(raw)
    if mapped is None:
        raise ValueError(f"invalid data for {key}: not a string map")
    return mapped


def decode_app(kv: KVReader, name: str, raw: Any) -> DecodeResult:
    """Decode one application from its node record and cluster records."""
    try:
        validate_app_name(name)
    except ValueError as e:
        return Invalid(name, str(e))

    node_data = string_map(raw)
    if node_data is None:
        return Invalid(name, "invalid node data: not a string map")
    try:
        node = NodeRecord.model_validate(node_data)
    except ValidationError as e:
        return Invalid(name, f"no cluster key in node data ({_first_error(e)})")

    try:
        versions = _get_map(kv, versions_key(name, node.cluster))
        config_key = deploy_config_key(name, node.cluster)
        config_data = _get_map(kv, config_key)
        for version in versions:
            validate_version(version)
    except ValueError as e:
        return Invalid(name, str(e))

    try:
        config = DeployConfig.model_validate(config_data)
    except ValidationError as e:
        return Invalid(name, f"invalid {config_key}: {_first_error(e)}")

    return Decoded(IntentApp(name=name, basedir=config.basedir, versions=versions))


def list_host_apps(kv: KVReader, host: str) -> dict[str, Any]:
    """Raw node records for ``host``. KVError propagates: it is fatal to the run."""
    return kv.list(node_key(host))

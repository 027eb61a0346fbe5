from __future__ import annotations

import base64
import binascii
import json
from typing import Any

import httpx


class KVError(Exception):
    """The intent store could not be queried."""


def _base_url(addr: str) -> str:
    addr = addr.rstrip("/")
    if "://" not in addr:
        addr = f"http://{addr}"
    return addr


def _decode_value(raw: str | None) -> Any:
    """Consul returns base64 values; the payload inside is JSON.

    Values that are not JSON are returned as plain text so that callers see
    them as malformed instead of failing the whole listing.
    """
    if raw is None:
        return None
    try:
        text = base64.b64decode(raw).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return raw
    try:
        return json.loads(text)
    except ValueError:
        return text


def _is_entry(entry: Any) -> bool:
    return (
        isinstance(entry, dict)
        and isinstance(entry.get("Key"), str)
        and (entry.get("Value") is None or isinstance(entry.get("Value"), str))
    )


class KVClient:
    """Minimal reader for the Consul HTTP KV API.

    ``get`` returns the decoded value of one key, ``list`` the decoded values of
    the immediate children of a prefix keyed by child name.
    """

    def __init__(
        self,
        addr: str = "127.0.0.1:8500",
        prefix: str = "",
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.prefix = prefix.strip("/")
        self._client = httpx.Client(base_url=_base_url(addr), timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "KVClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _key(self, key: str) -> str:
        key = key.strip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def _fetch(self, key: str, params: dict[str, str] | None = None) -> list[dict[str, Any]] | None:
        try:
            resp = self._client.get(f"/v1/kv/{key}", params=params)
        except httpx.HTTPError as e:
            raise KVError(f"GET {key}: {type(e).__name__}: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise KVError(f"GET {key}: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise KVError(f"GET {key}: invalid response body") from e
        if not isinstance(data, list) or not all(_is_entry(e) for e in data):
            raise KVError(f"GET {key}: unexpected response shape")
        return data

    def get(self, key: str) -> Any:
        full = self._key(key)
        entries = self._fetch(full)
        if not entries:
            return None
        for entry in entries:
            if entry.get("Key") == full:
                return _decode_value(entry.get("Value"))
        return None

    def list(self, prefix: str) -> dict[str, Any]:
        full = self._key(prefix)
        entries = self._fetch(f"{full}/", params={"recurse": "true"})
        out: dict[str, Any] = {}
        for entry in entries or []:
            rest = str(entry.get("Key", ""))[len(full) + 1 :]
            # Only immediate children; folders and deeper keys are ignored.
            if not rest or "/" in rest:
                continue
            out[rest] = _decode_value(entry.get("Value"))
        return out

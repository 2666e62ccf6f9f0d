"""Runtime settings shared by the admission webhook and the sweeper."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

ENV_PREFIX = "SWEEP_"


@dataclass(frozen=True)
class SweepSettings:
    enable_label: str = "extensions.linkerd.io/sweep-sidecar"
    enable_value: str = "enabled"
    inject_annotation: str = "linkerd.io/inject"
    inject_value: str = "enabled"
    containers_annotation: str = "extensions.linkerd.io/sweep-containers"
    sidecar_name: str = "linkerd-proxy"
    admin_port: int = 4191
    shim_image: str = "ghcr.io/mateiidavid/await-util:test"
    shim_init_name: str = "linkerd-await-init"
    shim_volume: str = "linkerd-await"
    shim_mount_path: str = "/linkerd"
    shim_source_path: str = "/tmp/linkerd-await"
    label_selector: Optional[str] = None
    dedup_ttl_seconds: float = 30.0
    queue_size: int = 100
    shutdown_timeout_seconds: float = 5.0
    drain_timeout_seconds: float = 10.0
    api_timeout_seconds: float = 5.0
    watch_timeout_seconds: int = 60

    @property
    def shim_path(self) -> str:
        return f"{self.shim_mount_path.rstrip('/')}/linkerd-await"

    @property
    def watch_selector(self) -> str:
        if self.label_selector:
            return self.label_selector
        return f"{self.enable_label}={self.enable_value}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], base: Optional["SweepSettings"] = None) -> "SweepSettings":
        base = base or cls()
        known = {f.name: f for f in fields(cls)}
        overrides: Dict[str, Any] = {}
        for key, raw in data.items():
            name = str(key).replace("-", "_")
            if name not in known:
                raise ValueError(f"Unknown setting '{key}'")
            overrides[name] = _coerce(name, raw, getattr(base, name))
        return replace(base, **overrides)

    @classmethod
    def from_file(cls, path: Path, base: Optional["SweepSettings"] = None) -> "SweepSettings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping")
        return cls.from_mapping(data, base)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["SweepSettings"] = None,
    ) -> "SweepSettings":
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                data[f.name] = raw
        return cls.from_mapping(data, base)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "SweepSettings":
        """Defaults, then the optional YAML file, then SWEEP_* variables."""

        settings = cls()
        if config_path is not None:
            settings = cls.from_file(config_path, settings)
        return cls.from_env(base=settings)


def _coerce(name: str, raw: Any, current: Any) -> Any:
    if raw is None:
        return None
    if isinstance(current, bool):
        return str(raw).strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        try:
            value = int(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be an integer") from exc
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got: {value}")
        return value
    if isinstance(current, float):
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be a number") from exc
        if value < 0:
            raise ValueError(f"{name} must be >= 0, got: {value}")
        return value
    return str(raw)


__all__ = ["ENV_PREFIX", "SweepSettings"]

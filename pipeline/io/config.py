"""Service configuration: pack sizes, server bind, storage backend, CORS.

Configuration comes from a YAML or JSON file, optionally patched with inline
``key=value`` overrides and a few environment variables, and is validated
against ``pipeline/schemas/app_config.schema.yaml`` before anything uses it.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from pipeline.io.validate import iter_errors, load_schema
from processes.allocator.catalog import Catalog
from processes.allocator.types import AllocationError, ConfigError

REPO_ROOT = Path(__file__).resolve().parents[2]
SCHEMAS_ROOT = REPO_ROOT / "pipeline" / "schemas"
DEFAULT_CONFIG_PATH = Path("config") / "config.yaml"

DEFAULT_PACK_SIZES = [250, 500, 1000, 2000, 5000]

ENV_CONFIG = "PACKS_CONFIG"
ENV_DATA_DIR = "PACKS_DATA_DIR"
ENV_STORAGE = "PACKS_STORAGE"

logger = logging.getLogger("pipeline.io.config")


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class StorageConfig:
    # none | sqlite | parquet
    backend: str = "sqlite"
    path: str = "data/allocations.db"


@dataclass
class AppConfig:
    pack_sizes: list[int] = field(default_factory=lambda: list(DEFAULT_PACK_SIZES))
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:3000"]
    )

    def catalog(self) -> Catalog:
        return Catalog.from_sizes(self.pack_sizes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pack_sizes": list(self.pack_sizes),
            "server": asdict(self.server),
            "storage": asdict(self.storage),
            "cors": {"allow_origins": list(self.cors_origins)},
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> AppConfig:
        server = dict(d.get("server") or {})
        storage = dict(d.get("storage") or {})
        cors = dict(d.get("cors") or {})
        out = cls(pack_sizes=list(d["pack_sizes"]))
        out.server = ServerConfig(
            **{k: v for k, v in server.items() if k in ServerConfig.__annotations__}
        )
        out.storage = StorageConfig(
            **{k: v for k, v in storage.items() if k in StorageConfig.__annotations__}
        )
        if "allow_origins" in cors:
            out.cors_origins = list(cors["allow_origins"])
        return out


def _coerce_scalar(val: str) -> Any:
    lower = val.lower()
    if lower in ("true", "false"):
        return lower == "true"
    if "," in val:
        return [_coerce_scalar(part.strip()) for part in val.split(",") if part.strip()]
    try:
        if "." in val:
            return float(val)
        return int(val)
    except ValueError:
        return val


def _set_dotted(cfg: dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    node = cfg
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def load_config(
    config_path: Path | None, inline_kv: Sequence[str] | None = None
) -> dict[str, Any]:
    """Read the raw config mapping and apply ``key=value`` overrides.

    Keys may be dotted (``server.port=9000``); comma-separated values become
    lists (``pack_sizes=23,31,53``).
    """
    cfg: dict[str, Any] = {}
    if config_path:
        text = config_path.read_text(encoding="utf-8")
        try:
            if config_path.suffix.lower() in (".yaml", ".yml"):
                cfg = dict(yaml.safe_load(text) or {})
            else:
                cfg = dict(json.loads(text))
        except (yaml.YAMLError, json.JSONDecodeError, TypeError, ValueError) as e:
            raise ConfigError(
                f"failed to parse config {config_path}: {e}",
                details={"path": str(config_path)},
            ) from e
    apply_overrides(cfg, inline_kv)
    return cfg


def apply_overrides(cfg: dict[str, Any], inline_kv: Sequence[str] | None) -> None:
    for item in inline_kv or ():
        if "=" not in item:
            continue
        k, v = item.split("=", 1)
        value = _coerce_scalar(v.strip())
        if k.strip() == "pack_sizes" and not isinstance(value, list):
            value = [value]
        _set_dotted(cfg, k.strip(), value)


def _apply_env(cfg: dict[str, Any], env: Mapping[str, str]) -> None:
    backend = env.get(ENV_STORAGE)
    if backend:
        _set_dotted(cfg, "storage.backend", backend.strip().lower())
    data_dir = env.get(ENV_DATA_DIR)
    if data_dir:
        storage = cfg.get("storage") or {}
        name = Path(str(storage.get("path") or StorageConfig.path)).name
        _set_dotted(cfg, "storage.path", str(Path(data_dir) / name))


def validate_config(cfg: Mapping[str, Any], schemas_root: Path | None = None) -> None:
    schema = load_schema((schemas_root or SCHEMAS_ROOT) / "app_config.schema.yaml")
    problems = iter_errors(schema, dict(cfg))
    if problems:
        raise ConfigError(
            "invalid configuration: " + "; ".join(problems),
            details={"errors": problems},
        )
    try:
        Catalog.from_sizes(cfg["pack_sizes"])
    except AllocationError as e:
        raise ConfigError(e.message, details=e.details) from e


def load_app_config(
    config_path: Path | None = None,
    inline_kv: Sequence[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    schemas_root: Path | None = None,
) -> AppConfig:
    """Resolve, validate and return the service configuration.

    The path defaults to ``$PACKS_CONFIG`` or ``config/config.yaml``. A missing
    file falls back to built-in defaults; a present but invalid one raises
    :class:`ConfigError`.
    """
    env = os.environ if env is None else env
    path = config_path or Path(env.get(ENV_CONFIG) or DEFAULT_CONFIG_PATH)

    if path.exists():
        cfg = load_config(path, inline_kv)
        source = str(path)
    else:
        logger.warning(
            json.dumps({"event": "config_default", "path": str(path), "reason": "missing"})
        )
        cfg = AppConfig().to_dict()
        apply_overrides(cfg, inline_kv)
        source = "defaults"

    _apply_env(cfg, env)
    validate_config(cfg, schemas_root)
    out = AppConfig.from_dict(cfg)
    logger.info(
        json.dumps(
            {
                "event": "config_loaded",
                "source": source,
                "pack_sizes": out.pack_sizes,
                "server": asdict(out.server),
                "storage": asdict(out.storage),
            }
        )
    )
    return out

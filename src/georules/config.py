"""Server configuration from defaults, a YAML file, environment and CLI flags."""

from __future__ import annotations

import importlib
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .panel import PanelOptions


class ConfigError(ValueError):
    """Invalid or missing configuration."""


# Environment variable -> ServerConfig field
ENV_VARS = {
    "UPSTREAM_URL": "upstream_url",
    "SECRET_URL": "secret_url",
    "RULES_DIR": "rules_dir",
    "OVERRIDES_DIR": "overrides_dir",
    "DIRECT_SAME_COUNTRY": "direct_same_country",
    "PUBLIC_URL": "public_url",
    "GEOIP_DB": "geoip_db",
    "LISTEN_HOST": "listen_host",
    "LISTEN_PORT": "listen_port",
    "TRANSFORM": "transform",
}

PANEL_ENV_VARS = {
    "PANEL_ADDRESS": "address",
    "PANEL_USERNAME": "username",
    "PANEL_PASSWORD": "password",
    "PANEL_INBOUND_IDS": "inbound_ids",
    "PANEL_CACHE_TTL": "cache_ttl",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"invalid boolean: {value!r}")


def parse_int_list(value: Any) -> list[int]:
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = [v for v in str(value).split(",") if v.strip()]
    try:
        return [int(v) for v in items]
    except (TypeError, ValueError):
        raise ConfigError(f"invalid integer list: {value!r}") from None


@dataclass
class ServerConfig:
    """Runtime settings for the proxy."""

    upstream_url: str = ""
    secret_url: str = ""
    rules_dir: str = "rules"
    overrides_dir: str = "overrides"
    direct_same_country: bool = True
    public_url: str | None = None
    geoip_db: str | None = None
    listen_host: str = "0.0.0.0"
    listen_port: int = 8080
    transform: str | None = None
    panel: PanelOptions | None = None
    _panel_raw: dict = field(default_factory=dict, repr=False)

    def update(self, values: Mapping[str, Any]) -> None:
        """Apply overrides, ignoring None values."""
        names = {f.name for f in fields(self) if not f.name.startswith("_")}
        for key, value in values.items():
            if value is None:
                continue
            if key == "panel":
                if not isinstance(value, Mapping):
                    raise ConfigError("panel must be a mapping")
                self._panel_raw.update({k: v for k, v in value.items() if v is not None})
                continue
            if key not in names:
                raise ConfigError(f"unknown config key: {key}")
            setattr(self, key, value)

    def validate(self) -> None:
        """Normalise types and check required settings."""
        if not self.upstream_url:
            raise ConfigError("upstream_url is required (UPSTREAM_URL)")
        if not self.secret_url:
            raise ConfigError("secret_url is required (SECRET_URL)")
        self.upstream_url = self.upstream_url.rstrip("/")
        self.secret_url = self.secret_url.strip("/")
        self.direct_same_country = parse_bool(self.direct_same_country)
        try:
            self.listen_port = int(self.listen_port)
        except (TypeError, ValueError):
            raise ConfigError(f"invalid listen_port: {self.listen_port!r}") from None
        if self._panel_raw:
            self.panel = self._build_panel(self._panel_raw)

    @staticmethod
    def _build_panel(raw: Mapping[str, Any]) -> PanelOptions:
        missing = [k for k in ("address", "username", "password") if not raw.get(k)]
        if missing:
            raise ConfigError(f"panel settings missing: {', '.join(missing)}")
        try:
            cache_ttl = float(raw.get("cache_ttl", 30))
        except (TypeError, ValueError):
            raise ConfigError(f"invalid panel cache_ttl: {raw.get('cache_ttl')!r}") from None
        return PanelOptions(
            address=str(raw["address"]),
            username=str(raw["username"]),
            password=str(raw["password"]),
            inbound_ids=parse_int_list(raw.get("inbound_ids", [])),
            cache_ttl=cache_ttl,
        )


def load_yaml_config(path: str | Path) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from None
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def env_config(environ: Mapping[str, str] | None = None) -> dict:
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {
        name: environ[var] for var, name in ENV_VARS.items() if var in environ
    }
    panel = {name: environ[var] for var, name in PANEL_ENV_VARS.items() if var in environ}
    if panel:
        values["panel"] = panel
    return values


def build_config(
    config_file: str | Path | None = None,
    cli_values: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    """Merge defaults, YAML file, environment and CLI values (later wins)."""
    config = ServerConfig()
    if config_file:
        config.update(load_yaml_config(config_file))
    config.update(env_config(environ))
    if cli_values:
        config.update(cli_values)
    config.validate()
    return config


def load_transform(target: str | None):
    """Import a post-processing hook given as "package.module:function"."""
    if not target:
        return None
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"transform must look like module:function, got {target!r}")
    try:
        module = importlib.import_module(module_name)
        func = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"cannot load transform {target}: {e}") from None
    if not callable(func):
        raise ConfigError(f"transform {target} is not callable")
    return func

"""Configuration loader for n8nctl.

Values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/n8nctl/config.yml`` (or an override path).
3. The variables the n8n container already exports (``N8N_PORT``,
   ``N8N_OWNER_EMAIL``, ``N8N_USER_MANAGEMENT_JWT_SECRET`` ...).
4. Environment variables prefixed with ``N8NCTL_``.
5. Explicit overrides supplied programmatically (reserved for CLI flags).

Prefixed environment keys use double underscores to express nesting, e.g.::

    export N8NCTL_SERVICE__PORT=5679
    export N8NCTL_ACTIVATION__ATTEMPTS=10

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load n8nctl configuration. Install with "
        "`pip install n8nctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "N8NCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

# Variables exported by the compose stack, mapped onto config keys.
SERVICE_ENV_KEYS: dict[str, tuple[str, ...]] = {
    "ADDR_LOCALHOST": ("service", "host"),
    "N8N_PORT": ("service", "port"),
    "N8N_OWNER_EMAIL": ("owner", "email"),
    "N8N_OWNER_PASSWORD": ("owner", "password"),
    "N8N_API_KEY_ISSUER": ("api_key", "issuer"),
    "N8N_API_KEY_AUDIENCE": ("api_key", "audience"),
    "N8N_USER_MANAGEMENT_JWT_SECRET": ("api_key", "secret"),
}

REDACTED = "********"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ServiceConfig:
    """Where the n8n HTTP API listens."""

    host: str = "127.0.0.1"
    port: int = 5678
    timeout: float = 30.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"host": self.host, "port": self.port, "timeout": self.timeout}


@dataclass(frozen=True)
class OwnerConfig:
    """Credentials of the single administrative user."""

    email: str = ""
    password: str = ""
    first_name: str = "Node"
    last_name: str = "Mation"

    def to_dict(self, *, redact: bool = True) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "email": self.email,
            "password": REDACTED if redact else self.password,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }


@dataclass(frozen=True)
class ApiKeyConfig:
    """Claims and signing secret for the owner's public API key."""

    secret: str = ""
    label: str = "local"
    issuer: str = "n8n"
    audience: str = "public-api"

    def to_dict(self, *, redact: bool = True) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "label": self.label,
            "issuer": self.issuer,
            "audience": self.audience,
            "secret": REDACTED if redact else self.secret,
        }


@dataclass(frozen=True)
class ActivationConfig:
    """Retry policy applied to workflow activation calls."""

    attempts: int = 5
    delay_ms: int = 300

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"attempts": self.attempts, "delay_ms": self.delay_ms}


@dataclass(frozen=True)
class ReadinessConfig:
    """Polling interval used while waiting for n8n to boot."""

    interval_ms: int = 2000

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"interval_ms": self.interval_ms}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for n8nctl."""

    config_file: Path
    config_dir: Path
    data_dir: Path
    database: Path
    logs_dir: Path
    n8n_bin: str
    service: ServiceConfig
    owner: OwnerConfig
    api_key: ApiKeyConfig
    activation: ActivationConfig
    readiness: ReadinessConfig

    @property
    def database_url(self) -> str:
        """Return the SQLAlchemy URL of n8n's embedded store."""
        return f"sqlite:///{self.database}"

    def require_bootstrap_settings(self) -> None:
        """Raise :class:`ConfigError` unless owner credentials and secret are set.

        Only the commands that log in and mint the API key need these values.
        """
        _require_str(self.owner.email, "owner.email")
        _require_str(self.owner.password, "owner.password")
        _require_str(self.api_key.secret, "api_key.secret")

    def to_dict(self, *, redact: bool = True) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "config_dir": str(self.config_dir),
            "data_dir": str(self.data_dir),
            "database": str(self.database),
            "logs_dir": str(self.logs_dir),
            "n8n_bin": self.n8n_bin,
            "service": self.service.to_dict(),
            "owner": self.owner.to_dict(redact=redact),
            "api_key": self.api_key.to_dict(redact=redact),
            "activation": self.activation.to_dict(),
            "readiness": self.readiness.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/n8nctl/config.yml",
    "config_dir": "/home/node/.n8n",
    "data_dir": None,  # derived from config_dir when absent
    "database": None,  # derived from config_dir when absent
    "logs_dir": None,  # derived from config_dir when absent
    "n8n_bin": "n8n",
    "service": {
        "host": "127.0.0.1",
        "port": 5678,
        "timeout": 30.0,
    },
    "owner": {
        "email": None,
        "password": None,
        "first_name": "Node",
        "last_name": "Mation",
    },
    "api_key": {
        "label": "local",
        "issuer": "n8n",
        "audience": "public-api",
        "secret": None,
    },
    "activation": {
        "attempts": 5,
        "delay_ms": 300,
    },
    "readiness": {
        "interval_ms": 2000,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], value).keys())
    for section, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}

# Hints printed when a required value is missing.
REQUIRED_HINTS = {
    "owner.email": "N8N_OWNER_EMAIL",
    "owner.password": "N8N_OWNER_PASSWORD",
    "api_key.secret": "N8N_USER_MANAGEMENT_JWT_SECRET",
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    service_values = _build_service_env_overrides(resolved_env)
    if service_values:
        _deep_merge(merged, service_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    config_dir = _to_path(raw.get("config_dir"))

    data_dir_value = raw.get("data_dir")
    data_dir = _to_path(data_dir_value) if data_dir_value else config_dir / "host-data"
    database_value = raw.get("database")
    database = _to_path(database_value) if database_value else config_dir / "database.sqlite"
    logs_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_value) if logs_value else config_dir / "logs" / "n8nctl"

    if not data_dir.is_dir():
        raise ConfigError(
            f"The n8n data directory must be provided: {data_dir} is not a directory."
        )

    service_map = _as_dict(raw.get("service"), "service")
    service = ServiceConfig(
        host=_expect_optional_str(service_map.get("host"), "service.host") or "127.0.0.1",
        port=_expect_positive_int(service_map.get("port"), "service.port", default=5678),
        timeout=_expect_positive_float(service_map.get("timeout"), "service.timeout", default=30.0),
    )

    owner_map = _as_dict(raw.get("owner"), "owner")
    owner = OwnerConfig(
        email=_expect_optional_str(owner_map.get("email"), "owner.email") or "",
        password=_expect_optional_str(owner_map.get("password"), "owner.password") or "",
        first_name=_expect_optional_str(owner_map.get("first_name"), "owner.first_name") or "Node",
        last_name=_expect_optional_str(owner_map.get("last_name"), "owner.last_name") or "Mation",
    )

    api_key_map = _as_dict(raw.get("api_key"), "api_key")
    api_key = ApiKeyConfig(
        secret=_expect_optional_str(api_key_map.get("secret"), "api_key.secret") or "",
        label=_expect_optional_str(api_key_map.get("label"), "api_key.label") or "local",
        issuer=_expect_optional_str(api_key_map.get("issuer"), "api_key.issuer") or "n8n",
        audience=(
            _expect_optional_str(api_key_map.get("audience"), "api_key.audience") or "public-api"
        ),
    )

    activation_map = _as_dict(raw.get("activation"), "activation")
    activation = ActivationConfig(
        attempts=_expect_positive_int(
            activation_map.get("attempts"), "activation.attempts", default=5
        ),
        delay_ms=_expect_positive_int(
            activation_map.get("delay_ms"), "activation.delay_ms", default=300
        ),
    )

    readiness_map = _as_dict(raw.get("readiness"), "readiness")
    readiness = ReadinessConfig(
        interval_ms=_expect_positive_int(
            readiness_map.get("interval_ms"), "readiness.interval_ms", default=2000
        ),
    )

    return AppConfig(
        config_file=config_file,
        config_dir=config_dir,
        data_dir=data_dir,
        database=database,
        logs_dir=logs_dir,
        n8n_bin=_expect_str(raw.get("n8n_bin", "n8n"), "n8n_bin"),
        service=service,
        owner=owner,
        api_key=api_key,
        activation=activation,
        readiness=readiness,
    )


def _build_service_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, path in SERVICE_ENV_KEYS.items():
        value = env.get(key)
        if value is None or value == "":
            continue
        # Only the port is numeric; passwords and secrets stay verbatim.
        coerced: object = _coerce_value(value) if path == ("service", "port") else value
        _assign_nested(overrides, list(path), coerced)
    return overrides


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_positive_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            number = int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.")
    return number


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_optional_str(value: object | None, key: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, (Mapping, list)):
        raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")
    # YAML coercion may turn numeric-looking values into numbers.
    return str(value)


def _require_str(value: object | None, key: str) -> str:
    text = _expect_optional_str(value, key)
    if not text:
        hint = REQUIRED_HINTS.get(key)
        suffix = f" (set {hint} or {ENV_PREFIX}{key.replace('.', '__').upper()})" if hint else ""
        raise ConfigError(f"Missing required configuration value {key}{suffix}.")
    return text


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ActivationConfig",
    "ApiKeyConfig",
    "AppConfig",
    "ConfigError",
    "OwnerConfig",
    "ReadinessConfig",
    "ServiceConfig",
    "load_config",
]

"""Configuration management for portless.json"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigAlreadyExists, ConfigInvalid, ConfigMissing
from .ports import DEFAULT_PROXY_PORT_RANGE

logger = logging.getLogger("portless.config")

CONFIG_FILENAME = "portless.json"
DEFAULT_PROXY_PORT = 80
DEFAULT_SERVICE_ENV = {"PORT": "{port}"}

TEMPLATE = {
    "proxyPort": DEFAULT_PROXY_PORT,
    "proxyPortRange": list(DEFAULT_PROXY_PORT_RANGE),
    "services": {
        "web": {
            "cwd": "./packages/web",
            "command": "npm start",
            "env": {"PORT": "{port}"},
        },
        "api": {
            "cwd": "./packages/api",
            "command": "npm start",
            "env": {"PORT": "{port}"},
        },
    },
}

_PLACEHOLDER = re.compile(r"\{(port|proxyPort|name)\}")


@dataclass
class ServiceConfig:
    name: str
    cwd: str
    command: str
    env: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SERVICE_ENV))


@dataclass
class PortlessConfig:
    proxy_port: int = DEFAULT_PROXY_PORT
    proxy_port_range: tuple[int, int] = DEFAULT_PROXY_PORT_RANGE
    services: dict[str, ServiceConfig] = field(default_factory=dict)
    path: Path | None = None

    @property
    def root(self) -> Path:
        """Directory service cwds are resolved against"""
        return self.path.parent if self.path else Path.cwd()

    def service_names(self) -> list[str]:
        return list(self.services)

    def resolve_cwd(self, service: ServiceConfig) -> Path:
        return (self.root / service.cwd).resolve()


def get_config_path(start: Path | None = None) -> Path:
    """portless.json in the working directory, or PORTLESS_CONFIG if set"""
    env_path = os.getenv("PORTLESS_CONFIG")
    if env_path:
        return Path(env_path)
    return Path(start or Path.cwd()) / CONFIG_FILENAME


def _is_port(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 65535


def validate_config(data) -> list[str]:
    """
    Validate raw portless.json content.

    Returns:
        List of error messages, empty when valid
    """
    if not isinstance(data, dict):
        return ["top level must be a JSON object"]

    errors = []
    if "proxyPort" in data and not _is_port(data["proxyPort"]):
        errors.append("proxyPort must be an integer between 1 and 65535")

    if "proxyPortRange" in data:
        rng = data["proxyPortRange"]
        if not (isinstance(rng, list) and len(rng) == 2 and all(_is_port(p) for p in rng) and rng[0] <= rng[1]):
            errors.append("proxyPortRange must be [start, end] with 1 <= start <= end <= 65535")

    services = data.get("services", {})
    if not isinstance(services, dict):
        errors.append("services must be an object")
        return errors

    for name, svc in services.items():
        if not name or not all(c.isalnum() or c in "-_" for c in name):
            errors.append(f"service name {name!r} must contain only letters, numbers, '-' and '_'")
        if not isinstance(svc, dict):
            errors.append(f"services.{name} must be an object")
            continue
        for key in ("cwd", "command"):
            if not isinstance(svc.get(key), str) or not svc[key].strip():
                errors.append(f"services.{name}.{key} must be a non-empty string")
        env = svc.get("env")
        if env is not None and not isinstance(env, dict):
            errors.append(f"services.{name}.env must be an object")
    return errors


def parse_config(data: dict, path: Path | None = None) -> PortlessConfig:
    errors = validate_config(data)
    if errors:
        raise ConfigInvalid(path or Path(CONFIG_FILENAME), errors)

    services = {}
    for name, svc in data.get("services", {}).items():
        env = svc.get("env")
        services[name] = ServiceConfig(
            name=name,
            cwd=svc["cwd"],
            command=svc["command"],
            env={str(k): str(v) for k, v in env.items()} if env is not None else dict(DEFAULT_SERVICE_ENV),
        )

    rng = data.get("proxyPortRange") or DEFAULT_PROXY_PORT_RANGE
    return PortlessConfig(
        proxy_port=data.get("proxyPort") or DEFAULT_PROXY_PORT,
        proxy_port_range=(rng[0], rng[1]),
        services=services,
        path=path,
    )


def load_config(path: Path | None = None) -> PortlessConfig:
    """
    Load and validate portless.json.

    Raises:
        ConfigMissing: file does not exist
        ConfigInvalid: file is not valid JSON or fails validation
    """
    path = path or get_config_path()
    if not path.is_file():
        raise ConfigMissing(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        raise ConfigInvalid(path, [str(exc)]) from exc
    config = parse_config(data, path.resolve())
    logger.debug("Loaded %d services from %s", len(config.services), path)
    return config


def load_optional_config(path: Path | None = None) -> PortlessConfig:
    """Like load_config, but a missing file yields the defaults"""
    try:
        return load_config(path)
    except ConfigMissing:
        return PortlessConfig()


def write_template(path: Path | None = None) -> Path:
    """
    Scaffold a portless.json template.

    Raises:
        ConfigAlreadyExists: file is already present
    """
    path = path or get_config_path()
    if path.exists():
        raise ConfigAlreadyExists(path)
    path.write_text(json.dumps(TEMPLATE, indent=2) + "\n", encoding="utf-8")
    return path


def render_env(template: dict[str, str], port: int, proxy_port: int, name: str) -> dict[str, str]:
    """
    Substitute {port}, {proxyPort} and {name} in every value of template.

    Other braces are left untouched.
    """
    values = {"port": str(port), "proxyPort": str(proxy_port), "name": name}
    return {key: _PLACEHOLDER.sub(lambda m: values[m.group(1)], str(value)) for key, value in template.items()}


def discovery_env_name(service: str) -> str:
    return "PORTLESS_URL_" + re.sub(r"[^A-Z0-9]", "_", service.upper())


def discovery_env(names, proxy_port: int, domain: str) -> dict[str, str]:
    """PORTLESS_URL_<NAME> for every configured service"""
    return {discovery_env_name(name): f"http://{name}.{domain}:{proxy_port}" for name in names}

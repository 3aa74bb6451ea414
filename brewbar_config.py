"""Configuration for BrewBar, loaded from config.toml next to the app."""

from __future__ import annotations

import dataclasses
import pathlib
import tomllib
from typing import Optional

from brew_services import SERVICE_ROLES, BrewBarError


DEFAULT_CONFIG = """\
[settings]
brew_path       = "brew"
settle_delay    = 0.5
stop_on_quit    = true
command_timeout = 0
strict_commands = false
phpmyadmin_url  = "http://localhost:8080/phpmyadmin"
webroot         = "/opt/homebrew/var/www"
log_file        = "brewbar.log"

[services]
web      = "nginx"
runtime  = "php@8.3"
database = "mariadb"

[labels]
web      = "Nginx"
database = "MariaDB"

[coupling]
web = ["runtime"]
"""

_DEFAULT_FORMULAE: dict[str, str] = {
    "web":      "nginx",
    "runtime":  "php@8.3",
    "database": "mariadb",
}

_DEFAULT_LABELS: dict[str, str] = {
    "web":      "Nginx",
    "runtime":  "PHP",
    "database": "MariaDB",
}


@dataclasses.dataclass
class Config:
    brew_path: str = "brew"
    settle_delay: float = 0.5
    stop_on_quit: bool = True
    command_timeout: Optional[float] = None
    strict_commands: bool = False
    phpmyadmin_url: str = "http://localhost:8080/phpmyadmin"
    webroot: str = "/opt/homebrew/var/www"
    log_file: str = "brewbar.log"
    formulae: dict[str, str] = dataclasses.field(
        default_factory=lambda: dict(_DEFAULT_FORMULAE))
    labels: dict[str, str] = dataclasses.field(
        default_factory=lambda: dict(_DEFAULT_LABELS))
    coupling: dict[str, list[str]] = dataclasses.field(
        default_factory=lambda: {"web": ["runtime"]})

    @property
    def toggle_roles(self) -> list[str]:
        """Roles that get their own toggle; coupled dependents follow their parent."""
        dependents = {d for deps in self.coupling.values() for d in deps}
        return [r for r in SERVICE_ROLES if r not in dependents]

    def log_path(self, config_dir: pathlib.Path) -> Optional[pathlib.Path]:
        if not self.log_file:
            return None
        path = pathlib.Path(self.log_file).expanduser()
        return path if path.is_absolute() else config_dir / path

    @classmethod
    def load(cls, path: pathlib.Path) -> "Config":
        with path.open("rb") as fh:
            data = tomllib.load(fh)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        settings = data.get("settings", {})

        formulae = dict(_DEFAULT_FORMULAE)
        formulae.update(data.get("services", {}))
        labels = dict(_DEFAULT_LABELS)
        labels.update(data.get("labels", {}))
        coupling = {k: list(v) for k, v in data.get("coupling", {"web": ["runtime"]}).items()}

        timeout = float(settings.get("command_timeout", 0))
        config = cls(
            brew_path=settings.get("brew_path", "brew"),
            settle_delay=float(settings.get("settle_delay", 0.5)),
            stop_on_quit=settings.get("stop_on_quit", True),
            command_timeout=timeout if timeout > 0 else None,
            strict_commands=settings.get("strict_commands", False),
            phpmyadmin_url=settings.get("phpmyadmin_url", "http://localhost:8080/phpmyadmin"),
            webroot=settings.get("webroot", "/opt/homebrew/var/www"),
            log_file=settings.get("log_file", "brewbar.log"),
            formulae=formulae,
            labels=labels,
            coupling=coupling,
        )
        config.validate()
        return config

    def validate(self) -> None:
        for key in ("stop_on_quit", "strict_commands"):
            if not isinstance(getattr(self, key), bool):
                raise BrewBarError(f"{key} must be true or false, got {getattr(self, key)!r}")
        for role in self.formulae:
            if role not in SERVICE_ROLES:
                raise BrewBarError(f"Unknown service role in [services]: {role!r}")
        for role in SERVICE_ROLES:
            if not str(self.formulae.get(role, "")).strip():
                raise BrewBarError(f"No formula configured for service {role!r}")
        for role, deps in self.coupling.items():
            for name in [role, *deps]:
                if name not in SERVICE_ROLES:
                    raise BrewBarError(f"Unknown service role in [coupling]: {name!r}")
        if self.settle_delay < 0:
            raise ValueError("settle_delay must not be negative")


def load_or_create(path: pathlib.Path) -> Config:
    if not path.exists():
        path.write_text(DEFAULT_CONFIG)
    return Config.load(path)

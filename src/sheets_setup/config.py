"""Configuration for sheets-setup.

Defaults live on :class:`SetupConfig`; a JSON file in the user config dir
(see :func:`default_config_path`) may override any field, and CLI options
override both.
"""

import getpass
import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

import platformdirs

APP_NAME = "sheets-setup"
DEFAULT_NAME = "sheets"
DEFAULT_PROFILE = "current"


class ConfigError(Exception):
    """Invalid or unreadable configuration."""


@dataclass(frozen=True)
class Profile:
    """Behaviour set of one provisioning script variant."""
    name: str
    description: str
    php_versions: tuple
    xampp_package: str
    publish_commands: tuple = ()


PROFILES = {
    "current": Profile(
        name="current",
        description="XAMPP 8.2, publishes form-builder assets",
        php_versions=("8.1", "8.2"),
        xampp_package="xampp-82",
        publish_commands=(
            ("php", "artisan", "vendor:publish", "--tag=form-builder", "--force"),
        ),
    ),
    "legacy": Profile(
        name="legacy",
        description="XAMPP 8.0, no asset publishing",
        php_versions=("7.4", "8.0", "8.1"),
        xampp_package="xampp-80",
    ),
}

PROFILE_CHOICES = {key: profile.description for key, profile in PROFILES.items()}


def _windows_dir() -> Path:
    return Path(os.environ.get("SystemRoot", r"C:\Windows"))


def _composer_home() -> Path:
    if os.environ.get("COMPOSER_HOME"):
        return Path(os.environ["COMPOSER_HOME"])
    appdata = os.environ.get("APPDATA")
    base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    return base / "Composer"


@dataclass(frozen=True)
class SetupConfig:
    repository_url: str = "https://github.com/sheets-app/sheets.git"
    github_host: str = "github.com"
    required_scopes: tuple = ("repo", "read:packages")

    xampp_dir: Path = Path(r"C:\xampp")
    hosts_file: Path = field(default_factory=lambda: _windows_dir() / "System32" / "drivers" / "etc" / "hosts")
    npmrc_path: Path = field(default_factory=lambda: Path.home() / ".npmrc")
    composer_home: Path = field(default_factory=_composer_home)

    npm_scope: str = "@sheets-app"
    npm_registry: str = "https://npm.pkg.github.com"
    composer_auth_hosts: tuple = ("github.com",)

    apache_user: str = field(default_factory=getpass.getuser)
    apache_group: str = "Users"
    apache_include: str = "conf/extra/httpd-vhosts.conf"
    php_extensions: tuple = ("curl", "fileinfo", "gd", "intl", "mbstring", "openssl", "pdo_mysql", "zip")

    loopback_ip: str = "127.0.0.1"
    env_template: str = ".env.example"
    env_file: str = ".env"
    secure_cookie_key: str = "SESSION_SECURE_COOKIE"
    disable_secure_cookie: bool = True

    profile: Optional[str] = None

    @property
    def httpd_conf(self) -> Path:
        return self.xampp_dir / "apache" / "conf" / "httpd.conf"

    @property
    def php_ini(self) -> Path:
        return self.xampp_dir / "php" / "php.ini"

    @property
    def php_executable(self) -> Path:
        return self.xampp_dir / "php" / "php.exe"

    @property
    def path_dirs(self) -> tuple:
        return (self.xampp_dir / "php", self.xampp_dir / "mysql" / "bin")

    @property
    def composer_auth(self) -> Path:
        return self.composer_home / "auth.json"


_PATH_FIELDS = {"xampp_dir", "hosts_file", "npmrc_path", "composer_home"}
_TUPLE_FIELDS = {"required_scopes", "composer_auth_hosts", "php_extensions"}


def default_config_path() -> Path:
    return platformdirs.user_config_path(APP_NAME) / "config.json"


def get_profile(name: Optional[str]) -> Profile:
    key = (name or DEFAULT_PROFILE).lower()
    if key not in PROFILES:
        raise ConfigError(f"Unknown profile '{name}'. Choose from: {', '.join(PROFILES)}")
    return PROFILES[key]


def _coerce(data: dict) -> dict:
    known = {f.name for f in fields(SetupConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    values = {}
    for key, value in data.items():
        if key in _PATH_FIELDS:
            value = Path(os.path.expandvars(str(value))).expanduser()
        elif key in _TUPLE_FIELDS:
            if isinstance(value, str) or not isinstance(value, (list, tuple)):
                raise ConfigError(f"'{key}' must be a list")
            value = tuple(str(v) for v in value)
        values[key] = value
    return values


def load_config(path: Optional[Path] = None) -> SetupConfig:
    """Load configuration, layering the JSON file at ``path`` over defaults.

    An explicitly given path must exist; the default location is optional.
    """
    explicit = path is not None
    path = Path(path) if explicit else default_config_path()
    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return SetupConfig()
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed to read {path}: {exc}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    config = replace(SetupConfig(), **_coerce(data))
    if config.profile is not None:
        get_profile(config.profile)
    return config

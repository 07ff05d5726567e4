"""Edits to the npm, Composer, hosts, php.ini and .env files."""

import json
import re
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from .textfile import LineFile, LineStatus, ensure_line
from .tracker import StepError


def npm_auth_prefix(registry: str) -> str:
    """``https://npm.pkg.github.com`` -> ``//npm.pkg.github.com/``"""
    parts = urlsplit(registry)
    path = parts.path.rstrip("/")
    return f"//{parts.netloc}{path}/"


def ensure_npmrc(path: Path, scope: str, registry: str, token: str) -> dict:
    """Ensure the scoped registry and auth token lines; returns a status per line."""
    npmrc = LineFile(path)
    prefix = npm_auth_prefix(registry)
    registry_key = f"{scope}:registry"
    token_key = f"{prefix}:_authToken"
    return {
        "registry": ensure_line(
            npmrc,
            f"{registry_key}={registry}",
            conflict=r"^\s*" + re.escape(registry_key) + r"\s*=",
        ),
        "token": ensure_line(
            npmrc,
            f"{token_key}={token}",
            conflict=r"^\s*" + re.escape(token_key) + r"\s*=",
        ),
    }


def write_composer_auth(path: Path, hosts, credentials) -> Path:
    """Regenerate Composer's auth.json from ``credentials``; existing content is discarded."""
    payload = {
        "http-basic": {
            host: {"username": credentials.username, "password": credentials.token}
            for host in hosts
        }
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=4)
        fh.write("\n")
    return path


def ensure_hosts_entry(path: Path, hostname: str, ip: str = "127.0.0.1") -> LineStatus:
    host = re.escape(hostname)
    present = r"^\s*" + re.escape(ip) + r"\s+(?:[^#\s]+\s+)*?" + host + r"(?:\s|#|$)"
    conflict = r"^\s*[^#\s]+\s+(?:[^#\s]+\s+)*?" + host + r"(?:\s|#|$)"
    return ensure_line(LineFile(path), f"{ip} {hostname}", present=present, conflict=conflict)


def enable_php_extensions(php_ini: Path, extensions) -> dict:
    """Uncomment ``;extension=<name>`` lines.

    Returns lists under ``enabled``, ``already`` and ``missing``.
    """
    ini = LineFile(php_ini)
    text = ini.read_text()
    outcome = {"enabled": [], "already": [], "missing": []}
    for ext in extensions:
        name = r"(?:php_)?" + re.escape(ext) + r"(?:\.dll)?"
        active = re.compile(r"^[ \t]*extension[ \t]*=[ \t]*\"?" + name + r"\"?[ \t]*$", re.MULTILINE)
        commented = re.compile(r"^[ \t]*;[ \t]*(extension[ \t]*=[ \t]*\"?" + name + r"\"?)[ \t]*$", re.MULTILINE)
        if active.search(text):
            outcome["already"].append(ext)
            continue
        text, count = commented.subn(r"\1", text, count=1)
        if count:
            outcome["enabled"].append(ext)
        else:
            outcome["missing"].append(ext)
    if outcome["enabled"]:
        ini.write_text(text)
    return outcome


def materialize_env_file(
    project_dir: Path,
    template: str = ".env.example",
    target: str = ".env",
    key: Optional[str] = None,
    value: str = "false",
) -> tuple:
    """Copy the env template when ``target`` is absent, then force ``key=value``.

    Returns ``(created, patched)``.
    """
    target_path = project_dir / target
    created = False
    if not target_path.exists():
        template_path = project_dir / template
        if not template_path.is_file():
            raise StepError(f"{template} not found in {project_dir}")
        shutil.copyfile(template_path, target_path)
        created = True

    patched = False
    if key:
        env = LineFile(target_path)
        text = env.read_text()
        pattern = re.compile(r"^" + re.escape(key) + r"=[^\r\n]*", re.MULTILINE)
        new_text = pattern.sub(lambda _m: f"{key}={value}", text)
        if new_text != text:
            env.write_text(new_text)
            patched = True
    return created, patched

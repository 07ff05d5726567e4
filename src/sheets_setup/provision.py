"""The provisioning workflow: one function per step, run in a fixed order."""

import base64
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from .config import Profile, SetupConfig
from .configfiles import (
    enable_php_extensions,
    ensure_hosts_entry,
    ensure_npmrc,
    materialize_env_file,
    write_composer_auth,
)
from .credentials import Credentials, resolve_credentials, verify_github_token
from .system import Host, is_git_repo, php_version, version_allowed
from .textfile import LineStatus
from .tracker import Step, StepError, StepResult, StepTracker, run_steps
from .webserver import register_vhost

_LABEL_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


def validate_site_name(name: str) -> str:
    """Site names double as a folder name and a DNS label."""
    if not name or not _LABEL_RE.match(name):
        raise ValueError(
            f"'{name}' is not a valid site name: use 1-63 letters, digits or hyphens, "
            "not starting or ending with a hyphen"
        )
    return name


@dataclass
class Context:
    config: SetupConfig
    profile: Profile
    host: Host
    name: str
    cwd: Path
    username: Optional[str] = None
    token: Optional[str] = None
    verify_token: bool = False
    http_client: Optional[httpx.Client] = None
    credentials: Optional[Credentials] = None
    project_dir: Optional[Path] = None

    @property
    def server_name(self) -> str:
        return f"{self.name}.local"

    def require_credentials(self) -> Credentials:
        if self.credentials is None:
            raise StepError("GitHub credentials have not been resolved")
        return self.credentials

    def require_project(self) -> Path:
        if self.project_dir is None:
            raise StepError("repository has not been cloned")
        return self.project_dir


def _output_tail(proc, lines: int = 8) -> str:
    text = "\n".join(filter(None, [proc.stdout or "", proc.stderr or ""])).strip()
    return "\n".join(text.splitlines()[-lines:])


def _run_checked(ctx: Context, cmd: list, cwd: Path) -> None:
    proc = ctx.host.execute(cmd, cwd=cwd)
    if proc.returncode != 0:
        message = f"{' '.join(cmd)} exited with {proc.returncode}"
        tail = _output_tail(proc)
        if tail:
            message += f"\n{tail}"
        raise StepError(message)


def check_privileges(ctx: Context) -> StepResult:
    if not ctx.host.is_elevated():
        raise StepError("administrator rights required; re-run from an elevated terminal")
    return StepResult.done("elevated")


def resolve_github_credentials(ctx: Context) -> StepResult:
    creds = resolve_credentials(
        ctx.host,
        ctx.username,
        ctx.token,
        hostname=ctx.config.github_host,
        scopes=ctx.config.required_scopes,
    )
    warnings = []
    if ctx.verify_token:
        warnings = verify_github_token(creds, ctx.config.required_scopes, client=ctx.http_client)
    ctx.credentials = creds
    return StepResult.done(f"{creds.username} via {creds.source}", warnings=warnings)


def install_runtime(ctx: Context) -> StepResult:
    config = ctx.config
    installed = False
    if not config.xampp_dir.is_dir():
        ctx.host.install_package(ctx.profile.xampp_package)
        if not config.xampp_dir.is_dir():
            raise StepError(f"{config.xampp_dir} missing after installing {ctx.profile.xampp_package}")
        installed = True

    php = config.php_executable if config.php_executable.is_file() else "php"
    version = php_version(ctx.host, php)
    if not version_allowed(version, ctx.profile.php_versions):
        raise StepError(
            f"PHP {version} is not supported by profile '{ctx.profile.name}' "
            f"(expected {', '.join(ctx.profile.php_versions)})"
        )

    added = [d for d in config.path_dirs if ctx.host.add_to_path(d)]
    detail = f"PHP {version}" + (", installed" if installed else "")
    if added:
        detail += f", {len(added)} PATH entr{'y' if len(added) == 1 else 'ies'} added"
    return StepResult.done(detail)


def configure_php(ctx: Context) -> StepResult:
    php_ini = ctx.config.php_ini
    if not php_ini.is_file():
        raise StepError(f"{php_ini} not found")
    outcome = enable_php_extensions(php_ini, ctx.config.php_extensions)
    warnings = [f"php.ini has no entry for extension '{ext}'" for ext in outcome["missing"]]
    if not outcome["enabled"]:
        return StepResult.skip("extensions already enabled", warnings=warnings)
    return StepResult.done(f"enabled {', '.join(outcome['enabled'])}", warnings=warnings)


def setup_composer(ctx: Context) -> StepResult:
    creds = ctx.require_credentials()
    installed = not ctx.host.has_tool("composer")
    if installed:
        ctx.host.install_package("composer", tool="composer")
    path = write_composer_auth(ctx.config.composer_auth, ctx.config.composer_auth_hosts, creds)
    return StepResult.done(("installed, " if installed else "") + f"wrote {path.name}")


def setup_npm(ctx: Context) -> StepResult:
    creds = ctx.require_credentials()
    installed = not ctx.host.has_tool("npm")
    if installed:
        ctx.host.install_package("nodejs-lts", tool="npm")
    statuses = ensure_npmrc(ctx.config.npmrc_path, ctx.config.npm_scope, ctx.config.npm_registry, creds.token)

    warnings = []
    if statuses["registry"] is LineStatus.CONFLICT:
        warnings.append(f"{ctx.config.npmrc_path}: {ctx.config.npm_scope} points at another registry; left unchanged")
    if statuses["token"] is LineStatus.CONFLICT:
        warnings.append(f"{ctx.config.npmrc_path}: existing auth token differs; left unchanged")

    appended = [key for key, status in statuses.items() if status is LineStatus.APPENDED]
    if not appended and not installed:
        return StepResult.skip(".npmrc already configured", warnings=warnings)
    detail = ("installed, " if installed else "") + (f"added {', '.join(appended)}" if appended else ".npmrc unchanged")
    return StepResult.done(detail, warnings=warnings)


def _auth_header(creds: Credentials) -> str:
    basic = base64.b64encode(f"{creds.username}:{creds.token}".encode()).decode()
    return f"http.extraHeader=Authorization: Basic {basic}"


def clone_repository(ctx: Context) -> StepResult:
    creds = ctx.require_credentials()
    target = ctx.cwd / ctx.name
    if target.exists():
        if not ctx.host.has_tool("git") or not is_git_repo(ctx.host, target):
            raise StepError(f"{target} exists and is not a git repository")
        ctx.project_dir = target
        return StepResult.skip(f"existing clone at {target}")

    if not ctx.host.has_tool("git"):
        ctx.host.install_package("git", tool="git")
    # Per-invocation header: the token is not written to .git/config
    cmd = ["git", "-c", _auth_header(creds), "clone", ctx.config.repository_url, str(target)]
    proc = ctx.host.execute(cmd, cwd=ctx.cwd)
    if proc.returncode != 0:
        raise StepError(f"git clone exited with {proc.returncode}")
    ctx.project_dir = target
    return StepResult.done(str(target))


def register_virtual_host(ctx: Context) -> StepResult:
    project = ctx.require_project()
    conf = ctx.config.httpd_conf
    if not conf.is_file():
        raise StepError(f"{conf} not found")
    status = register_vhost(
        conf,
        ctx.server_name,
        project / "public",
        user=ctx.config.apache_user,
        group=ctx.config.apache_group,
        include=ctx.config.apache_include,
    )
    if status is LineStatus.PRESENT:
        return StepResult.skip(f"ServerName {ctx.server_name} already present")
    return StepResult.done(f"ServerName {ctx.server_name}")


def add_hosts_entry(ctx: Context) -> StepResult:
    status = ensure_hosts_entry(ctx.config.hosts_file, ctx.server_name, ctx.config.loopback_ip)
    if status is LineStatus.PRESENT:
        return StepResult.skip(f"{ctx.server_name} already present")
    if status is LineStatus.CONFLICT:
        return StepResult.skip(
            "existing entry left unchanged",
            warnings=[f"{ctx.config.hosts_file}: {ctx.server_name} maps to another address; left unchanged"],
        )
    return StepResult.done(f"{ctx.config.loopback_ip} {ctx.server_name}")


def create_env_file(ctx: Context) -> StepResult:
    project = ctx.require_project()
    key = ctx.config.secure_cookie_key if ctx.config.disable_secure_cookie else None
    created, patched = materialize_env_file(
        project,
        template=ctx.config.env_template,
        target=ctx.config.env_file,
        key=key,
        value="false",
    )
    parts = []
    if created:
        parts.append(f"copied from {ctx.config.env_template}")
    if patched:
        parts.append(f"{key}=false")
    if not parts:
        return StepResult.skip(f"{ctx.config.env_file} already present")
    return StepResult.done(", ".join(parts))


def install_dependencies(ctx: Context) -> StepResult:
    project = ctx.require_project()
    commands = [
        ["composer", "install", "--no-interaction"],
        ["npm", "install"],
    ]
    commands.extend(list(cmd) for cmd in ctx.profile.publish_commands)
    for cmd in commands:
        _run_checked(ctx, cmd, cwd=project)
    return StepResult.done(f"{len(commands)} commands")


def build_steps() -> list:
    return [
        Step("privileges", "Check administrator rights", check_privileges),
        Step("credentials", "Resolve GitHub credentials", resolve_github_credentials, interactive=True),
        Step("runtime", "Install PHP/Apache/MySQL stack", install_runtime),
        Step("php-ini", "Enable PHP extensions", configure_php),
        Step("composer", "Set up Composer", setup_composer),
        Step("npm", "Set up npm registry", setup_npm),
        Step("clone", "Clone repository", clone_repository),
        Step("vhost", "Register Apache virtual host", register_virtual_host),
        Step("hosts", "Add hosts entry", add_hosts_entry),
        Step("env", "Create .env file", create_env_file),
        Step("dependencies", "Install dependencies", install_dependencies),
    ]


def provision(ctx: Context, tracker: Optional[StepTracker] = None, live=None):
    return run_steps(build_steps(), ctx, tracker=tracker, live=live)

"""GitHub credential resolution via explicit input or the GitHub CLI."""

import re
import ssl
from dataclasses import dataclass, field
from typing import Optional

import httpx
import truststore

from .system import Host
from .tracker import StepError

GITHUB_API_USER = "https://api.github.com/user"

ssl_context = truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)


@dataclass(frozen=True)
class Credentials:
    username: str
    token: str = field(repr=False)
    source: str = "explicit"


def parse_token_scopes(text: str) -> set:
    """Extract scopes from ``gh auth status`` output (``Token scopes: 'a', 'b'``)."""
    match = re.search(r"Token scopes:\s*(.*)", text or "")
    if not match:
        return set()
    raw = match.group(1)
    quoted = re.findall(r"'([^']+)'", raw)
    if quoted:
        return set(quoted)
    return {part.strip() for part in raw.split(",") if part.strip()}


def ensure_gh(host: Host) -> None:
    if not host.has_tool("gh"):
        host.install_package("gh", tool="gh")


def ensure_gh_scopes(host: Host, hostname: str, scopes) -> str:
    """Make sure gh is logged in to ``hostname`` with ``scopes``.

    Runs the interactive login (or scope refresh) in the foreground and
    blocks until it exits. Returns what was done: "ok", "login" or "refresh".
    """
    status = host.execute(["gh", "auth", "status", "--hostname", hostname])
    output = f"{status.stdout or ''}\n{status.stderr or ''}"
    scope_arg = ",".join(scopes)

    if status.returncode != 0:
        action = "login"
        cmd = ["gh", "auth", "login", "--hostname", hostname, "--git-protocol", "https", "--web", "--scopes", scope_arg]
    else:
        missing = set(scopes) - parse_token_scopes(output)
        if not missing:
            return "ok"
        action = "refresh"
        cmd = ["gh", "auth", "refresh", "--hostname", hostname, "--scopes", scope_arg]

    proc = host.execute(cmd, capture=False)
    if proc.returncode != 0:
        raise StepError(f"gh auth {action} exited with {proc.returncode}")
    return action


def _gh_output(host: Host, cmd: list, what: str) -> str:
    proc = host.execute(cmd)
    value = (proc.stdout or "").strip()
    if proc.returncode != 0 or not value:
        raise StepError(f"could not read {what} from gh (exit {proc.returncode})")
    return value


def resolve_credentials(
    host: Host,
    username: Optional[str],
    token: Optional[str],
    hostname: str = "github.com",
    scopes=("repo", "read:packages"),
) -> Credentials:
    """Return explicit credentials as given, otherwise ask the GitHub CLI."""
    # Blank values count as missing; given values are passed through untouched
    if (username or "").strip() and (token or "").strip():
        return Credentials(username=username, token=token, source="explicit")

    ensure_gh(host)
    ensure_gh_scopes(host, hostname, scopes)
    login = _gh_output(host, ["gh", "api", "user", "--jq", ".login"], "login")
    gh_token = _gh_output(host, ["gh", "auth", "token", "--hostname", hostname], "token")
    return Credentials(username=login, token=gh_token, source="gh")


def verify_github_token(credentials: Credentials, scopes=(), client: httpx.Client = None) -> list:
    """Check the token against the GitHub API; returns warnings for missing scopes."""
    if client is None:
        client = httpx.Client(verify=ssl_context)
    try:
        response = client.get(
            GITHUB_API_USER,
            timeout=30,
            headers={
                "Authorization": f"Bearer {credentials.token}",
                "Accept": "application/vnd.github+json",
            },
        )
    except httpx.HTTPError as e:
        raise StepError(f"GitHub API request failed: {e}")
    if response.status_code != 200:
        raise StepError(f"GitHub API returned {response.status_code} for {GITHUB_API_USER}")
    try:
        login = response.json().get("login", "")
    except ValueError:
        raise StepError(f"GitHub API returned invalid JSON for {GITHUB_API_USER}")
    if login.lower() != credentials.username.lower():
        raise StepError(f"token belongs to '{login}', not '{credentials.username}'")

    granted = {s.strip() for s in response.headers.get("x-oauth-scopes", "").split(",") if s.strip()}
    # Fine-grained tokens send no scope header
    if not granted:
        return []
    return [f"token is missing scope '{scope}'" for scope in scopes if scope not in granted]

"""OS touchpoints: elevation, tool lookup, processes and the machine search path.

Everything that reaches outside the process goes through a :class:`Host`, so
the provisioning steps can run against an in-memory machine in tests.
"""

import ctypes
import ntpath
import os
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, MutableMapping, Optional, Protocol

from .tracker import StepError

PATH_VARIABLE = "Path"
PATH_SEPARATOR = ";"
ENVIRONMENT_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"

# choco returns 3010 when a reboot is pending but the install succeeded
CHOCO_OK_CODES = (0, 3010)
CHOCOLATEY_INSTALL = (
    "[System.Net.ServicePointManager]::SecurityProtocol = "
    "[System.Net.ServicePointManager]::SecurityProtocol -bor 3072; "
    "iex ((New-Object System.Net.WebClient).DownloadString("
    "'https://community.chocolatey.org/install.ps1'))"
)


def is_elevated() -> bool:
    """Return True when running with administrator (or root) rights."""
    if os.name == "nt":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except OSError:
            return False
    return os.geteuid() == 0


class EnvironmentStore(Protocol):
    def get(self, name: str, expand: bool = False) -> str: ...

    def set(self, name: str, value: str) -> None: ...


class RegistryEnvironment:
    """Machine-wide environment variables (HKLM Session Manager\\Environment)."""

    def get(self, name: str, expand: bool = False) -> str:
        import winreg

        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, ENVIRONMENT_KEY) as key:
            try:
                value, _ = winreg.QueryValueEx(key, name)
            except FileNotFoundError:
                return ""
        if expand:
            value = winreg.ExpandEnvironmentStrings(value)
        return value

    def set(self, name: str, value: str) -> None:
        import winreg

        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, ENVIRONMENT_KEY, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, name, 0, winreg.REG_EXPAND_SZ, value)
        _broadcast_environment_change()


def _broadcast_environment_change() -> None:
    HWND_BROADCAST = 0xFFFF
    WM_SETTINGCHANGE = 0x001A
    SMTO_ABORTIFHUNG = 0x0002
    result = ctypes.c_ulong()
    ctypes.windll.user32.SendMessageTimeoutW(
        HWND_BROADCAST, WM_SETTINGCHANGE, 0, "Environment", SMTO_ABORTIFHUNG, 5000, ctypes.byref(result)
    )


class MemoryEnvironment:
    """In-process environment store."""

    def __init__(self, values: Optional[dict] = None):
        self.values = dict(values or {})

    def get(self, name: str, expand: bool = False) -> str:
        return self.values.get(name, "")

    def set(self, name: str, value: str) -> None:
        self.values[name] = value


def split_path(value: str) -> list:
    return [part for part in (value or "").split(PATH_SEPARATOR) if part.strip()]


def join_path(parts: list) -> str:
    return PATH_SEPARATOR.join(parts)


def _normalize(entry: str) -> str:
    return ntpath.normcase(entry.strip().rstrip("\\/"))


def dedupe_path(parts: list) -> list:
    seen = set()
    unique = []
    for part in parts:
        norm = _normalize(part)
        if norm in seen:
            continue
        seen.add(norm)
        unique.append(part)
    return unique


def path_contains(value: str, directory) -> bool:
    target = _normalize(str(directory))
    return any(_normalize(part) == target for part in split_path(value))


def add_to_machine_path(store: EnvironmentStore, directory) -> bool:
    """Append ``directory`` to the machine search path if absent.

    Returns True when the stored value changed.
    """
    current = store.get(PATH_VARIABLE)
    if path_contains(current, directory):
        return False
    store.set(PATH_VARIABLE, join_path(split_path(current) + [str(directory)]))
    return True


def refresh_session_path(store: EnvironmentStore, session: MutableMapping) -> str:
    """Merge the machine search path into the session's PATH."""
    machine = split_path(store.get(PATH_VARIABLE, expand=True))
    merged = join_path(dedupe_path(machine + split_path(session.get("PATH", ""))))
    session["PATH"] = merged
    return merged


def run_process(cmd: list, *, cwd=None, env=None, capture: bool = True) -> subprocess.CompletedProcess:
    """Run a command without a timeout; never raises on non-zero exit."""
    return subprocess.run(
        cmd,
        cwd=cwd,
        env=env,
        capture_output=capture,
        text=True,
        check=False,
    )


@dataclass
class Host:
    """Injected handles for the machine being provisioned."""
    machine_env: EnvironmentStore
    session_env: MutableMapping = field(default_factory=dict)
    runner: Callable[..., subprocess.CompletedProcess] = run_process
    which_fn: Callable[..., Optional[str]] = shutil.which
    elevated_fn: Callable[[], bool] = is_elevated

    @classmethod
    def local(cls) -> "Host":
        return cls(machine_env=RegistryEnvironment(), session_env=os.environ)

    def is_elevated(self) -> bool:
        return self.elevated_fn()

    def which(self, tool: str) -> Optional[str]:
        return self.which_fn(tool, path=self.session_env.get("PATH"))

    def has_tool(self, tool: str) -> bool:
        """Check if a tool is resolvable on the session search path."""
        return self.which(tool) is not None

    def execute(self, cmd: list, *, cwd=None, capture: bool = True) -> subprocess.CompletedProcess:
        cmd = [str(part) for part in cmd]
        # CreateProcess searches the parent's PATH, not the one we pass down
        resolved = self.which(cmd[0])
        if resolved:
            cmd[0] = resolved
        return self.runner(cmd, cwd=cwd, env=dict(self.session_env), capture=capture)

    def refresh_path(self) -> str:
        return refresh_session_path(self.machine_env, self.session_env)

    def add_to_path(self, directory) -> bool:
        added = add_to_machine_path(self.machine_env, directory)
        self.refresh_path()
        return added

    def ensure_chocolatey(self) -> None:
        if self.has_tool("choco"):
            return
        proc = self.execute(
            ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", CHOCOLATEY_INSTALL]
        )
        if proc.returncode != 0:
            raise StepError(f"Chocolatey install failed (exit {proc.returncode})")
        self.refresh_path()
        if not self.has_tool("choco"):
            raise StepError("choco not found on PATH after installing Chocolatey")

    def install_package(self, package: str, tool: Optional[str] = None) -> None:
        """Install ``package`` with Chocolatey and verify ``tool`` resolves afterwards."""
        self.ensure_chocolatey()
        proc = self.execute(["choco", "install", package, "-y", "--no-progress"])
        if proc.returncode not in CHOCO_OK_CODES:
            raise StepError(f"choco install {package} failed (exit {proc.returncode}){_tail(proc)}")
        self.refresh_path()
        if tool and not self.has_tool(tool):
            raise StepError(f"{tool} not found on PATH after installing {package}")


def _tail(proc: subprocess.CompletedProcess, lines: int = 5) -> str:
    output = "\n".join(filter(None, [proc.stdout or "", proc.stderr or ""])).strip()
    if not output:
        return ""
    return ": " + " | ".join(output.splitlines()[-lines:])


def is_git_repo(host: Host, path: Path) -> bool:
    """Check if ``path`` is the top level of a git work tree.

    A plain folder nested inside some other checkout does not count.
    """
    if not path.is_dir():
        return False
    proc = host.execute(["git", "rev-parse", "--show-toplevel"], cwd=path)
    toplevel = (proc.stdout or "").strip()
    if proc.returncode != 0 or not toplevel:
        return False
    return Path(toplevel).resolve() == path.resolve()


_PHP_VERSION_RE = re.compile(r"PHP (\d+\.\d+\.\d+)")


def php_version(host: Host, executable="php") -> str:
    proc = host.execute([executable, "-v"])
    if proc.returncode != 0:
        raise StepError(f"php -v failed (exit {proc.returncode})")
    match = _PHP_VERSION_RE.search(proc.stdout or "")
    if not match:
        raise StepError("could not read PHP version from php -v output")
    return match.group(1)


def version_allowed(version: str, prefixes) -> bool:
    return any(version == prefix or version.startswith(prefix + ".") for prefix in prefixes)

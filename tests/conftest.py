"""Shared fixtures for provisioning tests.

Provides a scripted fake machine (process runner, tool lookup, Chocolatey
installs), an in-memory machine environment and a config rooted in tmp_path.
No real processes, registry keys or system files are touched.
"""

import subprocess
from pathlib import Path

import pytest

from sheets_setup.config import SetupConfig, get_profile
from sheets_setup.provision import Context
from sheets_setup.system import Host, MemoryEnvironment

STOCK_HTTPD_CONF = """\
ServerRoot "C:/xampp/apache"
Listen 80
<IfModule unixd_module>
User daemon
Group daemon
</IfModule>
# Virtual hosts
#Include conf/extra/httpd-vhosts.conf
"""

STOCK_PHP_INI = """\
[PHP]
;extension=curl
extension=fileinfo
;extension=gd
;extension=intl
;extension=mbstring
;extension=openssl
;extension=pdo_mysql
;extension=zip
"""

ENV_EXAMPLE = """\
APP_NAME=Sheets
APP_URL=http://localhost
SESSION_SECURE_COOKIE=true
DB_HOST=127.0.0.1
"""

PACKAGE_TOOLS = {
    "composer": ["composer"],
    "nodejs-lts": ["node", "npm"],
    "gh": ["gh"],
    "git": ["git"],
}


def make_result(cmd=None, returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(cmd or [], returncode, stdout, stderr)


def build_xampp(root: Path) -> None:
    """Lay out the parts of an XAMPP install the provisioner touches."""
    (root / "apache" / "conf").mkdir(parents=True, exist_ok=True)
    (root / "php").mkdir(parents=True, exist_ok=True)
    (root / "mysql" / "bin").mkdir(parents=True, exist_ok=True)
    (root / "apache" / "conf" / "httpd.conf").write_text(STOCK_HTTPD_CONF)
    (root / "php" / "php.ini").write_text(STOCK_PHP_INI)


class FakeMachine:
    """Scripted stand-in for processes and tool lookup.

    ``responses`` maps a command prefix (tuple, executable name first) to a
    CompletedProcess or a callable ``(args, cwd) -> CompletedProcess``.
    """

    def __init__(self, xampp_dir: Path):
        self.xampp_dir = xampp_dir
        self.installed = set()
        self.calls = []
        self.responses = {}
        self.elevated = True
        self.php = "8.2.12"
        self.gh_scopes = "'gist', 'read:org', 'read:packages', 'repo'"

    def which(self, tool, path=None):
        if tool in self.installed:
            return f"/fake/bin/{tool}"
        return None

    def commands(self, name: str) -> list:
        return [args for args, _cwd in self.calls if args[0] == name]

    def run(self, cmd, *, cwd=None, env=None, capture=True):
        name = Path(cmd[0]).name
        if name.endswith(".exe"):
            name = name[:-4]
        args = [name] + list(cmd[1:])
        self.calls.append((args, cwd))

        for prefix, response in self.responses.items():
            if tuple(args[:len(prefix)]) == prefix:
                return response(args, cwd) if callable(response) else response
        return self._default(args, cwd)

    def _default(self, args, cwd):
        head = tuple(args[:3])
        if args[0] == "powershell":
            self.installed.add("choco")
        elif head[:2] == ("choco", "install"):
            package = args[2]
            if package.startswith("xampp-"):
                build_xampp(self.xampp_dir)
                self.installed.add("php")
            self.installed.update(PACKAGE_TOOLS.get(package, []))
        elif head[:2] == ("php", "-v"):
            return make_result(args, stdout=f"PHP {self.php} (cli) (built: Oct 24 2023)\nCopyright (c) The PHP Group\n")
        elif head == ("gh", "auth", "status"):
            return make_result(args, stdout=f"github.com\n  - Token scopes: {self.gh_scopes}\n")
        elif head == ("gh", "api", "user"):
            return make_result(args, stdout="octocat\n")
        elif head == ("gh", "auth", "token"):
            return make_result(args, stdout="gho_fromgh\n")
        elif args[0] == "git" and "clone" in args:
            target = Path(args[-1])
            (target / ".git").mkdir(parents=True)
            (target / "public").mkdir()
            (target / ".env.example").write_text(ENV_EXAMPLE)
        elif head[:2] == ("git", "rev-parse"):
            # Nearest enclosing checkout, as git itself resolves it
            start = Path(cwd) if cwd is not None else Path.cwd()
            toplevel = next((p for p in (start, *start.parents) if (p / ".git").is_dir()), None)
            if toplevel is None:
                return make_result(args, returncode=128, stderr="fatal: not a git repository")
            if "--show-toplevel" in args:
                return make_result(args, stdout=f"{toplevel.as_posix()}\n")
            return make_result(args, stdout="true\n")
        return make_result(args)


@pytest.fixture
def config(tmp_path):
    hosts = tmp_path / "etc" / "hosts"
    hosts.parent.mkdir()
    hosts.write_text("127.0.0.1 localhost\n")
    return SetupConfig(
        xampp_dir=tmp_path / "xampp",
        hosts_file=hosts,
        npmrc_path=tmp_path / "home" / ".npmrc",
        composer_home=tmp_path / "composer",
        apache_user="sheets",
        apache_group="staff",
    )


@pytest.fixture
def machine(config):
    return FakeMachine(config.xampp_dir)


@pytest.fixture
def machine_env():
    return MemoryEnvironment({"Path": r"C:\Windows\system32;C:\Windows"})


@pytest.fixture
def host(machine, machine_env):
    return Host(
        machine_env=machine_env,
        session_env={"PATH": r"C:\Windows\system32;C:\Users\dev\bin"},
        runner=machine.run,
        which_fn=machine.which,
        elevated_fn=lambda: machine.elevated,
    )


@pytest.fixture
def make_context(config, host, tmp_path):
    """Factory for a provisioning Context rooted in tmp_path/work."""
    workdir = tmp_path / "work"
    workdir.mkdir()

    def _factory(name: str = "demo", profile: str = "current", username="octocat", token="ghp_test", **kwargs):
        return Context(
            config=kwargs.pop("config", config),
            profile=get_profile(profile),
            host=host,
            name=name,
            cwd=workdir,
            username=username,
            token=token,
            **kwargs,
        )
    return _factory

#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "typer",
#     "rich",
#     "platformdirs",
#     "readchar",
#     "httpx",
#     "truststore>=0.10.4",
# ]
# ///
"""
Sheets Setup - provision a Windows workstation for the sheets application

Usage:
    sheets-setup init
    sheets-setup init demo --username octocat --token ghp_xxx
    sheets-setup check

Run from an elevated terminal. The repository is cloned into ./<name>.
"""

import sys
from pathlib import Path
from typing import Optional

import httpx
import readchar
import typer
from rich.align import Align
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from typer.core import TyperGroup

from .config import (
    DEFAULT_NAME,
    DEFAULT_PROFILE,
    PROFILE_CHOICES,
    ConfigError,
    SetupConfig,
    get_profile,
    load_config,
)
from .credentials import ssl_context
from .provision import Context, provision, validate_site_name
from .system import Host, php_version, version_allowed
from .tracker import StepError, StepTracker

BANNER = """
╔═╗╦ ╦╔═╗╔═╗╔╦╗╔═╗  ╔═╗╔═╗╔╦╗╦ ╦╔═╗
╚═╗╠═╣║╣ ║╣  ║ ╚═╗  ╚═╗║╣  ║ ║ ║╠═╝
╚═╝╩ ╩╚═╝╚═╝ ╩ ╚═╝  ╚═╝╚═╝ ╩ ╚═╝╩
"""

TAGLINE = "Local XAMPP, Composer and npm environment for sheets"

TOOL_LABELS = {
    "admin": "Administrator rights",
    "choco": "Chocolatey package manager",
    "git": "Git version control",
    "php": "PHP on PATH",
    "composer": "Composer",
    "npm": "npm",
    "gh": "GitHub CLI",
    "xampp": "XAMPP PHP version",
}

console = Console()


def get_key():
    """Get a single keypress in a cross-platform way using readchar."""
    key = readchar.readkey()

    if key == readchar.key.UP:
        return 'up'
    if key == readchar.key.DOWN:
        return 'down'
    if key == readchar.key.ENTER:
        return 'enter'
    if key == readchar.key.ESC:
        return 'escape'
    if key == readchar.key.CTRL_C:
        raise KeyboardInterrupt

    return key


def select_with_arrows(options: dict, prompt_text: str = "Select an option", default_key: str = None) -> str:
    """
    Interactive selection using arrow keys with Rich Live display.

    Args:
        options: Dict with keys as option keys and values as descriptions
        prompt_text: Text to show above the options
        default_key: Default option key to start with

    Returns:
        Selected option key
    """
    option_keys = list(options.keys())
    if default_key and default_key in option_keys:
        selected_index = option_keys.index(default_key)
    else:
        selected_index = 0

    selected_key = None

    def create_selection_panel():
        table = Table.grid(padding=(0, 2))
        table.add_column(style="cyan", justify="left", width=3)
        table.add_column(style="white", justify="left")

        for i, key in enumerate(option_keys):
            marker = "▶" if i == selected_index else " "
            table.add_row(marker, f"[cyan]{key}[/cyan] [dim]({options[key]})[/dim]")

        table.add_row("", "")
        table.add_row("", "[dim]Use ↑/↓ to navigate, Enter to select, Esc to cancel[/dim]")

        return Panel(
            table,
            title=f"[bold]{prompt_text}[/bold]",
            border_style="cyan",
            padding=(1, 2)
        )

    console.print()

    with Live(create_selection_panel(), console=console, transient=True, auto_refresh=False) as live:
        while True:
            try:
                key = get_key()
            except KeyboardInterrupt:
                console.print("\n[yellow]Selection cancelled[/yellow]")
                raise typer.Exit(1)
            if key == 'up':
                selected_index = (selected_index - 1) % len(option_keys)
            elif key == 'down':
                selected_index = (selected_index + 1) % len(option_keys)
            elif key == 'enter':
                selected_key = option_keys[selected_index]
                break
            elif key == 'escape':
                console.print("\n[yellow]Selection cancelled[/yellow]")
                raise typer.Exit(1)
            live.update(create_selection_panel(), refresh=True)

    if selected_key is None:
        console.print("\n[red]Selection failed.[/red]")
        raise typer.Exit(1)

    return selected_key


class BannerGroup(TyperGroup):
    """Custom group that shows banner before help."""

    def format_help(self, ctx, formatter):
        show_banner()
        super().format_help(ctx, formatter)


app = typer.Typer(
    name="sheets-setup",
    help="Provision a local development environment for sheets",
    add_completion=False,
    invoke_without_command=True,
    cls=BannerGroup,
)


def show_banner():
    """Display the ASCII art banner."""
    banner_lines = BANNER.strip().split('\n')
    colors = ["bright_green", "green", "cyan"]

    styled_banner = Text()
    for i, line in enumerate(banner_lines):
        styled_banner.append(line + "\n", style=colors[i % len(colors)])

    console.print(Align.center(styled_banner))
    console.print(Align.center(Text(TAGLINE, style="italic bright_yellow")))
    console.print()


@app.callback()
def callback(ctx: typer.Context):
    """Show banner when no subcommand is provided."""
    if ctx.invoked_subcommand is None and "--help" not in sys.argv and "-h" not in sys.argv:
        show_banner()
        console.print(Align.center("[dim]Run 'sheets-setup --help' for usage information[/dim]"))
        console.print()


def _load_config_or_exit(config_file: Optional[Path]) -> SetupConfig:
    try:
        return load_config(config_file)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _choose_profile(cli_profile: Optional[str], config: SetupConfig) -> str:
    if cli_profile:
        return cli_profile
    if config.profile:
        return config.profile
    if sys.stdin.isatty():
        return select_with_arrows(PROFILE_CHOICES, "Choose setup profile (or press Enter)", DEFAULT_PROFILE)
    return DEFAULT_PROFILE


def _print_debug_environment():
    _env_pairs = [
        ("Python", sys.version.split()[0]),
        ("Platform", sys.platform),
        ("CWD", str(Path.cwd())),
    ]
    _label_width = max(len(k) for k, _ in _env_pairs)
    env_lines = [f"{k.ljust(_label_width)} → [bright_black]{v}[/bright_black]" for k, v in _env_pairs]
    console.print(Panel("\n".join(env_lines), title="Debug Environment", border_style="magenta"))


@app.command()
def init(
    name: str = typer.Argument(DEFAULT_NAME, help="Folder to clone into; also used as <name>.local"),
    username: str = typer.Option(None, "--username", envvar="SHEETS_SETUP_USERNAME", help="GitHub username (requires --token; otherwise taken from the GitHub CLI)"),
    token: str = typer.Option(None, "--token", envvar="SHEETS_SETUP_TOKEN", help="GitHub token with repo and read:packages scopes"),
    profile: str = typer.Option(None, "--profile", help=f"Setup profile: {', '.join(PROFILE_CHOICES)}"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON config file (defaults to the user config dir)"),
    verify_token: bool = typer.Option(False, "--verify-token", help="Check the token against the GitHub API before using it"),
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification for --verify-token (not recommended)"),
    debug: bool = typer.Option(False, "--debug", help="Show diagnostic output on failure"),
):
    """
    Provision this machine and clone the sheets application.

    This command will:
    1. Check for administrator rights
    2. Resolve GitHub credentials (explicit, or via the GitHub CLI)
    3. Install XAMPP if missing, check its PHP version and add it to PATH
    4. Enable the required PHP extensions
    5. Install Composer and write its auth.json
    6. Install Node.js/npm and add the package registry to .npmrc
    7. Clone the repository into ./<name>
    8. Register <name>.local as an Apache virtual host and in the hosts file
    9. Create .env from .env.example
    10. Install Composer and npm dependencies

    Examples:
        sheets-setup init
        sheets-setup init demo
        sheets-setup init demo --username octocat --token ghp_xxx
        sheets-setup init demo --profile legacy
    """
    show_banner()

    try:
        validate_site_name(name)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    config = _load_config_or_exit(config_file)
    try:
        selected_profile = get_profile(_choose_profile(profile, config))
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    current_dir = Path.cwd()
    explicit = bool((username or "").strip() and (token or "").strip())
    setup_lines = [
        "[cyan]Sheets Environment Setup[/cyan]",
        "",
        f"{'Site':<15} [green]{name}[/green] [dim]({name}.local)[/dim]",
        f"{'Target Path':<15} [dim]{current_dir / name}[/dim]",
        f"{'Profile':<15} [yellow]{selected_profile.name}[/yellow]",
        f"{'Credentials':<15} [yellow]{'explicit' if explicit else 'GitHub CLI'}[/yellow]",
        f"{'XAMPP':<15} [dim]{config.xampp_dir}[/dim]",
    ]
    console.print(Panel("\n".join(setup_lines), border_style="cyan", padding=(1, 2)))

    http_client = None
    if verify_token:
        http_client = httpx.Client(verify=False if skip_tls else ssl_context)

    ctx = Context(
        config=config,
        profile=selected_profile,
        host=Host.local(),
        name=name,
        cwd=current_dir,
        username=username,
        token=token,
        verify_token=verify_token,
        http_client=http_client,
    )

    tracker = StepTracker("Provision Sheets Environment")
    try:
        with Live(tracker.render(), console=console, refresh_per_second=8, transient=True) as live:
            tracker.attach_refresh(lambda: live.update(tracker.render()))
            report = provision(ctx, tracker=tracker, live=live)
    finally:
        if http_client is not None:
            http_client.close()

    console.print(tracker.render())

    if report.warnings:
        console.print()
        console.print(Panel("\n".join(f"• {w}" for w in report.warnings), title="Warnings", border_style="yellow"))

    if not report.ok:
        console.print()
        console.print(Panel(
            f"Step [bold]{report.failed_step.label}[/bold] ({report.failed_step.key}) failed:\n{report.error}",
            title="Failure",
            border_style="red",
        ))
        if debug:
            _print_debug_environment()
        console.print("[dim]Fix the problem and re-run; completed steps are skipped or repeated safely.[/dim]")
        raise typer.Exit(1)

    console.print("\n[bold green]Environment ready.[/bold green]")

    steps_lines = [
        f"1. Go to the project folder: [cyan]cd {name}[/cyan]",
        "2. Start Apache and MySQL from the XAMPP control panel (restart Apache if it was running)",
        "3. Generate an app key: [cyan]php artisan key:generate[/cyan]",
        f"4. Open [cyan]http://{name}.local[/cyan]",
        "5. Open a new terminal so the updated PATH is picked up",
    ]
    console.print()
    console.print(Panel("\n".join(steps_lines), title="Next Steps", border_style="cyan", padding=(1, 2)))


@app.command()
def check(
    profile: str = typer.Option(None, "--profile", help=f"Profile whose PHP versions to check against: {', '.join(PROFILE_CHOICES)}"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON config file (defaults to the user config dir)"),
):
    """Check that the required tools are installed."""
    show_banner()
    console.print("[bold]Checking for installed tools...[/bold]\n")

    config = _load_config_or_exit(config_file)
    try:
        selected_profile = get_profile(profile or config.profile)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    host = Host.local()
    tracker = StepTracker("Check Available Tools")
    for key, label in TOOL_LABELS.items():
        tracker.add(key, label)

    if host.is_elevated():
        tracker.complete("admin", "elevated")
    else:
        tracker.error("admin", "not elevated; init needs an administrator terminal")

    for tool in ("choco", "git", "php", "composer", "npm", "gh"):
        if host.has_tool(tool):
            tracker.complete(tool, "available")
        else:
            tracker.error(tool, "not found")

    php_ok = False
    if config.xampp_dir.is_dir():
        php = config.php_executable if config.php_executable.is_file() else "php"
        try:
            version = php_version(host, php)
        except (StepError, OSError) as e:
            tracker.error("xampp", str(e))
        else:
            php_ok = version_allowed(version, selected_profile.php_versions)
            if php_ok:
                tracker.complete("xampp", f"PHP {version}")
            else:
                tracker.error("xampp", f"PHP {version} not in {', '.join(selected_profile.php_versions)}")
    else:
        tracker.error("xampp", f"{config.xampp_dir} not found")

    console.print(tracker.render())

    if php_ok and host.has_tool("git"):
        console.print("\n[bold green]Toolchain looks ready.[/bold green]")
    else:
        console.print("\n[dim]Tip: run 'sheets-setup init' from an elevated terminal to install missing tools[/dim]")


def main():
    app()


if __name__ == "__main__":
    main()

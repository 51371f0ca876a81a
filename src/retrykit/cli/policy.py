"""
retrykit policy - Inspect retry policies.

Shows configured policies, resolves the effective policy for a request and
previews its backoff schedule.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from retrykit.core.retry.backoff import delay_schedule
from retrykit.core.retry.policy import PolicyOverride, RetryPolicy
from retrykit.core.retry.registry import PolicyRegistry, RequestContext
from retrykit.exceptions import ConfigurationError

app = typer.Typer(name="policy", help="Inspect retry policies", no_args_is_help=True)

console = Console()

_COLUMNS = (
    ("max_retries", "Max retries"),
    ("base_delay_ms", "Base (ms)"),
    ("max_delay_ms", "Max (ms)"),
    ("backoff_multiplier", "Multiplier"),
    ("jitter_factor", "Jitter"),
    ("retryable_statuses", "Statuses"),
    ("retryable_errors", "Errors"),
)


def _load_registry(project_dir: Path, env: str | None) -> PolicyRegistry:
    """Registry from retry.yaml, or the reference registry when there is none."""
    from retrykit.config.loader import CONFIG_FILENAME, build_registry, load_config

    if not (project_dir / CONFIG_FILENAME).exists():
        return PolicyRegistry.with_defaults()

    try:
        return build_registry(load_config(project_dir, env=env))
    except ConfigurationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1) from None


def _format(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, (frozenset, set, list, tuple)):
        return ", ".join(str(v) for v in sorted(value)) or "-"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _row(policy: RetryPolicy | PolicyOverride) -> list[str]:
    return [_format(getattr(policy, field)) for field, _ in _COLUMNS]


def _policy_table(title: str, key_header: str) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column(key_header, style="cyan")
    for _, header in _COLUMNS:
        table.add_column(header)
    return table


@app.command("show")
def show(
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Directory containing retry.yaml"),
    env: str | None = typer.Option(None, help="Environment"),
) -> None:
    """
    Show the default, method and endpoint policies.
    """
    registry = _load_registry(project_dir, env)

    table = _policy_table("Default policy", "Scope")
    table.add_row("default", *_row(registry.default))
    console.print(table)

    methods = registry.methods
    if methods:
        table = _policy_table(f"Method overrides ({len(methods)})", "Method")
        for method, override in methods.items():
            table.add_row(method, *_row(override))
        console.print(table)

    endpoints = registry.endpoints
    if endpoints:
        table = _policy_table(f"Endpoint overrides ({len(endpoints)}, first match wins)", "Endpoint")
        for endpoint, override in endpoints.items():
            table.add_row(endpoint, *_row(override))
        console.print(table)


@app.command("resolve")
def resolve(
    url: str = typer.Argument(..., help="Request URL or path"),
    method: str = typer.Option("GET", "--method", "-m", help="HTTP method"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Directory containing retry.yaml"),
    env: str | None = typer.Option(None, help="Environment"),
) -> None:
    """
    Show the effective policy for a request.
    """
    registry = _load_registry(project_dir, env)
    policy = registry.resolve(RequestContext(url=url, method=method))

    endpoint = registry.match_endpoint(url)
    method_key = method.upper() if method.upper() in registry.methods else None

    console.print(f"\n[bold blue]{method.upper()} {url}[/bold blue]")
    console.print(f"[dim]method override: {method_key or 'none'}, endpoint override: {endpoint or 'none'}[/dim]\n")

    table = Table(show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for field, header in _COLUMNS:
        table.add_row(header, _format(getattr(policy, field)))
    console.print(table)


@app.command("delays")
def delays(
    url: str = typer.Argument(..., help="Request URL or path"),
    method: str = typer.Option("GET", "--method", "-m", help="HTTP method"),
    jitter: bool = typer.Option(True, "--jitter/--no-jitter", help="Apply random jitter"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Directory containing retry.yaml"),
    env: str | None = typer.Option(None, help="Environment"),
) -> None:
    """
    Preview the backoff schedule for a request.
    """
    registry = _load_registry(project_dir, env)
    policy = registry.resolve(RequestContext(url=url, method=method))

    # random() == 0.5 makes the jitter term zero
    schedule = delay_schedule(policy) if jitter else delay_schedule(policy, random=lambda: 0.5)

    if not schedule:
        console.print(f"[yellow]{method.upper()} {url} is not retried (max_retries=0)[/yellow]")
        return

    table = Table(title=f"Backoff schedule for {method.upper()} {url}", show_header=True)
    table.add_column("Retry", style="cyan", justify="right")
    table.add_column("Delay (ms)", style="green", justify="right")
    table.add_column("Elapsed (ms)", style="dim", justify="right")

    elapsed = 0
    for index, delay in enumerate(schedule, start=1):
        elapsed += delay
        table.add_row(str(index), str(delay), str(elapsed))
    console.print(table)

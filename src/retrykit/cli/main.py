"""
Main CLI entry point.
"""

import typer

from retrykit import __version__
from retrykit.cli import policy


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"retrykit version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="retrykit",
    help="retrykit - Policy-driven HTTP retries with exponential backoff",
    add_completion=False,
)

app.add_typer(policy.app, name="policy")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """
    retrykit - Policy-driven HTTP retries with exponential backoff.

    Run 'retrykit <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()

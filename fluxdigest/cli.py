"""
fluxdigest CLI.

Usage:
    fluxdigest --help                   Show all commands
    fluxdigest serve                    Start the API server and scheduler
    fluxdigest check                    Run one scheduler tick now
    fluxdigest next-runs "0 8 * * 1-5"  Show upcoming fire times
    fluxdigest create-user alice        Add a local account
"""

import asyncio

import typer

app = typer.Typer(
    name="fluxdigest",
    help="fluxdigest CLI - AI digests for Miniflux",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to run on (default: PORT)"),
):
    """Start the API server."""
    import uvicorn

    from fluxdigest.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "fluxdigest.main:app",
        host="0.0.0.0",
        port=port or settings.port,
        reload=reload,
        proxy_headers=settings.reverse_proxy,
        forwarded_allow_ips="*" if settings.reverse_proxy else None,
    )


@app.command()
def check():
    """Evaluate every user's digest tasks for the current minute and wait for them."""
    from fluxdigest.config import get_config, get_settings
    from fluxdigest.core.logging import setup_logging
    from fluxdigest.dependencies import Services

    setup_logging()

    async def run() -> int:
        services = Services.build(get_settings(), get_config())
        try:
            dispatched = await services.scheduler.run_check()
            await services.scheduler.wait_idle()
        finally:
            await services.aclose()
        return len(dispatched)

    count = asyncio.run(run())
    _print_success(f"{count} task(s) dispatched")


@app.command("next-runs")
def next_runs(
    expression: str = typer.Argument(..., help="Five-field cron expression"),
    count: int = typer.Option(5, "--count", "-n", help="Number of fire times"),
):
    """Show the next fire times of a cron expression in local time."""
    from fluxdigest.core.cron import next_fire_times
    from fluxdigest.core.datetime_utils import local_now
    from fluxdigest.core.exceptions import CronParseError

    try:
        runs = next_fire_times(expression, local_now(), count)
    except CronParseError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    for run in runs:
        typer.echo(run.strftime("%Y/%m/%d %H:%M:%S"))


@app.command("create-user")
def create_user(
    username: str = typer.Argument(..., help="Login name"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
):
    """Add a local account."""
    from fluxdigest.config import get_settings
    from fluxdigest.stores.user_store import UserExistsError, UserStore

    store = UserStore(get_settings().data_dir)
    try:
        asyncio.run(store.create_user(username, password))
    except UserExistsError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    _print_success(f"User {username} created")


if __name__ == "__main__":
    app()

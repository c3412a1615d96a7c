from __future__ import annotations

import logging
import os
from pathlib import Path

import typer
import uvicorn
import yaml
from fastapi.encoders import jsonable_encoder

from stash_adduser.config import Settings
from stash_adduser.coordinator import ProvisioningCoordinator
from stash_adduser.logging_config import configure_logging
from stash_adduser.outcome import Conflict, Created, InternalConsistencyError, ProvisionRequest
from stash_adduser.services.errors import StashException
from stash_adduser.storage import Storage, initialize_store

EXIT_FAILURE = 1
EXIT_PARTIAL = 3
EXIT_INTERNAL = 70

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(
    help="Add users to a stash, either directly in its files or through a running instance.",
    pretty_exceptions_show_locals=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _exit_for_domain_error(exc: StashException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=EXIT_FAILURE)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


def _settings(*, verbose: bool = False) -> Settings:
    try:
        settings = Settings.from_env()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_FAILURE)
    return settings.with_overrides(verbose=settings.verbose or verbose)


@app.command("add")
def add_user(
    username: str = typer.Option(..., "-u", "--username", help="New username."),
    password: str | None = typer.Option(None, "-p", "--password", help="New password."),
    directory: Path | None = typer.Option(
        None, "-d", "--directory", help="Storage path (direct file method)."
    ),
    host: str | None = typer.Option(
        None, "-H", "--host", help="host:port of the running instance."
    ),
    admin_username: str | None = typer.Option(None, "-U", "--admin-username", help="Admin username."),
    admin_password: str | None = typer.Option(None, "-P", "--admin-password", help="Admin password."),
    is_admin: bool = typer.Option(False, "--admin", help="Give the new user admin privileges."),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose output."),
) -> None:
    settings = _settings(verbose=verbose)
    if settings.verbose:
        configure_logging(verbose=True)

    request = ProvisionRequest.from_parameters(
        username=username,
        password=password,
        directory=str(directory) if directory is not None else None,
        host=host,
        admin_username=admin_username,
        admin_password=admin_password,
        is_admin=is_admin,
    )
    try:
        outcome = ProvisioningCoordinator(settings).provision(request)
    except InternalConsistencyError as e:
        logger.exception("Internal consistency failure while adding '%s'", username)
        typer.echo(f"Fatal: {e}", err=True)
        raise typer.Exit(code=EXIT_INTERNAL)

    if isinstance(outcome, Created):
        if settings.verbose:
            typer.echo(f"Username '{outcome.username}' created.")
        return
    if isinstance(outcome, Conflict):
        typer.echo(f"Username '{outcome.username}' is already in use.", err=True)
        raise typer.Exit(code=EXIT_FAILURE)
    if outcome.partial:
        typer.echo(
            f"Username '{username}' created (id {outcome.user_id}) "
            f"but the password could not be set: {outcome.message}",
            err=True,
        )
        raise typer.Exit(code=EXIT_PARTIAL)
    typer.echo(f"Error: {outcome.message}", err=True)
    raise typer.Exit(code=EXIT_FAILURE)


@app.command("init")
def init_store(
    directory: Path = typer.Option(..., "-d", "--directory", help="Storage path to create."),
) -> None:
    settings = _settings()
    try:
        path = initialize_store(directory, lock_timeout=settings.lock_timeout)
    except StashException as e:
        _exit_for_domain_error(e)
    typer.echo(f"Initialized store: {path}")


@app.command("list-users")
def list_users(
    directory: Path = typer.Option(..., "-d", "--directory", help="Storage path."),
) -> None:
    settings = _settings()
    try:
        with Storage.open(directory, lock_timeout=settings.lock_timeout) as storage:
            users = storage.list_users()
    except StashException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(users)


@app.command("serve")
def serve(
    directory: Path = typer.Option(..., "-d", "--directory", help="Storage path to serve."),
    bind: str = typer.Option("127.0.0.1", "--bind", help="Address to listen on."),
    port: int = typer.Option(8001, "--port", help="Port to listen on."),
) -> None:
    from stash_adduser.main import app as api_app

    # the API reads its settings from the environment once, on first request
    os.environ["STASH_DIRECTORY"] = str(directory)
    _settings()
    uvicorn.run(api_app, host=bind, port=port, log_level="info")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

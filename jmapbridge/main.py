"""Main entry point for the jmapbridge application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional

import typer
from typing_extensions import Annotated

from jmapbridge.core.command_handler import CommandHandler
from jmapbridge.core.request_engine import create_engine
from jmapbridge.core.services.mail_service import MailService
from jmapbridge.domain.errors import ConfigurationError
from jmapbridge.domain.models.session import CredentialContext
from jmapbridge.infrastructure.cli.display import ConsoleDisplay
from jmapbridge.infrastructure.config.settings import (
    get_api_token,
    get_base_url,
    get_config,
    get_engine_settings,
    load_configuration,
)
from jmapbridge.infrastructure.monitoring.logger_setup import level_from_name, setup_logging

logger = logging.getLogger(__name__)

# --- Dependency Injection Container (Manual) ---

_dependencies: Dict[str, Any] = {}
_cli_overrides: Dict[str, Any] = {}


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {"ui": ConsoleDisplay()}

    load_configuration()
    setup_logging(
        log_level=_cli_overrides.get("log_level") or level_from_name(get_config("logging.level", "WARNING")),
        log_file=_cli_overrides.get("log_file") or get_config("logging.file"),
    )
    logger.info("Configuration and logging initialized.")

    credential = CredentialContext(token=get_api_token(), base_url=get_base_url())
    engine = create_engine(get_engine_settings())
    mail_service = MailService(engine, credential)

    dependencies["credential"] = credential
    dependencies["engine"] = engine
    dependencies["mail_service"] = mail_service
    dependencies["command_handler"] = CommandHandler(
        engine=engine,
        mail_service=mail_service,
        credential=credential,
        ui=dependencies["ui"],
    )
    logger.info(f"Dependencies initialized for credential {credential.fingerprint}.")
    return dependencies


def get_dependencies() -> Dict[str, Any]:
    """Returns the wired dependencies, creating them on first use."""
    if not _dependencies:
        try:
            _dependencies.update(create_dependencies())
        except ConfigurationError as e:
            logger.error(f"Fatal Error during application initialization: {e}")
            ConsoleDisplay().display_error(f"Application Initialization Failed: {e}")
            raise typer.Exit(code=2)
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="jmapbridge",
    help="jmapbridge: batched, rate-limited JMAP access for mail, contacts and calendars.",
    add_completion=False,
)


def run_async(coro: Coroutine[Any, Any, bool]) -> None:
    """Runs an async handler from a sync Typer command and closes the engine afterwards."""
    engine = _dependencies.get("engine")

    async def runner() -> bool:
        try:
            return await coro
        finally:
            if engine is not None:
                await engine.aclose()

    ok = asyncio.run(runner())
    if not ok:
        raise typer.Exit(code=1)


def _handler() -> CommandHandler:
    return get_dependencies()["command_handler"]


# --- CLI Commands ---

LimitOption = Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum number of emails to show.")]


@app.command()
def session():
    """Show the discovered session: account, API URL and capabilities."""
    handler = _handler()
    run_async(handler.handle_session())


@app.command()
def availability():
    """Show which features (mail, submission, contacts, calendar) the account offers."""
    handler = _handler()
    run_async(handler.handle_availability())


@app.command()
def mailboxes():
    """List mailboxes with their counters."""
    handler = _handler()
    run_async(handler.handle_mailboxes())


@app.command()
def recent(
    limit: LimitOption = 10,
    mailbox: Annotated[str, typer.Option("--mailbox", "-m", help="Mailbox role or name.")] = "inbox",
):
    """Show the most recent emails of a mailbox."""
    handler = _handler()
    run_async(handler.handle_recent(limit, mailbox))


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Full-text search query.")],
    limit: LimitOption = 20,
):
    """Search emails by content."""
    handler = _handler()
    run_async(handler.handle_search(query, limit))


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
    log_file: Annotated[Optional[str], typer.Option("--log-file", help="Also write logs to this file.")] = None,
):
    """Batched JMAP client with session caching and retries."""
    if verbose:
        _cli_overrides["log_level"] = logging.DEBUG
    if log_file:
        _cli_overrides["log_file"] = log_file


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    logger.info("Starting jmapbridge application...")
    try:
        app()
    finally:
        logger.info("jmapbridge application finished.")


if __name__ == "__main__":
    cli_entry_point()

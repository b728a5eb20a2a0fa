"""Main entry point for the flaghealth application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional

import typer
from typing_extensions import Annotated

from flaghealth.core.command_handler import EXIT_ERROR, CommandHandler
from flaghealth.core.services.reconciliation_service import ReconciliationService
from flaghealth.domain.models.common import ApiCredential
from flaghealth.infrastructure.api.launchdarkly_client import LaunchDarklyClient, create_http_client
from flaghealth.infrastructure.cli.display import ConsoleDisplay
from flaghealth.infrastructure.config.settings import (
    get_api_key,
    get_base_url,
    get_config,
    get_resilience_settings,
    load_configuration,
)
from flaghealth.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, resolve_level, setup_logging
from flaghealth.infrastructure.resilience.api_retry import RetryingRequestExecutor
from flaghealth.infrastructure.resilience.batch_fetcher import BatchFetcher
from flaghealth.infrastructure.resilience.rate_limiter import RateLimitTracker

logger = logging.getLogger(__name__)

API_KEY_PATTERN = re.compile(r"^api-[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


class ConfigurationError(Exception):
    """Raised when the application cannot be wired from the current settings."""


def create_dependencies(api_key: Optional[str] = None, verbose: bool = False) -> Dict[str, Any]:
    """Creates and wires up all dependencies for one command.

    This acts as the Composition Root.

    Raises:
        ConfigurationError: If no credential is configured or a tunable is invalid.
    """
    load_configuration()
    log_level = logging.DEBUG if verbose else resolve_level(get_config("logging.level"))
    setup_logging(
        log_level=log_level,
        log_format=get_config("logging.format", DEFAULT_LOG_FORMAT),
        log_file=get_config("logging.file"),
    )

    credential = (api_key or "").strip() or get_api_key()
    if not credential:
        raise ConfigurationError("API key is required. Pass --api-key or set LD_API_KEY.")
    if not API_KEY_PATTERN.match(credential):
        logger.warning("API key does not look like a LaunchDarkly access token (api-xxxxxxxx-...).")

    try:
        settings = get_resilience_settings()
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid resilience settings: {e}") from e

    dependencies: Dict[str, Any] = {"settings": settings, "ui": ConsoleDisplay()}
    dependencies["tracker"] = RateLimitTracker(
        threshold=settings.throttle_threshold,
        max_wait_s=settings.max_throttle_wait_s,
    )
    dependencies["executor"] = RetryingRequestExecutor(
        client=create_http_client(ApiCredential(credential), get_base_url(), settings.request_timeout_s),
        tracker=dependencies["tracker"],
        max_retries=settings.max_retries,
        initial_delay_s=settings.initial_delay_s,
        backoff_factor=settings.backoff_factor,
        max_delay_s=settings.max_delay_s,
    )
    dependencies["flag_client"] = LaunchDarklyClient(dependencies["executor"], page_size=settings.project_page_size)
    dependencies["batch_fetcher"] = BatchFetcher(
        fetch=dependencies["flag_client"].fetch_flag_definition,
        wave_size=settings.wave_size,
        wave_cooldown_s=settings.wave_cooldown_s,
    )
    dependencies["reconciliation_service"] = ReconciliationService(
        flag_client=dependencies["flag_client"],
        batch_fetcher=dependencies["batch_fetcher"],
        tracker=dependencies["tracker"],
    )
    dependencies["command_handler"] = CommandHandler(
        reconciliation_service=dependencies["reconciliation_service"],
        flag_client=dependencies["flag_client"],
        ui=dependencies["ui"],
    )
    logger.debug("All dependencies initialized successfully.")
    return dependencies


def run_command(api_key: Optional[str], verbose: bool, action: Callable[[CommandHandler], Awaitable[int]]) -> None:
    """Wires dependencies, runs one async command and exits with its code."""
    try:
        dependencies = create_dependencies(api_key, verbose)
    except ConfigurationError as e:
        ConsoleDisplay().display_error(str(e))
        raise typer.Exit(code=EXIT_ERROR)

    async def _run() -> int:
        try:
            return await action(dependencies["command_handler"])
        finally:
            await dependencies["flag_client"].aclose()

    exit_code = asyncio.run(_run())
    if exit_code:
        raise typer.Exit(code=exit_code)


# --- Typer App Definition ---
app = typer.Typer(
    name="flaghealth",
    help="Compare code fallback values with LaunchDarkly default rules.",
    add_completion=False,
)

ApiKeyOption = Annotated[
    Optional[str],
    typer.Option("--api-key", "-k", help="LaunchDarkly access token. Defaults to LD_API_KEY.")
]

VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging.")
]


@app.command()
def check(
    project: Annotated[str, typer.Argument(help="Project key.")],
    environment: Annotated[str, typer.Argument(help="Environment key, e.g. 'production'.")],
    api_key: ApiKeyOption = None,
    only_mismatches: Annotated[bool, typer.Option("--only-mismatches", help="Show only mismatching flags.")] = False,
    fail_on_mismatch: Annotated[bool, typer.Option("--fail-on-mismatch", help="Exit with code 2 when mismatches exist.")] = False,
    verbose: VerboseOption = False,
):
    """Check every flag's fallback value against the environment default rule."""
    run_command(
        api_key,
        verbose,
        lambda handler: handler.handle_check(
            project,
            environment,
            only_mismatches=only_mismatches,
            fail_on_mismatch=fail_on_mismatch,
        ),
    )


@app.command()
def projects(
    api_key: ApiKeyOption = None,
    verbose: VerboseOption = False,
):
    """List projects and their environments."""
    run_command(api_key, verbose, lambda handler: handler.handle_list_projects())


if __name__ == "__main__":
    app()

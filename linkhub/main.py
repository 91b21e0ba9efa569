"""Main entry point for the linkhub application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Coroutine, Dict, Optional

import typer
from typing_extensions import Annotated

# --- Core Layer ---
from linkhub.core.command_handler import CommandHandler
from linkhub.core.services.batch_enrichment import BatchEnrichmentClient
from linkhub.core.services.catalog_service import CatalogService
from linkhub.core.services.queue_scheduler import QueueScheduler
from linkhub.core.services.search_service import SearchService

# --- Domain Layer ---
from linkhub.domain.interfaces.ai_model import AIModel
from linkhub.domain.models.ai import parse_model_routes

# --- Infrastructure Layer ---
from linkhub.infrastructure.ai.groq.groq_client import GroqClient
from linkhub.infrastructure.ai.openai.gpt_client import GptClient
from linkhub.infrastructure.cache.result_cache import DEFAULT_TTL_SECONDS, ResultCache
from linkhub.infrastructure.cache.stores import DEFAULT_CACHE_DIR, DEFAULT_SIZE_LIMIT_BYTES, DiskCacheStore
from linkhub.infrastructure.cli.display import ConsoleDisplay
from linkhub.infrastructure.config.settings import (
    get_config,
    get_default_provider,
    get_groq_api_key,
    get_model_list,
    get_openai_api_key,
    get_path,
    get_queue_settings,
    get_token_limits,
    load_configuration,
)
from linkhub.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, setup_logging
from linkhub.infrastructure.optimization.token_estimator import BatchBudget, TokenEstimator
from linkhub.infrastructure.resilience.model_rotation import ModelRotation
from linkhub.infrastructure.resilience.rate_limiter import RateLimiter
from linkhub.infrastructure.storage.item_store import DEFAULT_CATALOG_FILE, JsonFileItemStore
from linkhub.infrastructure.storage.state_store import DEFAULT_STATE_DIR, DiskStateStore

logger = logging.getLogger(__name__)


# --- Dependency Injection Container (Manual) ---

def _create_providers() -> Dict[str, AIModel]:
    providers: Dict[str, AIModel] = {}
    groq_api_key = get_groq_api_key()
    logger.debug(f"Groq API key found: {bool(groq_api_key)}")
    if groq_api_key:
        providers[GroqClient.provider_name] = GroqClient(api_key=groq_api_key)
    else:
        logger.warning("Groq API key not found, Groq client disabled.")

    openai_api_key = get_openai_api_key()
    logger.debug(f"OpenAI API key found: {bool(openai_api_key)}")
    if openai_api_key:
        providers[GptClient.provider_name] = GptClient(api_key=openai_api_key)
    else:
        logger.debug("OpenAI API key not found, OpenAI client disabled.")
    return providers


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}
    try:
        # 1. Load Configuration First
        load_configuration()
        log_level_name = str(get_config('logging.level', 'WARNING')).upper()
        setup_logging(
            log_level=getattr(logging, log_level_name, logging.WARNING),
            log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
            log_file=get_config('logging.file'),
        )
        logger.info("Configuration and logging initialized.")
        settings = get_queue_settings()

        # 2. Instantiate Infrastructure Adapters
        dependencies['ui'] = ConsoleDisplay()
        dependencies['item_store'] = JsonFileItemStore(get_path('storage.catalog_file', DEFAULT_CATALOG_FILE))
        dependencies['state_store'] = DiskStateStore(get_path('storage.state_dir', DEFAULT_STATE_DIR))
        dependencies['cache'] = ResultCache(
            DiskCacheStore(
                get_path('cache.directory', DEFAULT_CACHE_DIR),
                size_limit=int(get_config('cache.size_limit_bytes', DEFAULT_SIZE_LIMIT_BYTES)),
            ),
            ttl_seconds=float(get_config('cache.ttl_seconds', DEFAULT_TTL_SECONDS)),
        )
        dependencies['rate_limiter'] = RateLimiter(
            state_store=dependencies['state_store'],
            max_requests=settings.requests_per_minute,
            cooldown_seconds=settings.cooldown_seconds,
            max_consecutive_errors=settings.max_consecutive_errors,
        )

        # 3. Instantiate AI Model Clients and the batch client
        providers = _create_providers()
        if not providers:
            logger.warning("No AI providers configured; enrichment and search are unavailable.")
        routes = parse_model_routes(get_model_list(), get_default_provider())
        budget = BatchBudget(
            TokenEstimator(tokenizer_model_name=get_config('ai.tokenizer_model')),
            token_limits=get_token_limits() or None,
        )
        dependencies['client'] = BatchEnrichmentClient(
            providers=providers,
            rotation=ModelRotation(routes),
            budget=budget,
            language=str(get_config('ai.language', 'English')),
        )

        # 4. Instantiate Core Services
        dependencies['scheduler'] = QueueScheduler(
            item_store=dependencies['item_store'],
            client=dependencies['client'],
            rate_limiter=dependencies['rate_limiter'],
            settings=settings,
            cache=dependencies['cache'],
        )
        dependencies['catalog_service'] = CatalogService(dependencies['item_store'], client=dependencies['client'])
        dependencies['search_service'] = SearchService(
            client=dependencies['client'],
            rate_limiter=dependencies['rate_limiter'],
            item_store=dependencies['item_store'],
            cache=dependencies['cache'],
        ) if providers else None

        # 5. Instantiate Command Handler
        dependencies['command_handler'] = CommandHandler(
            catalog_service=dependencies['catalog_service'],
            scheduler=dependencies['scheduler'],
            rate_limiter=dependencies['rate_limiter'],
            ui=dependencies['ui'],
            search_service=dependencies['search_service'],
            cache=dependencies['cache'],
        )
        logger.info("All dependencies initialized successfully.")
        return dependencies

    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        if dependencies.get('ui'):
            dependencies['ui'].display_error(f"Application Initialization Failed: {e}")
        else:
            print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
        sys.exit(1)


# Built on first use so `--help` works without configuration
_dependencies: Optional[Dict[str, Any]] = None


def get_dependencies() -> Dict[str, Any]:
    global _dependencies
    if _dependencies is None:
        _dependencies = create_dependencies()
    return _dependencies


def get_handler() -> CommandHandler:
    return get_dependencies()['command_handler']


# --- Typer App Definition ---
app = typer.Typer(
    name="linkhub",
    help="linkhub: security/OSINT link catalog with rate-limited AI enrichment.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, None]) -> None:
    """Manages running async functions from sync Typer commands."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        get_dependencies()['ui'].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)


IdArgument = Annotated[str, typer.Argument(help="Item id or a unique prefix of it (as shown by 'list').")]


@app.command()
def add(
    url: Annotated[str, typer.Argument(help="URL of the tool to add.")],
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="Display name (derived from the hostname if omitted).")] = None,
):
    """Add a link to the catalog; it is enriched automatically."""
    run_async(get_handler().handle_add(url, name))


@app.command()
def remove(item_id: IdArgument):
    """Remove a link from the catalog."""
    run_async(get_handler().handle_remove(item_id))


@app.command(name="list")
def list_command(
    category: Annotated[Optional[str], typer.Option("--category", "-c", help="Only show this category.")] = None,
    status: Annotated[Optional[str], typer.Option("--status", "-s", help="Only show items in this processing status.")] = None,
):
    """List the catalog."""
    run_async(get_handler().handle_list(category=category, status=status))


@app.command()
def enrich(item_id: IdArgument):
    """Enrich a single link right now (refused during cooldown)."""
    run_async(get_handler().handle_enrich(item_id))


@app.command()
def requeue(item_id: IdArgument):
    """Put a link back in the enrichment queue."""
    run_async(get_handler().handle_requeue(item_id))


@app.command()
def process(
    watch: Annotated[bool, typer.Option("--watch", "-w", help="Keep running and pick up new links as they are added.")] = False,
    max_cycles: Annotated[int, typer.Option("--max-cycles", help="Upper bound on dispatch cycles when not watching.")] = 100,
):
    """Run the enrichment queue until nothing is left to enrich."""
    run_async(get_handler().handle_process(watch=watch, max_cycles=max_cycles))


@app.command()
def status():
    """Show queue and rate limit status."""
    run_async(get_handler().handle_status())


@app.command()
def search(query: Annotated[str, typer.Argument(help="Natural-language query, e.g. 'wifi password cracking'.")]):
    """Semantic search over the catalog."""
    run_async(get_handler().handle_search(query))


@app.command(name="import-text")
def import_text(
    file: Annotated[Path, typer.Argument(exists=True, file_okay=True, dir_okay=False, readable=True, resolve_path=True,
                                         help="JSON list or messy text containing links.")],
):
    """Import links from a JSON list or messy text (repaired by the AI provider)."""
    run_async(get_handler().handle_import_text(file.read_text(encoding="utf-8")))


@app.command(name="clear-cache")
def clear_cache_command():
    """Clear cached enrichment and search results."""
    run_async(get_handler().handle_clear_cache())


@app.command(name="reset-limits")
def reset_limits_command():
    """Reset the persisted rate limit state (window, cooldown, error streak)."""
    run_async(get_handler().handle_reset_limits())


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()

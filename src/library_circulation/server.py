"""Library Circulation MCP Server

Exposes the loan lifecycle engine over MCP:
- Tools: borrow, reserve, confirm, cancel, renew, return, pay fine, and
  staff operations (sweeps, due-date edits, removal, inventory)
- Resources: overdue loans, loan records, patron and item loan histories

Clients connect via stdio (default) or streamable HTTP.
"""

import inspect
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from typing import Annotated, Any

from fastmcp import FastMCP
from pydantic import BaseModel, Field

from .config import get_config
from .database.session import get_db_manager
from .observability import initialize_observability
from .resources import all_resources
from .tools import all_tools

# Initialize logging - stderr for logs, stdout for MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

# Load configuration
config = get_config()

mcp = FastMCP(
    name=config.server_name,
    version=config.server_version,
    instructions=(
        "Library circulation service. Use tools to borrow, reserve, renew and return "
        "items and to record fine payments; use resources to read loan records, "
        "overdue loans, and patron or item loan histories. Error results carry a "
        "machine-readable code in error.code."
    ),
)


def register_resources(server: FastMCP) -> None:
    for resource in all_resources:
        uri = resource.get("uri_template", resource.get("uri"))
        logger.debug("Registering resource: %s with URI: %s", resource["name"], uri)
        try:
            server.resource(
                uri,
                name=resource["name"],
                description=resource["description"],
                mime_type=resource["mime_type"],
            )(resource["handler"])
        except Exception:
            logger.exception("Failed to register resource %s", resource["name"])
            raise

    logger.info("Registered %d resources", len(all_resources))


def tool_function(tool: dict[str, Any]) -> Callable[..., Awaitable[dict[str, Any]]]:
    """
    Expose a handler under one keyword parameter per field of its input model.

    Handlers take a single ``arguments`` dict. FastMCP publishes a tool's
    schema from the function signature, so the signature is rebuilt from the
    input model: clients see ``patron_id``, ``item_id``... with the same types,
    patterns and bounds the handler validates.
    """
    model: type[BaseModel] = tool["input_model"]
    handler = tool["handler"]

    async def call(**kwargs: Any) -> dict[str, Any]:
        return await handler(kwargs)

    parameters = []
    annotations: dict[str, Any] = {}
    for name, field in model.model_fields.items():
        annotation = Annotated[
            (field.annotation, *field.metadata, Field(description=field.description))
        ]
        default = inspect.Parameter.empty if field.is_required() else field.default
        parameters.append(
            inspect.Parameter(
                name, inspect.Parameter.KEYWORD_ONLY, default=default, annotation=annotation
            )
        )
        annotations[name] = annotation
    annotations["return"] = dict[str, Any]

    call.__name__ = tool["name"]
    call.__doc__ = tool["description"]
    call.__signature__ = inspect.Signature(parameters, return_annotation=dict[str, Any])
    call.__annotations__ = annotations
    return call


def register_tools(server: FastMCP) -> None:
    for tool in all_tools:
        logger.debug("Registering tool: %s", tool["name"])
        try:
            server.tool(
                name=tool["name"],
                description=tool["description"],
            )(tool_function(tool))
        except Exception:
            logger.exception("Failed to register tool %s", tool["name"])
            raise

    logger.info("Registered %d tools", len(all_tools))


register_resources(mcp)
register_tools(mcp)


def configure_logging() -> None:
    """Apply the configured log level; debug mode turns everything up."""
    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled - verbose protocol logging active")
    else:
        logging.getLogger().setLevel(config.log_level)
        logging.getLogger("fastmcp").setLevel(logging.WARNING)


def prepare_database() -> None:
    """Create missing tables and fail fast if the datastore is unreachable."""
    db = get_db_manager()
    db.init_database()
    if not db.verify_connection():
        logger.error("Database at %s is not reachable", db.database_url)
        sys.exit(1)


def shutdown() -> None:
    logger.info("MCP Server shutting down gracefully...")
    get_db_manager().close()
    logger.info("Shutdown complete")


def run_server() -> None:
    """Run the MCP server on the configured transport."""
    logger.info(
        "Starting %s v%s on %s transport",
        config.server_name,
        config.server_version,
        config.transport,
    )

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if config.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(transport="streamable-http", host=config.http_host, port=config.http_port)
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)


def main() -> None:
    """Entry point for ``library-circulation`` and ``python -m library_circulation.server``."""
    try:
        configure_logging()
        initialize_observability()

        logger.info("=" * 60)
        logger.info("Library Circulation Server")
        logger.info("Version: %s", config.server_version)
        logger.info("Transport: %s", config.transport)
        logger.info("Database: %s", config.database_path)
        logger.info("Debug Mode: %s", config.debug)
        logger.info("=" * 60)

        prepare_database()
        run_server()

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()

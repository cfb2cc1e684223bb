"""Library Circulation MCP Server - FastMCP Implementation

Exposes the circulation engine to MCP clients over stdio.

Features exposed:
- Resources: available books, active loans, member summary
- Tools: borrow, return, renew, reserve, cancel reservation, pay fine, sweep
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from .config import get_config
from .database.session import get_db_manager
from .observability import initialize_observability
from .observability.middleware import CirculationTracingMiddleware
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

# Create the FastMCP server instance
mcp = FastMCP(
    name=config.server_name,
    version=config.server_version,
    instructions=(
        "Library Circulation Server - lends, returns and renews books, manages "
        "reservation queues and collects fines while keeping copy counts, loans and "
        "balances consistent. Use resources to see what is on the shelf, what is out "
        "and who owes what; use tools to change circulation state."
    ),
)

mcp.add_middleware(CirculationTracingMiddleware())

# Register all resources with the MCP server
for resource in all_resources:
    logger.debug("Registering resource: %s with URI: %s", resource["name"], resource["uri"])
    mcp.resource(
        uri=resource["uri"],
        name=resource["name"],
        description=resource["description"],
        mime_type=resource["mime_type"],
    )(resource["handler"])

logger.info("Registered %d resources", len(all_resources))

# Register all tools with the MCP server
for tool in all_tools:
    logger.debug("Registering tool: %s", tool["name"])
    mcp.tool(
        name=tool["name"],
        description=tool["description"],
    )(tool["handler"])

logger.info("Registered %d tools", len(all_tools))


def prepare_database() -> None:
    """Create any missing tables and check the database answers."""
    db = get_db_manager()
    db.init_database()
    if not db.verify_connection():
        raise RuntimeError(f"Database at {db.database_url} is not reachable")


def run_stdio_server() -> None:
    """Run the MCP server using stdio transport.

    Stdin receives JSON-RPC requests, stdout sends responses.
    """
    logger.info("Starting %s v%s on stdio transport", config.server_name, config.server_version)

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled - verbose protocol logging active")
    else:
        logging.getLogger().setLevel(config.log_level)
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        get_db_manager().close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info("MCP Server ready and waiting for connections...")
        mcp.run(transport="stdio")
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)


def main() -> None:
    """Main entry point for the MCP server."""
    try:
        logger.info("=" * 60)
        logger.info("Library Circulation MCP Server")
        logger.info("Version: %s", config.server_version)
        logger.info("Database: %s", config.database_path)
        logger.info("Debug Mode: %s", config.debug)
        logger.info("=" * 60)

        initialize_observability()
        prepare_database()
        run_stdio_server()

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
Library Circulation Service Package.

Lending engine for a multi-copy library catalog, exposed as an MCP server.

Key Components:
- models: Pydantic models and the pure loan-state rules
- database: SQLAlchemy schema, sessions and repositories
- engine: the loan lifecycle engine (borrow, reserve, renew, return, fines)
- config: Configuration management with pydantic-settings
- tools: MCP tools (circulation operations with side effects)
- resources: MCP resources (read-only loan views)
- observability: Logfire tracing for tool calls
"""

__version__ = "0.1.0"

from . import database

__all__ = [
    "__version__",
    "database",
]

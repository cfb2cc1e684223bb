"""
Library Circulation Package.

A circulation consistency engine for a library: it keeps copy availability,
loans, reservation queues and member fines consistent under concurrent use,
and serves them to MCP clients.

Key Components:
- models: Pydantic models returned by the engine
- database: SQLAlchemy schema, sessions and repositories
- circulation: ledger, reservation queue, fines, state machine and the engine
- config: Configuration management with pydantic-settings
- resources / tools: the MCP surface
"""

__version__ = "0.1.0"

from .circulation.engine import CirculationEngine, get_engine

__all__ = [
    "CirculationEngine",
    "__version__",
    "get_engine",
]

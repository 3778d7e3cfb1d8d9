"""
MCP tools for the Library Circulation service.

Tools are the operations with side effects: every one of them goes through
the loan lifecycle engine, which validates policy and commits the change
atomically. Read-only views of the ledger are exposed as resources instead.
"""

from .administration import administration_tools
from .circulation import circulation_tools

# Single list for server registration
all_tools = circulation_tools + administration_tools

__all__ = [
    "administration_tools",
    "all_tools",
    "circulation_tools",
]

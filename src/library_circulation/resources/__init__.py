"""Library Circulation MCP Resources Package

Resources are the read-only side of the service: URI-addressed views of
the loan ledger. Anything that changes state is a tool instead.
"""

from .loans import loan_resources

all_resources = loan_resources

__all__ = [
    "all_resources",
    "loan_resources",
]

"""
apiary - a local workbench for heterogeneous requests.

Requests of several kinds (HTTP calls, SQL queries, Redis commands, gRPC
calls, jq filters, Markdown notes, and SQL/HTTP sources) are stored in one
JSON document together with the history of their executions.

Example usage:
    $ apiary create http api/users -p '{"url": "https://example.com/users"}'
    $ apiary perform <id>
    $ apiary show <id>
"""

__version__ = "0.1.0"
__author__ = "apiary Contributors"

__all__ = [
    "__version__",
    "__author__",
]

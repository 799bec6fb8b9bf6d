"""Covenant: contract-driven API framework.

Covenant turns declarative endpoint contracts into live HTTP routes. Every
request, whether it arrives on a REST path or on the single JSON-RPC
endpoint, runs through the same gate chain before the handler sees it.

Key features:
    - Interface contracts compiled into REST routes and RPC methods
    - API key, request signature and session token gates
    - Rule-based parameter validation with aggregated violations
    - Cache-first credential lookups with database write-through
    - Uniform success/failure response envelope

Example:
    >>> from covenant.client import CovenantClient
    >>> async with CovenantClient("http://localhost:8070") as client:
    ...     envelope = await client.call(
    ...         "user.create",
    ...         {"username": "ada@example.com", "password": "hunter22"},
    ...     )
"""

__all__ = ["__version__"]

__version__ = "0.1.0"

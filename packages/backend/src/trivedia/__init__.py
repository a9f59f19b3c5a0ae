"""Trivedia: authentication and authorization core.

Connection lifecycle for a repeatedly cold-started API, signed session
tokens, and role-gated access control for the Trivedia Flow backend.
"""

__version__ = "0.1.0"

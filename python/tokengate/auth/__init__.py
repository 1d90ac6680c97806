"""Authentication module.

This module provides:
- Key set retrieval and caching (JWKS over HTTPS, keys from x5c certificates)
- Token verification against the key set with a pinned algorithm
- Auth middleware and the Secured route dependency for FastAPI
"""

from tokengate.auth.errors import TokenVerificationError
from tokengate.auth.keyset import KeySetCache, KeySetFetcher
from tokengate.auth.middleware import AuthMiddleware, Principal, Secured, get_principal
from tokengate.auth.verifier import JwksTokenVerifier, TokenVerifier, verify

__all__ = [
    "AuthMiddleware",
    "JwksTokenVerifier",
    "KeySetCache",
    "KeySetFetcher",
    "Principal",
    "Secured",
    "TokenVerificationError",
    "TokenVerifier",
    "get_principal",
    "verify",
]

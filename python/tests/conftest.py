"""Pytest configuration and fixtures for tokengate tests.

Test isolation strategy:
- RSA keys and certificates are generated once per session (slow to create)
- JWKS HTTP traffic is mocked with respx; no test reaches the network
- Verifier and middleware tests inject StaticKeySource instead of a live cache
- Settings are built explicitly; the settings cache is cleared around each test
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from tests.helpers import AUDIENCE, ISSUER, JWKS_URL, SigningKey, generate_signing_key
from tests.support.key_sources import StaticKeySource, public_keys
from tokengate.app import add_request_id_middleware, create_app
from tokengate.auth.verifier import JwksTokenVerifier, clear_token_verifier_cache
from tokengate.config import clear_settings_cache


@pytest.fixture(autouse=True)
def reset_cached_singletons() -> Generator[None, None, None]:
    """Ensure settings and the process-wide verifier never leak between tests."""
    clear_settings_cache()
    clear_token_verifier_cache()
    yield
    clear_token_verifier_cache()
    clear_settings_cache()


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    """The key published in the JWKS under kid "abc"."""
    return generate_signing_key("abc")


@pytest.fixture(scope="session")
def other_signing_key() -> SigningKey:
    """A key the identity provider never published."""
    return generate_signing_key("other")


@pytest.fixture
def key_source(signing_key: SigningKey) -> StaticKeySource:
    """Key source holding only the published key."""
    return StaticKeySource(public_keys(signing_key))


@pytest.fixture
def verifier(key_source: StaticKeySource) -> JwksTokenVerifier:
    """Verifier pinned to RS256 with the test issuer and audience."""
    return JwksTokenVerifier(
        issuer=ISSUER,
        audience=AUDIENCE,
        jwks_url=JWKS_URL,
        algorithm="RS256",
        key_source=key_source,
    )


@pytest.fixture
def auth_client(verifier: JwksTokenVerifier) -> Generator[TestClient, None, None]:
    """Client for an app with auth + request-id middleware."""
    app = create_app(token_verifier=verifier)
    add_request_id_middleware(app, log_requests=False)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Client for an app without auth middleware."""
    app = create_app(skip_auth_middleware=True)
    with TestClient(app) as client:
        yield client

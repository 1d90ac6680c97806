"""Application settings loaded from environment variables.

Environment Configuration:
    TOKENGATE_ENV: Deployment environment (local | test | staging | prod)
    LOG_JSON: Render logs as JSON (default true)

Auth Configuration (required in all environments):
    AUTH_ISSUER: Expected JWT issuer, compared exactly
    AUTH_AUDIENCE: Audience the API is registered as
    AUTH_JWKS_URL: Full URL to the identity provider's JWKS endpoint
    AUTH_ALGORITHM: Pinned signature algorithm (default RS256)

    AUTH0_DOMAIN: Optional tenant domain. When set, AUTH_ISSUER defaults to
        https://<domain>/ and AUTH_JWKS_URL to
        https://<domain>/.well-known/jwks.json.

JWKS Configuration:
    JWKS_CACHE_TTL_S: Lifetime of a fetched key set (default 3600)
    JWKS_MIN_REFRESH_INTERVAL_S: Minimum gap between forced refreshes (default 30)
    JWKS_FETCH_TIMEOUT_S: Timeout for the JWKS request (default 5.0)
    CLOCK_SKEW_S: Leeway applied to exp/nbf (default 60)
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

# Asymmetric RSA-family algorithms the verifier may be pinned to
ALLOWED_ALGORITHMS = frozenset({"RS256", "RS384", "RS512", "PS256", "PS384", "PS512"})

JWKS_PATH = "/.well-known/jwks.json"


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - AUTH_ISSUER, AUTH_AUDIENCE, AUTH_JWKS_URL are required (directly or
      derived from AUTH0_DOMAIN)
    - AUTH_ALGORITHM must be an asymmetric RSA-family algorithm
    """

    tokengate_env: Environment = Field(default=Environment.LOCAL, alias="TOKENGATE_ENV")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Identity provider settings
    auth0_domain: str | None = Field(default=None, alias="AUTH0_DOMAIN")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audience: str | None = Field(default=None, alias="AUTH_AUDIENCE")
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_algorithm: str = Field(default="RS256", alias="AUTH_ALGORITHM")

    # JWKS fetch and cache settings
    jwks_cache_ttl_s: int = Field(default=3600, ge=0, alias="JWKS_CACHE_TTL_S")
    jwks_min_refresh_interval_s: int = Field(default=30, ge=0, alias="JWKS_MIN_REFRESH_INTERVAL_S")
    jwks_fetch_timeout_s: float = Field(default=5.0, gt=0, alias="JWKS_FETCH_TIMEOUT_S")
    clock_skew_s: int = Field(default=60, ge=0, alias="CLOCK_SKEW_S")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("auth_algorithm")
    @classmethod
    def validate_algorithm(cls, value: str) -> str:
        """Only asymmetric RSA-family algorithms can be pinned."""
        if value not in ALLOWED_ALGORITHMS:
            raise ValueError(
                f"AUTH_ALGORITHM must be one of {', '.join(sorted(ALLOWED_ALGORITHMS))}, "
                f"got {value!r}"
            )
        return value

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Derive tenant defaults, then ensure auth settings are present."""
        if self.auth0_domain:
            base = f"https://{self.tenant_host}"
            if not self.auth_issuer:
                self.auth_issuer = f"{base}/"
            if not self.auth_jwks_url:
                self.auth_jwks_url = f"{base}{JWKS_PATH}"

        missing_auth = []
        if not self.auth_issuer:
            missing_auth.append("AUTH_ISSUER")
        if not self.auth_audience:
            missing_auth.append("AUTH_AUDIENCE")
        if not self.auth_jwks_url:
            missing_auth.append("AUTH_JWKS_URL")

        if missing_auth:
            raise ValueError(
                f"Missing required auth settings: {', '.join(missing_auth)}. "
                "Set them explicitly or set AUTH0_DOMAIN to derive issuer and JWKS URL."
            )

        return self

    @property
    def tenant_host(self) -> str | None:
        """Return AUTH0_DOMAIN without scheme or trailing slash."""
        if not self.auth0_domain:
            return None
        host = self.auth0_domain.strip()
        for prefix in ("https://", "http://"):
            if host.startswith(prefix):
                host = host[len(prefix) :]
        return host.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()

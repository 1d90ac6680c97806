"""Token verification implementations.

Provides:
- TokenVerifier: Protocol for token verification
- JwksTokenVerifier: Verifies RSA-signed JWTs against an identity provider's JWKS
- verify: Module-level helper using a verifier built from application settings

The signature algorithm is pinned by configuration. The `alg` header of an
incoming token is only compared against it, never used to pick one.
"""

from functools import lru_cache
from typing import Any, Protocol

import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from tokengate.auth.errors import (
    DisallowedAlgorithmError,
    ExpiredTokenError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    MalformedTokenError,
    TokenNotYetValidError,
    TokenVerificationError,
    UnknownKeyError,
)
from tokengate.auth.keyset import KeySetCache, KeySetFetcher, KeySource
from tokengate.config import ALLOWED_ALGORITHMS, Settings, get_settings
from tokengate.logging import get_logger

logger = get_logger(__name__)

# Clock skew allowance in seconds
CLOCK_SKEW_SECONDS = 60


class TokenVerifier(Protocol):
    """Protocol for token verification.

    Implementations must verify JWT tokens and return decoded claims.
    """

    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Args:
            token: The JWT token string to verify.

        Returns:
            Decoded JWT claims dictionary.

        Raises:
            TokenVerificationError: Any key-set or token failure (see
                tokengate.auth.errors for the concrete kinds).
        """
        ...


class JwksTokenVerifier:
    """Token verifier backed by a remote JWKS.

    Validates, in order:
    - Token shape (three segments, decodable header)
    - Header alg equals the pinned algorithm
    - kid resolves to a key (one rate-limited refresh on miss)
    - Signature under the pinned algorithm
    - exp / nbf when present, with clock skew leeway
    - iss equals the configured issuer exactly
    - aud contains the configured audience
    """

    def __init__(
        self,
        *,
        issuer: str,
        audience: str,
        jwks_url: str,
        algorithm: str = "RS256",
        key_source: KeySource | None = None,
        leeway: int = CLOCK_SKEW_SECONDS,
    ):
        """Initialize the verifier.

        Args:
            issuer: Trusted issuer, compared exactly against the iss claim.
            audience: Audience that must appear in the aud claim.
            jwks_url: JWKS endpoint of the issuer.
            algorithm: Pinned asymmetric signature algorithm.
            key_source: Where keys are resolved. Defaults to a KeySetCache
                over a fresh KeySetFetcher.
            leeway: Clock skew tolerated on exp/nbf, in seconds.

        Raises:
            ValueError: algorithm is not an asymmetric RSA-family algorithm.
        """
        if algorithm not in ALLOWED_ALGORITHMS:
            raise ValueError(f"Unsupported pinned algorithm: {algorithm!r}")

        self.issuer = issuer
        self.audience = audience
        self.jwks_url = jwks_url
        self.algorithm = algorithm
        self.leeway = leeway
        self.key_source = key_source or KeySetCache(KeySetFetcher())

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwksTokenVerifier":
        """Build a verifier and its cached key source from application settings."""
        key_source = KeySetCache(
            KeySetFetcher(timeout=settings.jwks_fetch_timeout_s),
            ttl_seconds=settings.jwks_cache_ttl_s,
            min_refresh_interval=settings.jwks_min_refresh_interval_s,
        )
        return cls(
            issuer=settings.auth_issuer,  # type: ignore[arg-type]
            audience=settings.auth_audience,  # type: ignore[arg-type]
            jwks_url=settings.auth_jwks_url,  # type: ignore[arg-type]
            algorithm=settings.auth_algorithm,
            key_source=key_source,
            leeway=settings.clock_skew_s,
        )

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a JWT and return its claims.

        Args:
            token: Compact-serialized JWT (no "Bearer " prefix).

        Returns:
            Decoded claims, unchanged from the token payload.

        Raises:
            MalformedTokenError: Token is not three decodable segments.
            DisallowedAlgorithmError: Header alg is not the pinned algorithm.
            UnknownKeyError: kid missing or not in the key set.
            InvalidSignatureError: Signature does not verify.
            ExpiredTokenError: exp elapsed, or nbf in the future.
            InvalidIssuerError: iss missing or mismatched.
            InvalidAudienceError: aud missing or mismatched.
            FetchError / MalformedKeySetError: Key set could not be obtained.
        """
        try:
            return self._verify(token)
        except TokenVerificationError as e:
            logger.warning("auth_failure", reason=e.reason, error=e.detail)
            raise

    def close(self) -> None:
        """Release resources held by the key source, if it has any."""
        close = getattr(self.key_source, "close", None)
        if close is not None:
            close()

    def _verify(self, token: str) -> dict[str, Any]:
        header = self._read_header(token)

        declared = header.get("alg")
        if declared != self.algorithm:
            raise DisallowedAlgorithmError(
                f"token declares alg {declared!r}, only {self.algorithm} is accepted"
            )

        key = self._resolve_key(header.get("kid"))

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_aud": True,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise InvalidSignatureError("signature verification failed") from e
        except jwt.ExpiredSignatureError as e:
            raise ExpiredTokenError("token has expired") from e
        except jwt.ImmatureSignatureError as e:
            raise TokenNotYetValidError(str(e)) from e
        except jwt.InvalidIssuerError as e:
            raise InvalidIssuerError(str(e)) from e
        except jwt.InvalidAudienceError as e:
            raise InvalidAudienceError(str(e)) from e
        except jwt.MissingRequiredClaimError as e:
            if e.claim == "iss":
                raise InvalidIssuerError("token has no iss claim") from e
            if e.claim == "aud":
                raise InvalidAudienceError("token has no aud claim") from e
            raise TokenVerificationError(str(e)) from e
        except jwt.DecodeError as e:
            raise MalformedTokenError(str(e)) from e
        except jwt.InvalidTokenError as e:
            raise TokenVerificationError(str(e)) from e

        # Some PyJWT releases match iss by substring
        if claims.get("iss") != self.issuer:
            raise InvalidIssuerError(f"token issuer {claims.get('iss')!r} does not match")

        return claims

    def _read_header(self, token: str) -> dict[str, Any]:
        """Decode the header without trusting it."""
        if not isinstance(token, str) or not token or token.count(".") != 2:
            raise MalformedTokenError("token must have three dot-separated segments")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"unreadable token header: {e}") from e

        return header

    def _resolve_key(self, kid: Any) -> RSAPublicKey:
        """Look up the signing key by kid, refreshing once on a miss."""
        if not isinstance(kid, str) or not kid:
            raise UnknownKeyError("token header has no kid")

        key = self.key_source.get_keys(self.jwks_url).get(kid)
        if key is None:
            logger.info("jwks_kid_miss", kid=kid)
            key = self.key_source.refresh(self.jwks_url).get(kid)

        if key is None:
            raise UnknownKeyError(f"no signing key with kid {kid!r}")

        if not isinstance(key, RSAPublicKey):
            raise InvalidSignatureError(f"signing key {kid!r} is not an RSA key")

        return key


@lru_cache
def get_token_verifier() -> JwksTokenVerifier:
    """Get the process-wide verifier configured from environment settings.

    The app gate and the module-level verify() share this instance, and with it
    one key-set cache and one HTTP client.
    """
    verifier = JwksTokenVerifier.from_settings(get_settings())
    logger.info(
        "token_verifier_configured",
        issuer=verifier.issuer,
        audience=verifier.audience,
        jwks_url=verifier.jwks_url,
        algorithm=verifier.algorithm,
    )
    return verifier


def is_process_verifier(verifier: object) -> bool:
    """True if verifier is the cached process-wide instance."""
    return bool(get_token_verifier.cache_info().currsize) and verifier is get_token_verifier()


def clear_token_verifier_cache() -> None:
    """Close and forget the process-wide verifier. Useful for testing."""
    if get_token_verifier.cache_info().currsize:
        get_token_verifier().close()
    get_token_verifier.cache_clear()


def verify(token: str) -> dict[str, Any]:
    """Verify a token with the process-wide verifier."""
    return get_token_verifier().verify(token)

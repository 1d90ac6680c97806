"""Token verification error taxonomy.

Every failure raised while fetching signing keys or verifying a token is a
TokenVerificationError. Each carries:
- reason: stable snake_case identifier, used as the `reason` field of
  auth_failure log events
- message: short public description of the failure category, safe to return
  to clients (never contains exception text or key material)

The exception's str() may carry internal detail for logs.
"""


class TokenVerificationError(Exception):
    """Base class for all key-set and token verification failures."""

    reason = "invalid_token"
    message = "Invalid token"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class FetchError(TokenVerificationError):
    """Transport failure, timeout or non-2xx status retrieving the JWKS."""

    reason = "jwks_unavailable"
    message = "Authentication service unavailable"


class MalformedKeySetError(TokenVerificationError):
    """JWKS body is not valid JSON, lacks expected fields, or has a bad certificate."""

    reason = "jwks_malformed"
    message = "Authentication service unavailable"


class MalformedTokenError(TokenVerificationError):
    """Token is not three decodable base64url segments."""

    reason = "decode_error"
    message = "Invalid token format"


class UnknownKeyError(TokenVerificationError):
    """Token's kid is missing or has no match in the key set."""

    reason = "kid_not_found"
    message = "Signing key not found"


class InvalidSignatureError(TokenVerificationError):
    """Cryptographic signature check failed."""

    reason = "invalid_signature"
    message = "Invalid token signature"


class DisallowedAlgorithmError(InvalidSignatureError):
    """Token header declares an algorithm other than the pinned one."""

    reason = "disallowed_algorithm"


class InvalidIssuerError(TokenVerificationError):
    """iss claim missing or not equal to the trusted issuer."""

    reason = "invalid_issuer"
    message = "Invalid token issuer"


class InvalidAudienceError(TokenVerificationError):
    """aud claim missing or does not contain the expected audience."""

    reason = "invalid_audience"
    message = "Invalid token audience"


class ExpiredTokenError(TokenVerificationError):
    """Token validity window (exp/nbf) does not include the current time."""

    reason = "expired_token"
    message = "Token expired"


class TokenNotYetValidError(ExpiredTokenError):
    """nbf claim lies in the future beyond the allowed clock skew."""

    reason = "token_not_yet_valid"
    message = "Token not yet valid"

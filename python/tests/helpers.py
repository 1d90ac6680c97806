"""Test helpers for key material and token minting.

Provides:
- SigningKey: RSA keypair plus a self-signed certificate for JWKS x5c entries
- JWKS document builders
- Token minting (valid, tampered, unsigned, HMAC-forged)
- Header generation for test requests
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

# Default test token settings
ISSUER = "https://tenant.example.auth0.com/"
AUDIENCE = "https://api.example.com"
JWKS_URL = "https://tenant.example.auth0.com/.well-known/jwks.json"
DEFAULT_EXPIRES_IN = 3600  # 1 hour


@dataclass
class SigningKey:
    """An RSA private key with the self-signed certificate published for it."""

    kid: str
    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    @property
    def private_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @property
    def public_pem(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def x5c(self) -> str:
        """Standard base64 of the DER certificate, as published in JWKS x5c."""
        der = self.certificate.public_bytes(serialization.Encoding.DER)
        return base64.b64encode(der).decode("ascii")

    def jwk(self) -> dict[str, Any]:
        """JWKS entry in the shape Auth0 publishes."""
        return {
            "kty": "RSA",
            "use": "sig",
            "alg": "RS256",
            "kid": self.kid,
            "x5c": [self.x5c()],
        }


def generate_signing_key(kid: str = "abc") -> SigningKey:
    """Generate an RSA keypair and a self-signed certificate for it."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "tokengate-test")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(private_key, hashes.SHA256())
    )
    return SigningKey(kid=kid, private_key=private_key, certificate=certificate)


def jwks_document(*keys: SigningKey) -> dict[str, Any]:
    """Build a JWKS response body for the given keys."""
    return {"keys": [key.jwk() for key in keys]}


def build_claims(
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = ISSUER,
    audience: str | list[str] = AUDIENCE,
    subject: str = "auth0|user-123",
    **extra_claims,
) -> dict[str, Any]:
    """Build a claims payload with sensible defaults."""
    now = int(time.time())
    return {
        "sub": subject,
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }


def mint_token(
    signing_key: SigningKey,
    claims: dict[str, Any] | None = None,
    kid: str | None = None,
    algorithm: str = "RS256",
    include_kid: bool = True,
) -> str:
    """Mint a token signed by signing_key.

    Args:
        signing_key: Key that signs the token.
        claims: Payload (defaults to build_claims()).
        kid: Header kid (defaults to signing_key.kid).
        algorithm: Signature algorithm.
        include_kid: If False, the header carries no kid.
    """
    headers = {"kid": kid or signing_key.kid} if include_kid else None
    return jwt.encode(
        claims if claims is not None else build_claims(),
        signing_key.private_pem,
        algorithm=algorithm,
        headers=headers,
    )


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_json(value: Any) -> str:
    return b64url(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def flip_signature_bit(token: str, bit: int = 0) -> str:
    """Flip one bit of the decoded signature and re-encode the token."""
    header, payload, signature = token.split(".")
    raw = bytearray(b64url_decode(signature))
    raw[bit // 8] ^= 1 << (bit % 8)
    return f"{header}.{payload}.{b64url(bytes(raw))}"


def mint_unsigned_token(claims: dict[str, Any], kid: str = "abc") -> str:
    """Token declaring alg "none" with an empty signature segment."""
    return f"{b64url_json({'alg': 'none', 'typ': 'JWT', 'kid': kid})}.{b64url_json(claims)}."


def mint_hmac_forged_token(claims: dict[str, Any], secret: bytes, kid: str = "abc") -> str:
    """Token declaring HS256, MAC'd with `secret` (e.g. the public key PEM)."""
    signing_input = f"{b64url_json({'alg': 'HS256', 'typ': 'JWT', 'kid': kid})}.{b64url_json(claims)}"
    mac = hmac.new(secret, signing_input.encode("ascii"), hashlib.sha256).digest()
    return f"{signing_input}.{b64url(mac)}"


def sign_raw_payload(signing_key: SigningKey, payload: bytes) -> str:
    """RS256-sign an arbitrary payload segment, e.g. one that is not JSON."""
    header = b64url_json({"alg": "RS256", "typ": "JWT", "kid": signing_key.kid})
    signing_input = f"{header}.{b64url(payload)}"
    signature = signing_key.private_key.sign(
        signing_input.encode("ascii"), padding.PKCS1v15(), hashes.SHA256()
    )
    return f"{signing_input}.{b64url(signature)}"


def auth_headers(token: str) -> dict[str, str]:
    """Authorization header for a bearer token."""
    return {"Authorization": f"Bearer {token}"}

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from jose import jwt
from jose.exceptions import JWKError, JWTError

from shopfront.core import config
from shopfront.services.jwks_cache import JwksCache, JwksFetchError, default_jwks_cache
from shopfront.services.legacy_tokens import decode_legacy_token

logger = logging.getLogger(__name__)

SHARED_SECRET_ALGORITHMS = ["HS256"]
REMOTE_KEY_ALGORITHMS = ["RS256", "ES256"]


@dataclass(frozen=True)
class SharedSecretVerified:
    claims: Dict[str, Any]
    trust: str = field(default="shared_secret", init=False)


@dataclass(frozen=True)
class RemoteKeyVerified:
    claims: Dict[str, Any]
    trust: str = field(default="remote_key", init=False)


@dataclass(frozen=True)
class LegacyVerified:
    claims: Dict[str, Any]
    trust: str = field(default="legacy", init=False)


@dataclass(frozen=True)
class VerificationFailed:
    reason: str
    # Set when the key set could not be fetched: the failure is ours, not the caller's.
    key_set_unavailable: bool = False


VerificationOutcome = Union[SharedSecretVerified, RemoteKeyVerified, LegacyVerified, VerificationFailed]
ExternalVerified = (SharedSecretVerified, RemoteKeyVerified)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class TokenVerifier:
    """Verify bearer tokens against the configured trust material.

    Order: identity provider shared secret, then the provider's published key
    set, then (only with ``allow_legacy``) the local legacy secret. The legacy
    secret never doubles as provider material.
    """

    def __init__(
        self,
        *,
        shared_secret: Optional[str] = None,
        provider_url: Optional[str] = None,
        audience: Optional[str] = None,
        jwks_cache: Optional[JwksCache] = None,
        allow_legacy: bool = False,
        legacy_secret: Optional[str] = None,
    ) -> None:
        if allow_legacy and legacy_secret and shared_secret and legacy_secret == shared_secret:
            raise ValueError("Legacy secret must differ from the identity provider secret")

        self.shared_secret = shared_secret or None
        self.provider_url = (provider_url or "").rstrip("/") or None
        self.audience = audience
        self.jwks_cache = jwks_cache or default_jwks_cache
        self.allow_legacy = bool(allow_legacy and legacy_secret)
        self._legacy_secret = legacy_secret if self.allow_legacy else None

    @classmethod
    def from_config(cls, jwks_cache: Optional[JwksCache] = None) -> "TokenVerifier":
        return cls(
            shared_secret=config.AUTH_JWT_SECRET,
            provider_url=config.AUTH_PROVIDER_URL,
            audience=config.AUTH_JWT_AUDIENCE,
            jwks_cache=jwks_cache,
            allow_legacy=config.ALLOW_LEGACY_JWT,
            legacy_secret=config.LEGACY_JWT_SECRET,
        )

    @property
    def issuer(self) -> Optional[str]:
        if not self.provider_url:
            return None
        return f"{self.provider_url}/auth/v1"

    @property
    def jwks_url(self) -> Optional[str]:
        if not self.issuer:
            return None
        return f"{self.issuer}/.well-known/jwks.json"

    @property
    def has_material(self) -> bool:
        return bool(self.shared_secret or self.provider_url or self.allow_legacy)

    def _decode_options(self) -> Dict[str, Any]:
        return {"verify_aud": self.audience is not None}

    def verify(self, token: str) -> VerificationOutcome:
        if not token:
            return VerificationFailed("Access token is required")
        if not self.has_material:
            logger.warning("Token rejected: no verification material configured")
            return VerificationFailed("No verification material configured")

        if self.shared_secret:
            claims = self._verify_shared_secret(token)
            if claims is not None:
                return SharedSecretVerified(claims)

        key_set_unavailable = False
        if self.jwks_url:
            try:
                claims = self._verify_remote_key(token)
            except JwksFetchError as exc:
                logger.error("Key set unavailable: %s", exc)
                claims = None
                key_set_unavailable = True
            if claims is not None:
                return RemoteKeyVerified(claims)

        if self.allow_legacy:
            claims = self._verify_legacy(token)
            if claims is not None:
                return LegacyVerified(claims)

        return VerificationFailed("Invalid token", key_set_unavailable=key_set_unavailable)

    def _verify_shared_secret(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return jwt.decode(
                token,
                self.shared_secret,
                algorithms=SHARED_SECRET_ALGORITHMS,
                audience=self.audience,
                options=self._decode_options(),
            )
        except JWTError as exc:
            logger.debug("Shared secret verification failed: %s", exc)
            return None

    def _select_key(self, key_set: Dict[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
        keys = key_set.get("keys") or []
        if kid is None:
            return keys[0] if len(keys) == 1 else None
        for key in keys:
            if key.get("kid") == kid:
                return key
        return None

    def _verify_remote_key(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            return None
        if header.get("alg") not in REMOTE_KEY_ALGORITHMS:
            return None

        kid = header.get("kid")
        key = self._select_key(self.jwks_cache.get(self.jwks_url), kid)
        if key is None and kid is not None:
            # Unknown kid: the provider may have rotated keys since the last fetch.
            key = self._select_key(self.jwks_cache.refresh(self.jwks_url), kid)
        if key is None:
            logger.debug("No key in key set matches kid=%s", kid)
            return None

        try:
            return jwt.decode(
                token,
                key,
                algorithms=REMOTE_KEY_ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options=self._decode_options(),
            )
        except (JWTError, JWKError) as exc:
            logger.debug("Remote key verification failed: %s", exc)
            return None

    def _verify_legacy(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return decode_legacy_token(token, self._legacy_secret)
        except JWTError as exc:
            logger.debug("Legacy verification failed: %s", exc)
            return None

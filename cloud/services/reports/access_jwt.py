from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional

import jwt
import requests

from console_config import AccessConfig

logger = logging.getLogger(__name__)

PROTECTED_PREFIXES = ("/api/", "/reports/", "/routes/")


class AccessVerifier:
    """Verifies Cloudflare Access assertions against the team's JWKS."""

    def __init__(self, config: AccessConfig, timeout: float = 5.0):
        self.config = config
        self.timeout = timeout
        self._keys: Dict[str, Any] = {}
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def requires_token(self, path: str) -> bool:
        if not self.enabled or path in self.config.bypass_paths:
            return False
        return path.startswith(PROTECTED_PREFIXES)

    def fetch_keys(self, force: bool = False) -> Dict[str, Any]:
        if not self.enabled:
            return {}
        now = time.time()
        with self._lock:
            if self._keys and not force and now - self._fetched_at < self.config.jwks_ttl:
                return self._keys

        try:
            resp = requests.get(self.config.certs_url, timeout=self.timeout)
            if resp.status_code != 200:
                logger.warning(f"Access certs fetch failed ({resp.status_code})")
                return self._keys
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f"Access certs fetch failed: {exc}")
            return self._keys

        keys: Dict[str, Any] = {}
        for jwk in payload.get("keys", []):
            kid = jwk.get("kid")
            if not kid:
                continue
            try:
                keys[kid] = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
            except (jwt.InvalidKeyError, ValueError, TypeError) as exc:
                logger.warning(f"Ignoring access key {kid}: {exc}")

        if keys:
            with self._lock:
                self._keys = keys
                self._fetched_at = now
            return keys
        return self._keys

    def verify(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError:
            return None
        kid = header.get("kid")
        if not kid:
            return None
        key = self.fetch_keys().get(kid)
        if not key:
            key = self.fetch_keys(force=True).get(kid)
        if not key:
            return None

        decode_args: Dict[str, Any] = {
            "key": key,
            "algorithms": ["RS256"],
            "audience": self.config.audience,
            "options": {"require": ["exp", "iat", "aud"]},
            "leeway": self.config.leeway,
        }
        if self.config.issuer:
            decode_args["issuer"] = self.config.issuer
        try:
            return jwt.decode(token, **decode_args)
        except jwt.PyJWTError as exc:
            logger.info(f"Rejected access token: {exc}")
            return None


def extract_token(headers, header_name: str) -> str:
    token = headers.get(header_name, "").strip()
    if not token:
        auth = headers.get("Authorization", "")
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
    return token

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _normalize_access_url(value: str) -> str:
    value = value.strip()
    if not value:
        return ""
    if value.startswith("http://") or value.startswith("https://"):
        return value.rstrip("/")
    return f"https://{value.rstrip('/')}"


def _read_secret_file(path: str) -> str:
    if not path:
        return ""
    try:
        with open(path, "r") as handle:
            return handle.read().strip()
    except OSError as exc:
        logger.warning(f"Failed to read secret file {path}: {exc}")
        return ""


def _load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except Exception as exc:
        logger.warning(f"Invalid reports timezone '{name}': {exc}")
        return ZoneInfo("UTC")


@dataclass(frozen=True)
class AccessConfig:
    audience: str = ""
    certs_url: str = ""
    issuer: str = ""
    jwt_header: str = "Cf-Access-Jwt-Assertion"
    jwks_ttl: int = 3600
    leeway: int = 60
    bypass_paths: FrozenSet[str] = frozenset({"/api/health"})

    @property
    def enabled(self) -> bool:
        return bool(self.audience and self.certs_url)


@dataclass(frozen=True)
class ConsoleConfig:
    backend_url: str = "http://traccar:8082"
    backend_timeout: float = 10.0
    backend_token: str = ""
    reports_timezone: ZoneInfo = field(default_factory=lambda: ZoneInfo("UTC"))
    scheduled_reports_path: str = "/reports/scheduled"
    log_level: str = "INFO"
    access: AccessConfig = field(default_factory=AccessConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ConsoleConfig":
        env = os.environ if environ is None else environ

        backend_token = env.get("FLEET_BACKEND_TOKEN", "").strip()
        if not backend_token:
            backend_token = _read_secret_file(env.get("FLEET_BACKEND_TOKEN_FILE", "").strip())

        team_domain = env.get("FLEET_ACCESS_TEAM_DOMAIN", "").strip()
        certs_url = _normalize_access_url(env.get("FLEET_ACCESS_CERTS_URL", ""))
        if not certs_url and team_domain:
            certs_url = f"{_normalize_access_url(team_domain)}/cdn-cgi/access/certs"
        issuer = _normalize_access_url(env.get("FLEET_ACCESS_ISSUER", "") or team_domain)
        bypass = frozenset(
            item.strip()
            for item in env.get("FLEET_ACCESS_BYPASS_PATHS", "/api/health").split(",")
            if item.strip()
        )
        access = AccessConfig(
            audience=env.get("FLEET_ACCESS_AUD", "").strip(),
            certs_url=certs_url,
            issuer=issuer,
            jwt_header=(
                env.get("FLEET_ACCESS_JWT_HEADER", "Cf-Access-Jwt-Assertion").strip()
                or "Cf-Access-Jwt-Assertion"
            ),
            jwks_ttl=int(env.get("FLEET_ACCESS_JWKS_TTL") or "3600"),
            leeway=int(env.get("FLEET_ACCESS_JWT_LEEWAY") or "60"),
            bypass_paths=bypass,
        )

        return cls(
            backend_url=env.get("FLEET_BACKEND_URL", "http://traccar:8082").strip().rstrip("/"),
            backend_timeout=float(env.get("FLEET_BACKEND_TIMEOUT", "10")),
            backend_token=backend_token,
            reports_timezone=_load_timezone(env.get("FLEET_REPORTS_TIMEZONE", "UTC").strip()),
            scheduled_reports_path=(
                env.get("FLEET_SCHEDULED_REPORTS_PATH", "/reports/scheduled").strip()
                or "/reports/scheduled"
            ),
            log_level=env.get("LOG_LEVEL", "INFO"),
            access=access,
        )


def configure_logging(config: ConsoleConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

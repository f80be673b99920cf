"""Dynamic CORS allowlist.

Origins are trusted in two tiers: a static list of operational origins that
never changes at runtime, and the serving domains declared by active
chatboxes. The second tier is read from the database at most once per TTL
window and cached for the whole process.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..config import Config
from ..core.database import SessionLocal
from ..core.db_models import DBChatbox
from ..core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 5 * 60

_SCHEMES = ("http://", "https://")


def dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def normalize_origin(value: str) -> str:
    """Reduce an origin or domain URL to a comparable host string.

    Strips trailing slashes and the http(s) scheme, lowercases the rest.
    Ports, paths and query strings are left untouched, so
    ``https://shop.example.com:8443`` only matches itself.
    """
    normalized = value.strip().rstrip("/")
    for scheme in _SCHEMES:
        if normalized.lower().startswith(scheme):
            normalized = normalized[len(scheme):]
            break
    return normalized.lower()


def hosts_match(left: str, right: str) -> bool:
    """Equal hosts, or the same host with a ``www.`` prefix on either side."""
    return left == right or left == f"www.{right}" or right == f"www.{left}"


def domain_to_origin(domain_url: Any) -> Optional[str]:
    """Turn a stored ``domain_url`` into an origin, or None if unusable."""
    if not isinstance(domain_url, str):
        return None
    value = domain_url.strip()
    if not value:
        return None
    if not value.lower().startswith(_SCHEMES):
        return f"https://{value}"
    return value


class ChatboxDomainStore:
    """Reads the serving domains of active chatboxes."""

    def __init__(self, session_factory: sessionmaker | Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def fetch_domain_urls(self) -> list[Any]:
        db = self._session_factory()
        try:
            rows = (
                db.query(DBChatbox.domain_url)
                .filter(
                    DBChatbox.domain_url.is_not(None),
                    DBChatbox.domain_url != "",
                    DBChatbox.status == "active",
                )
                .all()
            )
            return [row[0] for row in rows]
        finally:
            db.close()


@dataclass(frozen=True)
class AllowedOriginSet:
    entries: tuple[str, ...]
    dynamic_entries: tuple[str, ...]
    last_refreshed_at: Optional[float]


class OriginResolver:
    def __init__(
        self,
        domain_store: Any = None,
        *,
        static_origins: Optional[Callable[[], list[str]]] = None,
        primary_domain: Optional[str] = None,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        retain_dynamic_on_failure: bool = False,
    ) -> None:
        self._domain_store = domain_store if domain_store is not None else ChatboxDomainStore()
        self._static_origins = static_origins or Config.static_origins
        self._primary_domain = (primary_domain or Config.CORS_PRIMARY_DOMAIN).lower()
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._retain_dynamic_on_failure = retain_dynamic_on_failure
        self._refresh_lock = Lock()
        # Replaced as a whole; readers never observe a half-built snapshot.
        self._snapshot = AllowedOriginSet(entries=(), dynamic_entries=(), last_refreshed_at=None)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def last_refreshed_at(self) -> Optional[float]:
        return self._snapshot.last_refreshed_at

    def _is_fresh(self, snapshot: AllowedOriginSet) -> bool:
        if not snapshot.entries or snapshot.last_refreshed_at is None:
            return False
        return (self._clock() - snapshot.last_refreshed_at) < self._ttl_seconds

    def _fetch_dynamic_origins(self) -> list[str]:
        origins = []
        for domain_url in self._domain_store.fetch_domain_urls():
            origin = domain_to_origin(domain_url)
            if origin:
                origins.append(origin)
        return dedupe(origins)

    def get_allowed_origins(self) -> list[str]:
        snapshot = self._snapshot
        if self._is_fresh(snapshot):
            return list(snapshot.entries)

        with self._refresh_lock:
            # Another caller may have repopulated while we waited.
            snapshot = self._snapshot
            if self._is_fresh(snapshot):
                return list(snapshot.entries)

            static_origins = self._static_origins()
            try:
                dynamic_origins = self._fetch_dynamic_origins()
            except Exception as exc:
                logger.warning(
                    "Unable to load chatbox domains, using static CORS origins only.",
                    extra={"error": str(exc)},
                )
                if self._retain_dynamic_on_failure:
                    dynamic_origins = list(snapshot.dynamic_entries)
                else:
                    dynamic_origins = []

            entries = tuple(dedupe([*static_origins, *dynamic_origins]))
            self._snapshot = AllowedOriginSet(
                entries=entries,
                dynamic_entries=tuple(dynamic_origins),
                last_refreshed_at=self._clock(),
            )
            logger.info(
                "Updated CORS allowed origins.",
                extra={"count": len(entries), "dynamic_count": len(dynamic_origins)},
            )
            return list(entries)

    def refresh(self) -> list[str]:
        """Expire the cache and repopulate it immediately."""
        with self._refresh_lock:
            current = self._snapshot
            self._snapshot = AllowedOriginSet(
                entries=current.entries,
                dynamic_entries=current.dynamic_entries,
                last_refreshed_at=None,
            )
        return self.get_allowed_origins()

    def is_static_origin(self, origin: str) -> bool:
        if origin in self._static_origins():
            return True
        if origin.endswith(f".{self._primary_domain}"):
            return True
        return origin == f"https://{self._primary_domain}"

    def is_origin_allowed(self, origin: str) -> bool:
        if not origin:
            return False
        if self.is_static_origin(origin):
            return True

        candidate = normalize_origin(origin)
        for allowed in self.get_allowed_origins():
            if not allowed.lower().startswith(_SCHEMES):
                continue
            if hosts_match(candidate, normalize_origin(allowed)):
                return True
        return False

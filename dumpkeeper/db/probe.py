from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ..errors import CapabilityDetectionError
from ..models import ServerCapabilities, Version
from .session import QuerySession, SessionFactory

logger = logging.getLogger(__name__)

# mysqldump --events is available from this server version on
EVENTS_MIN_VERSION: Version = (5, 1, 6)

GTID_ENABLED_TOKEN = "ON"

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


def parse_version(raw: Any) -> Version:
    """
    Extract (major, minor, patch) from a server version string.

    Vendor suffixes are ignored: "8.0.36-0ubuntu0.22.04.1" -> (8, 0, 36),
    "10.11.6-MariaDB" -> (10, 11, 6).

    Raises:
        CapabilityDetectionError: If no dotted X.Y.Z version is present
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise CapabilityDetectionError(f"Unexpected server version value: {raw!r}")
    match = _VERSION_RE.search(raw)
    if match is None:
        raise CapabilityDetectionError(f"Cannot parse server version {raw!r}")
    major, minor, patch = (int(part) for part in match.groups())
    return (major, minor, patch)


def detect_version(session: QuerySession) -> Version:
    try:
        raw = session.scalar("SELECT VERSION()")
    except SQLAlchemyError as exc:
        raise CapabilityDetectionError(f"Server version query failed: {exc}") from exc
    return parse_version(raw)


def detect_gtid_mode(session: QuerySession) -> bool:
    """
    Return True only if the global GTID mode is exactly "ON".

    Transitional modes (OFF_PERMISSIVE, ON_PERMISSIVE) and anything else
    count as disabled.
    """
    try:
        raw = session.scalar("SELECT @@GLOBAL.gtid_mode")
    except SQLAlchemyError as exc:
        raise CapabilityDetectionError(f"GTID mode query failed: {exc}") from exc
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw == GTID_ENABLED_TOKEN


def probe_capabilities(session_factory: SessionFactory) -> ServerCapabilities:
    """
    Detect the server capabilities that decide optional dump flags.

    Detection failures (including failure to connect) are logged and fall
    back to the conservative choice for the affected capability; they never
    abort the run.
    """
    try:
        with session_factory() as session:
            version = _detect_or_none(detect_version, session, "server version")
            gtid_enabled = _detect_or_none(detect_gtid_mode, session, "GTID mode")
    except SQLAlchemyError as exc:
        logger.warning("Could not connect to detect server capabilities: %s", exc)
        return ServerCapabilities.conservative()

    # undetermined counts as disabled
    gtid_enabled = bool(gtid_enabled)

    supports_events = version is not None and version >= EVENTS_MIN_VERSION
    if version is not None and not supports_events:
        logger.info(
            "Server version %s is too old for --events",
            ".".join(str(part) for part in version),
        )

    return ServerCapabilities(
        version=version,
        supports_event_dump=supports_events,
        gtid_mode_enabled=gtid_enabled,
    )


def capability_flags(capabilities: ServerCapabilities) -> list[str]:
    """Optional dump client flags implied by the server capabilities."""
    flags: list[str] = []
    if capabilities.supports_event_dump:
        flags.append("--events")
    if capabilities.gtid_mode_enabled:
        # keep the dump from overwriting the restore target's gtid_purged
        flags.append("--set-gtid-purged=OFF")
    return flags


def _detect_or_none(detect, session: QuerySession, what: str):
    try:
        return detect(session)
    except CapabilityDetectionError as exc:
        logger.warning("Could not determine the %s: %s", what, exc)
        return None

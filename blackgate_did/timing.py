"""
Timing Engine - issued-at / not-before / expiry for presentations

A presentation must not be valid before the credential it carries was issued,
but a missing or malformed issuance date never blocks presentation creation:
nbf falls back to "now" and the fallback is reported as a warning.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from .errors import InvalidTiming

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_HOURS = 24

ISSUANCE_DATE_UNPARSEABLE = "issuance_date_unparseable"
ISSUANCE_DATE_IN_FUTURE = "issuance_date_in_future"


@dataclass(frozen=True)
class Timing:
    iat: int
    nbf: int
    expiration_date: str
    warnings: Tuple[str, ...] = ()

    @property
    def exp(self) -> int:
        return int(parse_timestamp(self.expiration_date).timestamp())


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime

    Naive values are taken as UTC. Returns None for anything unparseable.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(epoch_seconds: float) -> str:
    """Unix seconds -> 2024-01-01T00:00:00.000Z"""
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def compute_timing(
    credential: Optional[Mapping[str, Any]],
    expiration_hours: float = DEFAULT_EXPIRATION_HOURS,
    now: Optional[float] = None,
) -> Timing:
    """
    Compute iat / nbf / expirationDate for a presentation of ``credential``

    Args:
        credential: The unwrapped credential (its ``issuanceDate`` is read)
        expiration_hours: Validity window from now, must be positive
        now: Unix time override (defaults to the current time)

    Returns:
        Timing with nbf <= iat < expiration

    Raises:
        InvalidTiming: expiration_hours is not a positive number
    """
    if isinstance(expiration_hours, bool) or not isinstance(expiration_hours, (int, float)) \
            or not expiration_hours > 0:
        raise InvalidTiming(f"expirationHours must be a positive number, got {expiration_hours!r}")

    current = time.time() if now is None else now
    iat = int(current)
    nbf = iat
    warnings = []

    issuance_date = credential.get("issuanceDate") if credential else None
    if issuance_date is not None:
        issued = parse_timestamp(issuance_date)
        if issued is None:
            logger.warning("Invalid issuance date %r, using current time", issuance_date)
            warnings.append(ISSUANCE_DATE_UNPARSEABLE)
        elif int(issued.timestamp()) > iat:
            logger.warning("Issuance date %s is in the future, using current time", issuance_date)
            warnings.append(ISSUANCE_DATE_IN_FUTURE)
        else:
            nbf = int(issued.timestamp())

    window = expiration_hours * 3600
    if window < 1:
        raise InvalidTiming("expirationHours must cover at least one second")
    try:
        expiration_date = format_timestamp(iat + window)
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidTiming(f"expirationHours out of range: {expiration_hours!r}") from e
    return Timing(iat=iat, nbf=nbf, expiration_date=expiration_date, warnings=tuple(warnings))

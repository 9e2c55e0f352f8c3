"""
core/duration.py -- Duration string parsing for configuration values.

Token lifetimes are configured as compact strings ("15m", "7d") and converted
to integer seconds once at startup. The grammar is fixed:

    ^(\\d+)([smhd])$   s=1, m=60, h=3600, d=86400

Anything that does not match (empty, "15 min", "1w", "-5m") falls back to the
caller-supplied default instead of failing. A typo in a lifetime setting must
not take the login endpoint down.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import re

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}

# Documented fallbacks for the three lifetimes the service consumes.
DEFAULT_ACCESS_SECONDS = 15 * 60
DEFAULT_REFRESH_SECONDS = 7 * 24 * 60 * 60
DEFAULT_RESET_SECONDS = 60 * 60


def parse_duration(value: str | None, default: int) -> int:
    """Convert a duration string to seconds, or return default if unparsable."""
    if not value:
        return default
    match = _DURATION_RE.match(value.strip())
    if match is None:
        return default
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]

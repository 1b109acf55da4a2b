"""Version parsing and ordering shared by formula validation and constraint checks."""

import re
from typing import Optional

from packaging.version import InvalidVersion, Version

VERSION_PATTERN = re.compile(r"\b(\d+(?:\.\d+)*)\b")


def parse_version(value: str) -> Version:
    """Parse a version string; raises InvalidVersion when it has no ordering."""
    return Version(value.strip())


def is_valid_version(value: Optional[str]) -> bool:
    if not value or not value.strip():
        return False
    try:
        parse_version(value)
    except InvalidVersion:
        return False
    return True


def version_at_least(found: str, required: str) -> bool:
    """Inclusive lower-bound comparison: found >= required."""
    return parse_version(found) >= parse_version(required)


def extract_version(output: str) -> Optional[str]:
    """Pull the first dotted version out of tool output such as 'Xcode 10.2.1'."""
    match = VERSION_PATTERN.search(output or "")
    if not match:
        return None
    candidate = match.group(1)
    return candidate if is_valid_version(candidate) else None

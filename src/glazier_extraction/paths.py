import glob
import os
import re
from typing import Iterable, List

from .logging import get_logger

log = get_logger("paths")


def expand_abs(path: str) -> str:
    """Expand env vars and ~ then return absolute path."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path or "")))


def slugify(value: str, *, default: str = "document") -> str:
    """Filesystem-safe, lowercase slug used for temp and archive folder names."""
    if not isinstance(value, str):
        return default
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", value.strip())
    cleaned = re.sub(r"-{2,}", "-", cleaned)
    cleaned = cleaned.strip("-_.")
    return cleaned.lower() or default


def expand_input_patterns(patterns: Iterable[str]) -> List[str]:
    """Resolve CLI inputs into an ordered, de-duplicated list of absolute paths.

    Each entry may hold several comma-separated parts; parts containing glob
    characters are expanded (sorted), plain paths must exist. Missing paths
    are warned about and skipped. First mention decides the position.
    """
    resolved: List[str] = []
    seen = set()
    for pattern in patterns:
        for part in (pattern or "").split(","):
            trimmed = part.strip()
            if not trimmed:
                continue
            if any(ch in trimmed for ch in "*?["):
                matches = sorted(glob.glob(os.path.expanduser(trimmed)))
                if not matches:
                    log.warning(f"Pattern matched no files: {trimmed}")
                candidates = matches
            else:
                candidates = [trimmed]
            for candidate in candidates:
                path = expand_abs(candidate)
                if not os.path.isfile(path):
                    log.warning(f"File not found: {candidate}")
                    continue
                if path in seen:
                    log.info(f"Skipping repeated input: {candidate}")
                    continue
                seen.add(path)
                resolved.append(path)
    return resolved

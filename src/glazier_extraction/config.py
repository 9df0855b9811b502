import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")


DEFAULT_MODEL = "google/gemini-2.5-flash"
DEFAULT_SECRETS_PATH = "~/.openclaw/secrets/openrouter.json"
API_KEY_NAME = "OPENROUTER_API_KEY"

# USD per million tokens (input, output) as billed by OpenRouter.
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "google/gemini-2.5-flash": (0.15, 0.60),
    "google/gemini-2.5-pro": (1.25, 10.00),
    "anthropic/claude-sonnet-4": (3.00, 15.00),
}

MODEL_ALIASES: Dict[str, str] = {
    "gemini-flash": "google/gemini-2.5-flash",
    "gemini-pro": "google/gemini-2.5-pro",
    "claude-sonnet": "anthropic/claude-sonnet-4",
}


class ConfigurationError(Exception):
    """Raised for problems that must abort a run before any file is touched."""


@dataclass(frozen=True)
class Pricing:
    input_per_million: float
    output_per_million: float


@dataclass(frozen=True)
class ExtractorSettings:
    """Tunables for one extraction run."""

    model: str = DEFAULT_MODEL
    dpi: int = 150
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    page_delay_seconds: float = 0.2
    request_timeout_seconds: int = 180
    rasterize_timeout_seconds: int = 300
    temperature: float = 0.1
    max_tokens: int = 4096
    pricing: Pricing = field(default_factory=lambda: Pricing(*MODEL_PRICING[DEFAULT_MODEL]))


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    repository-level config files like `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return the nearest .env as a mapping; does not mutate the environment."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _read_secrets_file(path: str) -> Optional[str]:
    full = os.path.expanduser(path)
    if not os.path.isfile(full):
        log.debug(f"No secrets file at {full}")
        return None
    try:
        with open(full, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning(f"Failed reading secrets file {full}: {e}")
        return None
    if not isinstance(data, dict):
        return None
    v = data.get("api_key")
    return v.strip() if isinstance(v, str) and v.strip() else None


def resolve_api_key(dotenv_dir: str) -> Optional[str]:
    """Return the OpenRouter API key, first non-empty source wins.

    Order: nearest .env, then the JSON secrets file (GLAZIER_SECRETS_FILE or
    ~/.openclaw/secrets/openrouter.json), then the process environment.
    """
    env = _read_dotenv(dotenv_dir)
    v = (env.get(API_KEY_NAME) or "").strip()
    if v:
        log.info("Loaded OPENROUTER_API_KEY from .env file")
        return v

    secrets_path = os.environ.get("GLAZIER_SECRETS_FILE") or DEFAULT_SECRETS_PATH
    v = _read_secrets_file(secrets_path) or ""
    if v:
        log.info("Loaded OpenRouter key from secrets file")
        return v

    v = (os.environ.get(API_KEY_NAME) or "").strip()
    if v:
        log.info("Using OPENROUTER_API_KEY from environment")
        return v

    log.debug("OPENROUTER_API_KEY not found in .env, secrets file, or environment")
    return None


def resolve_model(name: Optional[str]) -> str:
    """Map a short alias (gemini-flash, ...) to its model id; ids pass through."""
    candidate = (name or os.environ.get("OPENROUTER_MODEL") or DEFAULT_MODEL).strip()
    return MODEL_ALIASES.get(candidate, candidate)


def resolve_pricing(
    model: str,
    *,
    price_in: Optional[float] = None,
    price_out: Optional[float] = None,
) -> Pricing:
    """Return per-million pricing for model; explicit prices override the table."""
    table = MODEL_PRICING.get(model)
    if price_in is not None and price_out is not None:
        return Pricing(float(price_in), float(price_out))
    if table is None:
        raise ConfigurationError(
            f"No pricing known for model '{model}'. Pass --price-in and --price-out."
        )
    return Pricing(
        float(price_in) if price_in is not None else table[0],
        float(price_out) if price_out is not None else table[1],
    )

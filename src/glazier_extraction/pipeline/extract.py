from __future__ import annotations

import base64
import json
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from ..domain.models import Item, PageImage, PageOutcome, PageResult, TokenUsage
from ..domain.normalize import coerce_item
from ..logging import get_logger
from ..paths import slugify

LOG = get_logger("pipeline-extract")


EXTRACTION_PROMPT = """You are extracting glazier items from ONE page of a construction document
(specifications, schedules or architectural drawings).

Extract EVERY glass item on this page:
- Glass doors (all kinds: clear, reeded, frosted, not only frameless)
- Shower screens (front-only, corner, etc.)
- Mirrors (wall, cabinet, decorative)
- Glass balustrades (internal patch fitted, external spigot fitted)
- Glass panels and partitions

For each item return:
- floor: "Basement" | "Ground Floor" | "First Floor"
- room: full room name (e.g. "WC", "B01 Bed Ensuite", "Powder Room")
- type: "Glass Door" | "Shower Screen" | "Mirror" | "Glass Balustrade" | "Glass Panel"
- code: product code if shown (GL01, GL02, MIR01, MIR02, GB07, ...)
- specs: glass specification (e.g. "10mm Clear Toughened", "6mm Grade A Safety Mirror")
- dimensions: in mm ("W x H mm", "W x D x H mm" for corners, "Ø D mm" for round)
- quantity: integer; look for QTY notations (QTY:2, QTY:48 means 48 tiles), default 1
- notes: installation notes (Front Only, Corner, Patch Fitted, ...) or null

Rules:
- Room codes: B01 = Bedroom 1, ENS = Ensuite, WIR = Walk-in Robe.
- Check tables, schedules and dimension annotations next to glass elements.
- Skip door hardware, fixtures and anything that is not glass.

Return ONLY a JSON array, no markdown and no explanation:
[{"floor": "...", "room": "...", "type": "...", "code": "...", "specs": "...", "dimensions": "...", "quantity": 1, "notes": null}]

If the page has no glazier items, return []"""


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    """Return the inner JSON when wrapped in ``` or ```json fences.

    A reply cut off before its closing fence keeps everything after the
    opening fence.
    """
    s = (text or "").strip()
    m = _FENCE_RE.search(s)
    if m:
        return m.group(1).strip()
    return _OPEN_FENCE_RE.sub("", s).strip()


def _salvage_objects(text: str) -> List[Any]:
    """Collect every complete JSON object from a truncated reply."""
    decoder = json.JSONDecoder()
    found: List[Any] = []
    idx = text.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(text, idx)
        except ValueError:
            idx = text.find("{", idx + 1)
            continue
        found.append(obj)
        idx = text.find("{", end)
    return found


def parse_items_response(text: Optional[str]) -> List[Item]:
    """Parse a model reply into Items; unparseable replies yield []."""
    if not text or not text.strip():
        return []
    body = strip_code_fence(text)
    try:
        data = json.loads(body)
    except ValueError:
        salvaged = [it for it in (coerce_item(o) for o in _salvage_objects(body)) if it]
        if salvaged:
            LOG.warning(f"Recovered {len(salvaged)} complete item(s) from a malformed reply")
        else:
            LOG.warning(f"Could not parse reply as JSON (first 200 chars: {body[:200]!r})")
        return salvaged

    if isinstance(data, dict) and isinstance(data.get("items"), list):
        data = data["items"]
    if not isinstance(data, list):
        LOG.warning(f"Reply JSON is a {type(data).__name__}, expected an array")
        return []
    return [it for it in (coerce_item(entry) for entry in data) if it]


def encode_image_data_url(path: str, mime: str = "image/png") -> str:
    with open(path, "rb") as f:
        data = f.read()
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


@dataclass(frozen=True)
class OpenRouterConfig:
    """Configuration set required to talk to the OpenRouter API."""

    api_key: str
    model_name: str
    temperature: float = 0.1
    max_tokens: int = 4096
    timeout_seconds: int = 180
    referer: str = "https://github.com/glazier-extraction"
    title: str = "Glazier Extractor"


@dataclass
class ChatReply:
    content: str
    usage: TokenUsage


class OpenRouterError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
        usage: Optional[TokenUsage] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.usage = usage


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def _usage_from_body(resp: requests.Response) -> Optional[TokenUsage]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("usage"), dict):
        return TokenUsage.from_usage(body["usage"])
    return None


class OpenRouterClient:
    """Thin wrapper around OpenRouter chat completions with helpful errors."""

    ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, config: OpenRouterConfig, *, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def chat(self, messages: List[Dict[str, Any]]) -> ChatReply:
        payload = {
            "model": self.config.model_name,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.referer,
            "X-Title": self.config.title,
        }
        try:
            resp = self.session.post(
                self.ENDPOINT,
                headers=headers,
                json=payload,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise OpenRouterError(f"request failed: {exc}", retryable=True) from exc

        if resp.status_code >= 400:
            raise OpenRouterError(
                f"HTTP {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code,
                retryable=_is_retryable_status(resp.status_code),
                usage=_usage_from_body(resp),
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise OpenRouterError("response body is not JSON", status_code=resp.status_code, retryable=True) from exc
        if not isinstance(body, dict):
            raise OpenRouterError("response body is not a JSON object", status_code=resp.status_code, retryable=True)

        usage = TokenUsage.from_usage(body.get("usage"))
        choices = body.get("choices") or []
        message = (choices[0].get("message") if choices and isinstance(choices[0], dict) else None) or {}
        content = message.get("content") if isinstance(message, dict) else None
        return ChatReply(content=content if isinstance(content, str) else "", usage=usage)


class PageExtractor:
    """Sends one page image per call and applies the retry budget."""

    def __init__(
        self,
        client: OpenRouterClient,
        *,
        prompt: str = EXTRACTION_PROMPT,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.prompt = prompt
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.sleep = sleep

    def _messages(self, data_url: str) -> List[Dict[str, Any]]:
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self.prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        ]

    def extract(self, page: PageImage) -> PageResult:
        try:
            data_url = encode_image_data_url(page.path)
        except OSError as exc:
            LOG.error(f"Cannot read page image {page.path}: {exc}")
            return PageResult(items=[], tokens=TokenUsage(), outcome=PageOutcome.FAILED_EXHAUSTED, error=str(exc))

        messages = self._messages(data_url)
        last_usage = TokenUsage()
        last_error: Optional[str] = None
        attempt = 0
        while attempt < self.max_retries:
            attempt += 1
            try:
                reply = self.client.chat(messages)
            except OpenRouterError as exc:
                if exc.usage is not None:
                    last_usage = exc.usage
                last_error = str(exc)
                if not exc.retryable:
                    LOG.error(f"Page {page.page_number}: non-retryable API error: {exc}")
                    break
                if attempt < self.max_retries:
                    delay = self.retry_delay * attempt
                    if exc.status_code == 429:
                        LOG.info(f"Page {page.page_number}: rate limited, waiting {delay:.1f}s")
                    else:
                        LOG.info(f"Page {page.page_number}: attempt {attempt} failed ({exc}), retrying in {delay:.1f}s")
                    self.sleep(delay)
                continue

            items = parse_items_response(reply.content)
            outcome = PageOutcome.SUCCEEDED if items else PageOutcome.EMPTY
            LOG.debug(f"Page {page.page_number}: tokens {reply.usage.input} in / {reply.usage.output} out")
            return PageResult(
                items=items,
                tokens=reply.usage,
                outcome=outcome,
                attempts=attempt,
                raw_content=reply.content,
            )

        LOG.warning(f"Page {page.page_number}: giving up after {attempt} attempt(s): {last_error}")
        return PageResult(
            items=[],
            tokens=last_usage,
            outcome=PageOutcome.FAILED_EXHAUSTED,
            attempts=attempt,
            error=last_error,
        )


class ResponseStore:
    """Persist raw page replies per source file for later inspection."""

    def __init__(self, base_dir: str, *, source_name: str) -> None:
        self.run_dir: Optional[str] = None
        try:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
            folder = f"{stamp}_{slugify(source_name)}"
            self.run_dir = os.path.join(os.path.abspath(base_dir), folder)
            os.makedirs(self.run_dir, exist_ok=True)
        except OSError as exc:
            LOG.warning("Response storage disabled: %s", exc)
            self.run_dir = None

    def write(self, page_number: int, result: PageResult) -> Optional[str]:
        if not self.run_dir:
            return None
        path = os.path.join(self.run_dir, f"page-{page_number:03d}.json")
        payload = {
            "page": page_number,
            "outcome": result.outcome.value,
            "attempts": result.attempts,
            "error": result.error,
            "tokens": {"input": result.tokens.input, "output": result.tokens.output},
            "raw_content": result.raw_content,
        }
        try:
            with open(path, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
        except OSError as exc:
            LOG.warning("Failed to persist page %s response to %s: %s", page_number, path, exc)
            return None
        LOG.debug("Stored page %s response at %s", page_number, path)
        return path

import json
import os
import sys

import requests

sys.path.insert(0, os.path.abspath("src"))

from glazier_extraction.domain.models import PageImage, PageOutcome, TokenUsage
from glazier_extraction.pipeline.extract import (
    OpenRouterClient,
    OpenRouterConfig,
    PageExtractor,
    parse_items_response,
    strip_code_fence,
)


class _FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = body if isinstance(body, str) else json.dumps(body)

    def json(self):
        if isinstance(self._body, str):
            return json.loads(self._body)
        return self._body


class _FakeSession:
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def _ok(content, usage=None):
    body = {"choices": [{"message": {"content": content}}]}
    if usage is not None:
        body["usage"] = usage
    return _FakeResponse(200, body)


def _extractor(session, sleeps, **kw):
    client = OpenRouterClient(OpenRouterConfig(api_key="sk-test", model_name="google/gemini-2.5-flash"), session=session)
    return PageExtractor(client, retry_delay=2.0, sleep=sleeps.append, **kw)


def _page(tmp_path, number=1):
    path = tmp_path / f"page-{number}.png"
    path.write_bytes(b"\x89PNG fake")
    return PageImage(path=str(path), page_number=number)


ITEMS_JSON = json.dumps(
    [
        {"floor": "Ground Floor", "room": "WC", "type": "Mirror", "code": "MIR02",
         "specs": "6mm Grade A Safety Mirror", "dimensions": "600 x 900mm", "quantity": 1, "notes": None},
        {"floor": "Basement", "location": "Sauna", "type": "Glass Door", "dimensions": "820 x 2040mm",
         "quantity": "QTY:2"},
    ]
)


def test_strip_code_fence_variants():
    assert strip_code_fence('```json\n[1, 2]\n```') == "[1, 2]"
    assert strip_code_fence("```\n[]\n```") == "[]"
    assert strip_code_fence("[]") == "[]"
    assert strip_code_fence('```json\n[{"a": 1}') == '[{"a": 1}'


def test_parse_fenced_array_and_coerces_fields():
    items = parse_items_response(f"```json\n{ITEMS_JSON}\n```")

    assert len(items) == 2
    assert items[0].code == "MIR02"
    assert items[1].room == "Sauna"
    assert items[1].quantity == 2
    assert items[1].notes is None


def test_parse_failure_yields_empty_list():
    assert parse_items_response("I could not find any glass on this page.") == []
    assert parse_items_response("") == []
    assert parse_items_response('{"note": "no items"}') == []


def test_parse_salvages_complete_items_from_truncated_reply():
    truncated = (
        '[{"floor": "First Floor", "room": "Ensuite", "type": "Shower Screen", '
        '"dimensions": "900 x 2000mm", "quantity": 1},'
        ' {"floor": "First Floor", "room": "Bath'
    )

    items = parse_items_response(truncated)

    assert [i.room for i in items] == ["Ensuite"]


def test_parse_accepts_object_with_items_key():
    reply = json.dumps({"project": {"name": "X"}, "items": json.loads(ITEMS_JSON)})
    assert len(parse_items_response(reply)) == 2


def test_success_returns_items_and_usage(tmp_path):
    session = _FakeSession([_ok(ITEMS_JSON, {"prompt_tokens": 1500, "completion_tokens": 200})])
    sleeps = []

    result = _extractor(session, sleeps).extract(_page(tmp_path))

    assert result.outcome is PageOutcome.SUCCEEDED
    assert len(result.items) == 2
    assert result.tokens == TokenUsage(1500, 200)
    assert result.attempts == 1
    assert sleeps == []
    payload = session.calls[0][1]["json"]
    assert payload["temperature"] == 0.1
    content = payload["messages"][0]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_rate_limited_twice_then_succeeds(tmp_path):
    session = _FakeSession(
        [
            _FakeResponse(429, {"error": {"message": "rate limited"}}),
            _FakeResponse(429, {"error": {"message": "rate limited"}}),
            _ok("[]", {"prompt_tokens": 10, "completion_tokens": 2}),
        ]
    )
    sleeps = []

    result = _extractor(session, sleeps).extract(_page(tmp_path))

    assert result.outcome is PageOutcome.EMPTY
    assert result.attempts == 3
    assert sleeps == [2.0, 4.0]
    assert len(session.calls) == 3


def test_exhausted_retries_degrade_to_empty(tmp_path):
    session = _FakeSession(
        [
            requests.ConnectionError("reset by peer"),
            _FakeResponse(503, {"usage": {"prompt_tokens": 700, "completion_tokens": 0}}),
            requests.Timeout("read timed out"),
        ]
    )
    sleeps = []

    result = _extractor(session, sleeps).extract(_page(tmp_path))

    assert result.outcome is PageOutcome.FAILED_EXHAUSTED
    assert result.items == []
    assert result.tokens == TokenUsage(700, 0)
    assert sleeps == [2.0, 4.0]
    assert result.error


def test_client_error_is_not_retried(tmp_path):
    session = _FakeSession([_FakeResponse(400, {"error": {"message": "bad image"}})])
    sleeps = []

    result = _extractor(session, sleeps).extract(_page(tmp_path))

    assert result.outcome is PageOutcome.FAILED_EXHAUSTED
    assert result.attempts == 1
    assert sleeps == []


def test_unparseable_reply_is_empty_not_failure(tmp_path):
    session = _FakeSession([_ok("Sorry, this page is blurry.")])

    result = _extractor(session, []).extract(_page(tmp_path))

    assert result.outcome is PageOutcome.EMPTY
    assert result.tokens == TokenUsage(0, 0)


def test_parse_non_finite_quantity_falls_back_to_one():
    reply = (
        '[{"floor": "Ground Floor", "room": "WC", "type": "Mirror", "dimensions": "600x900mm", "quantity": 2},'
        ' {"floor": "Ground Floor", "room": "Sauna", "type": "Glass Door", "dimensions": "700x1900mm", "quantity": Infinity},'
        ' {"floor": "Ground Floor", "room": "Laundry", "type": "Window", "dimensions": "1200x600mm", "quantity": NaN}]'
    )

    items = parse_items_response(reply)

    assert [i.quantity for i in items] == [2, 1, 1]

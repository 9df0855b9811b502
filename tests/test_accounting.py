import os
import sys

import pytest

sys.path.insert(0, os.path.abspath("src"))

from glazier_extraction.config import ConfigurationError, Pricing, resolve_model, resolve_pricing
from glazier_extraction.domain.models import TokenUsage
from glazier_extraction.pipeline.accounting import RunAccountant, compute_cost


def test_cost_matches_per_million_pricing():
    assert compute_cost(200_000, 50_000, Pricing(0.15, 0.60)) == 0.06


def test_cost_is_rounded_to_four_decimals():
    assert compute_cost(1234, 567, Pricing(1.25, 10.0)) == 0.0072


def test_missing_usage_counts_as_zero():
    assert TokenUsage.from_usage(None) == TokenUsage(0, 0)
    assert TokenUsage.from_usage({"prompt_tokens": 120}) == TokenUsage(120, 0)
    assert TokenUsage.from_usage({"prompt_tokens": "x", "completion_tokens": None}) == TokenUsage(0, 0)


def test_accountant_tracks_pages_tokens_and_files():
    acct = RunAccountant(model="google/gemini-2.5-flash", pricing=Pricing(0.15, 0.60))
    acct.start_file("specs.pdf")
    acct.record_pages(2)
    acct.record_page(TokenUsage(150_000, 30_000), 3)
    acct.record_page(TokenUsage(50_000, 20_000), 0)
    acct.start_file("broken.pdf")
    acct.record_file_failure("broken.pdf: PDF is encrypted")

    log = acct.as_log()

    assert log["pages_processed"] == 2
    assert log["tokens_input"] == 200_000
    assert log["tokens_output"] == 50_000
    assert log["tokens_used"] == 250_000
    assert log["cost_usd"] == 0.06
    assert log["files"] == [
        {"file": "specs.pdf", "pages": 2, "items": 3},
        {"file": "broken.pdf", "pages": 0, "items": 0, "error": "broken.pdf: PDF is encrypted"},
    ]


def test_model_aliases_and_pricing_lookup(monkeypatch):
    monkeypatch.delenv("OPENROUTER_MODEL", raising=False)
    assert resolve_model("gemini-pro") == "google/gemini-2.5-pro"
    assert resolve_model(None) == "google/gemini-2.5-flash"
    assert resolve_pricing("google/gemini-2.5-flash") == Pricing(0.15, 0.60)
    assert resolve_pricing("google/gemini-2.5-flash", price_in=0.3) == Pricing(0.3, 0.60)


def test_unknown_model_needs_explicit_pricing():
    with pytest.raises(ConfigurationError):
        resolve_pricing("vendor/unknown-model")
    assert resolve_pricing("vendor/unknown-model", price_in=1, price_out=2) == Pricing(1.0, 2.0)

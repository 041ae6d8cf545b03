#!/usr/bin/env python3
"""Shared test fixtures for the proposal generator test suite."""

import json
import os
import sys
from pathlib import Path

import pytest

# Add project root to path
BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))

from tools.llm.client import SHARED_COOLDOWN, CooldownWatermark, ProviderClient  # noqa: E402
from tools.llm.provider import LLMProvider, LLMResponse  # noqa: E402
from tools.proposal.models import CatalogItem  # noqa: E402


class FakeClock:
    """Monotonic clock whose sleep() just advances time."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedProvider(LLMProvider):
    """Replays a script of response strings / exceptions, one per invoke()."""

    def __init__(self, script, clock=None, label="fake"):
        self.script = list(script)
        self.requests = []
        self.call_times = []
        self.clock = clock
        self.label = label

    @property
    def provider_name(self):
        return self.label

    def invoke(self, request, model_id, model_config):
        self.requests.append(request)
        if self.clock is not None:
            self.call_times.append(self.clock())
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return LLMResponse(content=step, model_id=model_id, provider=self.label)

    def user_prompts(self):
        return [r.messages[1]["content"] for r in self.requests]


@pytest.fixture(autouse=True)
def _reset_shared_cooldown():
    SHARED_COOLDOWN.reset()
    yield
    SHARED_COOLDOWN.reset()


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary proposal database with full schema."""
    db_path = tmp_path / "test_ecoproposal.db"

    from tools.db.init_db import init_db
    init_db(str(db_path))

    os.environ["ECOPROPOSAL_DB_PATH"] = str(db_path)
    yield db_path
    if "ECOPROPOSAL_DB_PATH" in os.environ:
        del os.environ["ECOPROPOSAL_DB_PATH"]


@pytest.fixture
def catalog_items():
    return [
        CatalogItem("PRD-tote", "Recycled Cotton Tote Bag", "Bags", 699.0, 0.3, 1.2),
        CatalogItem("PRD-bottle", "Stainless Steel Water Bottle", "Drinkware", 1499.0, 0.5, 2.1),
        CatalogItem("PRD-pen", "Bamboo Ballpoint Pen", "Stationery", 49.0, 0.05, 0.15),
    ]


@pytest.fixture
def catalog(catalog_items):
    """id -> CatalogItem lookup."""
    return {item.id: item for item in catalog_items}


@pytest.fixture
def seeded_db(tmp_db, catalog_items):
    from tools.db.stores import CatalogStore
    CatalogStore(tmp_db).replace_all(catalog_items)
    return tmp_db


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scripted_provider(clock):
    def _make(script, label="fake"):
        return ScriptedProvider(script, clock=clock, label=label)
    return _make


@pytest.fixture
def make_client(clock):
    """Build a ProviderClient on the fake clock with a private watermark by default."""
    def _make(provider, cooldown=None, **kwargs):
        options = {
            "max_attempts": 3,
            "retry_delay_seconds": 1.0,
            "min_cooldown_seconds": 0.5,
        }
        options.update(kwargs)
        return ProviderClient(
            provider, "fake-model", {"max_tokens": 512, "temperature": 0.2},
            cooldown=cooldown if cooldown is not None else CooldownWatermark(),
            sleep=clock.sleep, clock=clock, **options,
        )
    return _make


@pytest.fixture
def make_response():
    """Valid model response for catalog item PRD-tote (699) x 20 under a 50000 budget."""
    def _make(**overrides):
        data = {
            "proposal_summary": "Branded tote bags for the annual offsite",
            "total_budget_limit": 50000,
            "allocated_budget": 13980,
            "products": [
                {
                    "product_id": "PRD-tote",
                    "name": "Recycled Cotton Tote Bag",
                    "quantity": 20,
                    "unit_price": 699,
                    "total_cost": 13980,
                }
            ],
            "impact_summary": "Estimated 6kg plastic saved",
            "confidence_score": 0.85,
        }
        data.update(overrides)
        return data
    return _make


@pytest.fixture
def as_json():
    return json.dumps

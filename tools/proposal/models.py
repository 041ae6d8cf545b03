#!/usr/bin/env python3
"""Typed records for the proposal pipeline.

Catalog items and requests are immutable once built. Candidate line items
only live for one verification attempt; everything persisted is assembled
from verified data plus values recomputed from the catalog.
"""

import math
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tools.proposal.errors import RequestValidationError


def round_money(value: float) -> float:
    """Round half-up to two decimals (banker's rounding is not wanted for money)."""
    return float(Decimal(repr(float(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_validation_issues(exc: ValidationError) -> str:
    """Flatten pydantic errors into 'path: message; path: message'."""
    issues = []
    for err in exc.errors():
        path = ".".join(str(p) for p in err.get("loc", ())) or "(root)"
        issues.append(f"{path}: {err.get('msg', 'invalid')}")
    return "; ".join(issues)


@dataclass(frozen=True)
class CatalogItem:
    """One eligible product as stored in the catalog."""
    id: str
    name: str
    category: str
    unit_price: float
    plastic_saved_per_unit: float = 0.0
    carbon_avoided_per_unit: float = 0.0

    def __post_init__(self):
        if self.unit_price < 0:
            raise ValueError(f"unit_price must be >= 0 for {self.id}")
        if self.plastic_saved_per_unit < 0 or self.carbon_avoided_per_unit < 0:
            raise ValueError(f"impact metrics must be >= 0 for {self.id}")

    def to_prompt_dict(self) -> dict:
        return {
            "product_id": self.id,
            "name": self.name,
            "category": self.category,
            "unit_price": self.unit_price,
            "impact_metrics": {
                "plastic_saved_per_unit": self.plastic_saved_per_unit,
                "carbon_avoided_per_unit": self.carbon_avoided_per_unit,
            },
        }


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class _Preferences(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    category_focus: List[str] = Field(default_factory=list)
    sustainability_priority: str = ""


class _RequestPayload(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    client_name: str = ""
    budget_limit: float = Field(gt=0, allow_inf_nan=False)
    preferences: _Preferences = Field(default_factory=_Preferences)

    @field_validator("budget_limit", mode="before")
    @classmethod
    def _reject_bool(cls, value):
        if isinstance(value, bool):
            raise ValueError("budget_limit must be a number")
        return value


@dataclass(frozen=True)
class ProposalRequest:
    budget_limit: float
    client_name: str = ""
    category_focus: Tuple[str, ...] = ()
    sustainability_priority: str = ""

    def __post_init__(self):
        budget = self.budget_limit
        if (isinstance(budget, bool) or not isinstance(budget, (int, float))
                or not math.isfinite(budget) or budget <= 0):
            raise RequestValidationError(
                "Validation failed: budget_limit: must be a finite number greater than 0")

    @classmethod
    def from_payload(cls, payload) -> "ProposalRequest":
        """Validate a caller payload (nested or flattened preferences)."""
        if not isinstance(payload, dict):
            raise RequestValidationError("Validation failed: request body must be a JSON object")
        data = dict(payload)
        if "preferences" not in data and (
                "category_focus" in data or "sustainability_priority" in data):
            data["preferences"] = {
                k: data.pop(k) for k in ("category_focus", "sustainability_priority")
                if k in data
            }
        if data.get("client_name") is None:
            data.pop("client_name", None)
        if data.get("preferences") is None:
            data.pop("preferences", None)
        if "budget_limit" not in data:
            raise RequestValidationError("Validation failed: budget_limit: budget_limit is required")
        try:
            parsed = _RequestPayload.model_validate(data)
        except ValidationError as exc:
            raise RequestValidationError(
                f"Validation failed: {format_validation_issues(exc)}") from exc
        return cls(
            budget_limit=parsed.budget_limit,
            client_name=parsed.client_name,
            category_focus=tuple(parsed.preferences.category_focus),
            sustainability_priority=parsed.preferences.sustainability_priority,
        )


# ---------------------------------------------------------------------------
# Verification results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CandidateLineItem:
    product_id: str
    name: str
    quantity: int
    unit_price: float
    total_cost: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class VerifiedProposal:
    """A candidate that passed every verification step.

    ``allocated_budget`` is the system's own sum, never the model's claim.
    """
    line_items: Tuple[CandidateLineItem, ...]
    allocated_budget: float
    total_budget_limit: float
    proposal_summary: str
    impact_summary: str
    confidence_score: float


@dataclass(frozen=True)
class ComputedImpact:
    total_plastic_saved: float = 0.0
    total_carbon_avoided: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class InteractionLogEntry:
    id: str
    system_prompt: str
    user_prompt: str
    raw_response: str
    module: str
    module_version: str
    model_id: str
    created_at: str


@dataclass
class PersistedProposal:
    client_name: str
    proposal_summary: str
    total_budget_limit: float
    allocated_budget: float
    remaining_budget: float
    products: List[CandidateLineItem]
    impact_summary: str
    confidence_score: float
    computed_impact: ComputedImpact
    ai_metadata: Dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self, include_metadata: bool = True) -> dict:
        out = {
            "proposal_id": self.id,
            "client_name": self.client_name,
            "proposal_summary": self.proposal_summary,
            "total_budget_limit": self.total_budget_limit,
            "allocated_budget": self.allocated_budget,
            "remaining_budget": self.remaining_budget,
            "products": [p.to_dict() for p in self.products],
            "impact_summary": self.impact_summary,
            "confidence_score": self.confidence_score,
            "computed_impact": self.computed_impact.to_dict(),
            "created_at": self.created_at,
        }
        if include_metadata:
            out["ai_metadata"] = dict(self.ai_metadata)
        return out

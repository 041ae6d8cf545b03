#!/usr/bin/env python3
"""Output verifier: treats one provider response as untrusted input.

Checks run in strict order and stop at the first failure:

  1. parse         one JSON object, no fence stripping, no recovery
  2. schema        strict shape: no extra keys, >= 1 product, positive
                   integer quantities, non-negative money, confidence in [0, 1]
  3. references    every product_id exists; name and unit_price match the
                   catalog exactly
  4. line totals   quantity * canonical price vs claimed total_cost
                   (tolerance 0.01)
  5. allocation    sum of line totals vs claimed allocated_budget
                   (tolerance max(1, number of lines))
  6. budget echo   total_budget_limit == requested budget, exactly
  7. budget cap    recomputed allocation <= budget

The verifier never corrects a rejected field; it raises ValidationRejection
with a reason precise enough to be fed back to the model.
"""

import json
import math
from typing import Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tools.proposal.errors import ValidationRejection
from tools.proposal.models import (
    CandidateLineItem, CatalogItem, VerifiedProposal, format_validation_issues, round_money,
)
from tools.proposal.prompt_builder import format_amount

LINE_COST_TOLERANCE = 0.01
# Absorbs float representation error when comparing against a tolerance.
_EPSILON = 1e-9


class CandidateProduct(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    product_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0, allow_inf_nan=False)
    total_cost: float = Field(ge=0, allow_inf_nan=False)


class CandidateResponse(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    proposal_summary: str = Field(min_length=1)
    total_budget_limit: float = Field(ge=0, allow_inf_nan=False)
    allocated_budget: float = Field(ge=0, allow_inf_nan=False)
    products: List[CandidateProduct] = Field(min_length=1)
    impact_summary: str = Field(min_length=1)
    confidence_score: float = Field(ge=0, le=1, allow_inf_nan=False)


def _reject_constant(name):
    raise ValueError(f"non-standard JSON constant {name}")


def _no_duplicate_keys(pairs):
    obj = {}
    for key, value in pairs:
        if key in obj:
            raise ValueError(f"duplicate key {key!r}")
        obj[key] = value
    return obj


def parse_response(raw_text: str) -> dict:
    """Step 1: exactly one JSON object, parsed once."""
    try:
        parsed = json.loads(raw_text, parse_constant=_reject_constant,
                            object_pairs_hook=_no_duplicate_keys)
    except (ValueError, TypeError) as exc:
        raise ValidationRejection(f"AI response is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValidationRejection(
            f"AI response is not valid JSON object: got {type(parsed).__name__}")
    return parsed


def validate_schema(parsed: dict) -> CandidateResponse:
    """Step 2: strict shape validation."""
    try:
        return CandidateResponse.model_validate(parsed)
    except ValidationError as exc:
        raise ValidationRejection(
            f"AI response schema violation: {format_validation_issues(exc)}") from exc


def check_references(candidate: CandidateResponse,
                     catalog: Mapping[str, CatalogItem]) -> List[CatalogItem]:
    """Step 3: resolve every line against the catalog; name/price must match exactly."""
    resolved = []
    for item in candidate.products:
        canonical = catalog.get(item.product_id)
        if canonical is None:
            raise ValidationRejection(f"Product not found in catalog: {item.product_id}")
        if item.name != canonical.name:
            raise ValidationRejection(
                f'Name mismatch for {item.product_id}: AI said "{item.name}", '
                f'catalog has "{canonical.name}"')
        if item.unit_price != canonical.unit_price:
            raise ValidationRejection(
                f"Price mismatch for {item.name}: AI said {format_amount(item.unit_price)}, "
                f"catalog has {format_amount(canonical.unit_price)}")
        resolved.append(canonical)
    return resolved


def check_line_totals(candidate: CandidateResponse, resolved: List[CatalogItem],
                      tolerance: float = LINE_COST_TOLERANCE) -> List[float]:
    """Step 4: recompute each line from the canonical price. Returns the recomputed totals."""
    totals = []
    for item, canonical in zip(candidate.products, resolved):
        expected = round_money(item.quantity * canonical.unit_price)
        if abs(item.total_cost - expected) > tolerance + _EPSILON:
            raise ValidationRejection(
                f"Cost mismatch for {item.name}: AI said {format_amount(item.total_cost)}, "
                f"expected {format_amount(expected)} "
                f"({item.quantity} x {format_amount(canonical.unit_price)})")
        totals.append(expected)
    return totals


def allocation_tolerance(line_count: int) -> float:
    return float(max(1, line_count))


def check_allocation(candidate: CandidateResponse, line_totals: List[float],
                     budget_limit: float) -> float:
    """Step 5: claimed allocated_budget vs the exact sum. Returns the recomputed sum.

    A mismatched claim that hides a real overspend is reported as the
    overspend, since that is what the model has to fix.
    """
    computed = round_money(math.fsum(line_totals))
    tolerance = allocation_tolerance(len(line_totals))
    if abs(candidate.allocated_budget - computed) > tolerance + _EPSILON:
        if computed > budget_limit:
            raise ValidationRejection(
                f"Budget exceeded: allocated {format_amount(computed)} exceeds limit "
                f"{format_amount(budget_limit)} (AI claimed allocated_budget "
                f"{format_amount(candidate.allocated_budget)})")
        raise ValidationRejection(
            f"Allocated budget mismatch: AI said {format_amount(candidate.allocated_budget)}, "
            f"computed {format_amount(computed)}")
    return computed


def check_budget_echo(candidate: CandidateResponse, budget_limit: float) -> None:
    """Step 6."""
    if candidate.total_budget_limit != budget_limit:
        raise ValidationRejection(
            f"Budget limit mismatch: AI said {format_amount(candidate.total_budget_limit)}, "
            f"request had {format_amount(budget_limit)}")


def check_budget_cap(allocated: float, budget_limit: float) -> None:
    """Step 7."""
    if allocated > budget_limit:
        raise ValidationRejection(
            f"Budget exceeded: allocated {format_amount(allocated)} exceeds limit "
            f"{format_amount(budget_limit)}")


def verify_response(raw_text: str, catalog: Mapping[str, CatalogItem], budget_limit: float,
                    line_cost_tolerance: float = LINE_COST_TOLERANCE) -> VerifiedProposal:
    """Run every check in order; return the verified proposal or raise ValidationRejection.

    Accepted line totals are the recomputed canonical values (each already
    within tolerance of the claim), so allocated == sum of line totals holds
    exactly on the returned record.
    """
    parsed = parse_response(raw_text)
    candidate = validate_schema(parsed)
    resolved = check_references(candidate, catalog)
    line_totals = check_line_totals(candidate, resolved, line_cost_tolerance)
    allocated = check_allocation(candidate, line_totals, budget_limit)
    check_budget_echo(candidate, budget_limit)
    check_budget_cap(allocated, budget_limit)

    line_items = tuple(
        CandidateLineItem(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            unit_price=canonical.unit_price,
            total_cost=total,
        )
        for item, canonical, total in zip(candidate.products, resolved, line_totals)
    )
    return VerifiedProposal(
        line_items=line_items,
        allocated_budget=allocated,
        total_budget_limit=budget_limit,
        proposal_summary=candidate.proposal_summary,
        impact_summary=candidate.impact_summary,
        confidence_score=candidate.confidence_score,
    )


def catalog_lookup(items) -> Dict[str, CatalogItem]:
    return {item.id: item for item in items}

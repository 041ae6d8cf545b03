#!/usr/bin/env python3
"""Prompt rendering for proposal generation. Pure functions, no I/O."""

import json
import math
from typing import Iterable, List, Optional, Sequence, Tuple

from tools.proposal.models import CatalogItem

RESPONSE_SHAPE = {
    "proposal_summary": "string",
    "total_budget_limit": 0,
    "allocated_budget": 0,
    "products": [
        {
            "product_id": "string",
            "name": "string",
            "quantity": 1,
            "unit_price": 0,
            "total_cost": 0,
        }
    ],
    "impact_summary": "string",
    "confidence_score": 0,
}


def format_amount(value: float) -> str:
    """Render 50000.0 as '50000' and 8.5 as '8.5' so the model can echo it exactly."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def eligible_items(catalog: Iterable[CatalogItem], budget_limit: float) -> List[CatalogItem]:
    """Items affordable at quantity 1; the full catalog if none are."""
    catalog = list(catalog)
    affordable = [item for item in catalog if item.unit_price <= budget_limit]
    return affordable or catalog


def max_affordable_quantity(item: CatalogItem, budget_limit: float) -> Optional[int]:
    """floor(budget / unit_price); None for free items (no price bound)."""
    if item.unit_price <= 0:
        return None
    return int(math.floor(budget_limit / item.unit_price))


def _catalog_entry(item: CatalogItem, budget_limit: float) -> dict:
    entry = item.to_prompt_dict()
    entry["max_affordable_quantity"] = max_affordable_quantity(item, budget_limit)
    return entry


def build_system_prompt(catalog: Sequence[CatalogItem], budget_limit: float) -> str:
    items = eligible_items(catalog, budget_limit)
    budget = format_amount(budget_limit)
    catalog_json = json.dumps([_catalog_entry(i, budget_limit) for i in items], indent=2)
    shape_json = json.dumps(RESPONSE_SHAPE, indent=2)

    return f"""You are an AI B2B sustainability proposal strategist for a sustainable commerce platform.

Your task:
Generate a product proposal from the provided catalog that maximizes sustainability impact while staying within budget.

===========================================
PRODUCT CATALOG (select ONLY from these):
===========================================
{catalog_json}

max_affordable_quantity is floor({budget} / unit_price): the most units of that
product the whole budget could buy on its own. A null value means the product
is free and has no price bound.

NON-NEGOTIABLE RULES:
1) Use ONLY product_id values from the provided catalog.
2) Do NOT invent products, IDs, prices, or categories.
3) For every selected product:
   - name must exactly match the catalog
   - unit_price must exactly match the catalog
   - quantity must be a positive whole number no larger than max_affordable_quantity
   - total_cost = quantity * unit_price, computed exactly. Do not round or estimate.
4) allocated_budget must equal the sum of every total_cost.
5) allocated_budget must be <= {budget}.
6) total_budget_limit must be exactly {budget}.
7) confidence_score must be between 0 and 1.
8) Return EXACTLY one JSON object with no markdown and no extra keys.

REQUIRED JSON SHAPE:
{shape_json}

STYLE GUIDANCE:
- Keep proposal_summary and impact_summary concise, executive, and measurable.
- Emphasize practical business value: brand credibility, reduced waste footprint, procurement suitability.
- Avoid inflated or unverified impact claims.

IMPORTANT: Output ONLY the JSON object. No text before or after."""


def build_user_prompt(budget_limit: float, category_focus: Sequence[str] = (),
                      sustainability_priority: str = "", client_name: str = "") -> str:
    client = client_name or "N/A"
    categories = ", ".join(category_focus) if category_focus else "N/A"
    priority = sustainability_priority or "N/A"

    return f"""Generate a B2B sustainability proposal.

Budget limit: {format_amount(budget_limit)}
Client name: {client}
Category focus: {categories}
Sustainability priority: {priority}

Return only strict JSON in the required schema.
No markdown, no explanation, no extra keys."""


def build_prompts(catalog: Sequence[CatalogItem], budget_limit: float,
                  category_focus: Sequence[str] = (), sustainability_priority: str = "",
                  client_name: str = "") -> Tuple[str, str]:
    """Return (system_prompt, user_prompt)."""
    return (
        build_system_prompt(catalog, budget_limit),
        build_user_prompt(budget_limit, category_focus, sustainability_priority, client_name),
    )


def build_feedback_prompt(user_prompt: str, rejections: Sequence[str],
                          budget_limit: float) -> str:
    """Append every prior rejection, oldest first, plus a budget reminder."""
    if not rejections:
        return user_prompt
    budget = format_amount(budget_limit)
    lines = [user_prompt, "", "YOUR PREVIOUS RESPONSES WERE REJECTED."]
    for n, reason in enumerate(rejections, start=1):
        lines.append(f'Rejection {n}: "{reason}"')
    lines.append(
        f"Fix these issues. The budget limit is {budget}: your allocated_budget "
        f"MUST be <= {budget} and total_budget_limit MUST be exactly {budget}. "
        "Use fewer products or smaller quantities if needed.")
    return "\n".join(lines)

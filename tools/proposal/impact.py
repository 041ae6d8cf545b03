#!/usr/bin/env python3
"""Impact calculator.

Sustainability totals are computed only from canonical per-unit metrics and
accepted quantities. Whatever the model wrote about impact is ignored here.
"""

import math
from typing import Callable, Iterable, Optional

from tools.proposal.errors import DataConsistencyError
from tools.proposal.models import CandidateLineItem, CatalogItem, ComputedImpact, round_money


def compute_impact(line_items: Iterable[CandidateLineItem],
                   find_by_id: Callable[[str], Optional[CatalogItem]]) -> ComputedImpact:
    """Sum quantity * per-unit metric over the accepted lines.

    ``find_by_id`` is looked up at computation time; a missing product is a
    data-consistency fault because it was already resolved once during
    verification. fsum keeps the totals independent of line order.
    """
    plastic = []
    carbon = []
    for item in line_items:
        product = find_by_id(item.product_id)
        if product is None:
            raise DataConsistencyError(
                f"Impact computation failed: product {item.product_id} not found")
        plastic.append(item.quantity * product.plastic_saved_per_unit)
        carbon.append(item.quantity * product.carbon_avoided_per_unit)

    return ComputedImpact(
        total_plastic_saved=round_money(math.fsum(plastic)),
        total_carbon_avoided=round_money(math.fsum(carbon)),
    )

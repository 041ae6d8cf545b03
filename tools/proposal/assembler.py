#!/usr/bin/env python3
"""Proposal assembler: verified output + computed impact + provenance -> one stored record."""

import logging

from tools.proposal.models import (
    ComputedImpact, PersistedProposal, ProposalRequest, VerifiedProposal, round_money,
)

logger = logging.getLogger("ecoproposal.proposal.assembler")


def assemble_proposal(request: ProposalRequest, verified: VerifiedProposal,
                      impact: ComputedImpact, provenance: dict) -> PersistedProposal:
    """Build the record. ``provenance`` holds system_prompt, user_prompt, raw_response, model."""
    return PersistedProposal(
        client_name=request.client_name or "",
        proposal_summary=verified.proposal_summary,
        total_budget_limit=request.budget_limit,
        allocated_budget=verified.allocated_budget,
        remaining_budget=round_money(request.budget_limit - verified.allocated_budget),
        products=list(verified.line_items),
        impact_summary=verified.impact_summary,
        confidence_score=verified.confidence_score,
        computed_impact=impact,
        ai_metadata={
            "system_prompt": provenance["system_prompt"],
            "user_prompt": provenance["user_prompt"],
            "raw_response": provenance["raw_response"],
            "model": provenance["model"],
        },
    )


def persist_proposal(store, record: PersistedProposal) -> PersistedProposal:
    """Exactly one write. The store fills in id and created_at."""
    proposal_id = store.create(record)
    record.id = proposal_id
    logger.info("Proposal persisted: %s", proposal_id)
    return record

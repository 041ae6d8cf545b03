#!/usr/bin/env python3
"""Proposal generator: generation / validation / retry pipeline.

Pipeline for one request (strictly sequential):
  1. Load the full catalog (empty catalog is a precondition failure)
  2. Build system + user prompts
  3. Rounds, up to max_rounds:
       REQUESTING  provider call (transient failures retried inside the client)
                   interaction logged BEFORE any parsing; a log failure aborts
       VERIFYING   parse + schema + catalog + arithmetic + budget checks
       ACCEPTED    first verified round wins
       otherwise   rejection reason (and all earlier ones) appended to the next
                   user prompt with a budget reminder
     EXHAUSTED     the last rejection is raised (kind "validation")
  4. Impact recomputed from catalog data
  5. Record assembled and persisted once

Usage:
    python tools/proposal/generator.py --budget 50000 --category Bags \
        --priority "plastic reduction" --client Acme --json
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

BASE_DIR = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BASE_DIR))

from tools.audit.interaction_logger import InteractionLogger  # noqa: E402
from tools.config import load_proposal_config, resolve_db_path  # noqa: E402
from tools.db.stores import CatalogStore, ProposalStore  # noqa: E402
from tools.llm.client import ProviderClient, ProviderResult  # noqa: E402
from tools.proposal.assembler import assemble_proposal, persist_proposal  # noqa: E402
from tools.proposal.errors import (  # noqa: E402
    InteractionLogError, PersistenceError, PreconditionError, ProposalError,
    ValidationRejection, error_payload,
)
from tools.proposal.impact import compute_impact  # noqa: E402
from tools.proposal.models import (  # noqa: E402
    PersistedProposal, ProposalRequest, VerifiedProposal,
)
from tools.proposal.prompt_builder import build_feedback_prompt, build_prompts  # noqa: E402
from tools.proposal.verifier import LINE_COST_TOLERANCE, catalog_lookup, verify_response  # noqa: E402

logger = logging.getLogger("ecoproposal.proposal.generator")

REQUESTING = "requesting"
VERIFYING = "verifying"
ACCEPTED = "accepted"
EXHAUSTED = "exhausted"

DEFAULT_MAX_ROUNDS = 5


@dataclass
class AcceptedRound:
    verified: VerifiedProposal
    system_prompt: str
    user_prompt: str
    result: ProviderResult
    round_number: int
    rejections: List[str] = field(default_factory=list)


class ProposalGenerator:
    """Single entry point: generate(request) -> PersistedProposal."""

    def __init__(self, catalog, interaction_log, proposal_store, provider_client: ProviderClient,
                 module_name: str = "B2BProposal", module_version: str = "1.0.0",
                 max_rounds: int = DEFAULT_MAX_ROUNDS,
                 line_cost_tolerance: float = LINE_COST_TOLERANCE):
        if max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        self.catalog = catalog
        self.interaction_log = interaction_log
        self.proposal_store = proposal_store
        self.provider_client = provider_client
        self.module_name = module_name
        self.module_version = module_version
        self.max_rounds = max_rounds
        self.line_cost_tolerance = line_cost_tolerance

    @classmethod
    def from_config(cls, db_path=None, provider_client: ProviderClient = None,
                    config_path=None) -> "ProposalGenerator":
        """Wire SQLite stores and the routed provider client from args/*.yaml."""
        config = load_proposal_config(config_path)
        db_path = db_path or resolve_db_path(config)
        if provider_client is None:
            from tools.llm.router import build_provider_client
            provider_client = build_provider_client("proposal_generation")
        return cls(
            catalog=CatalogStore(db_path),
            interaction_log=InteractionLogger(db_path),
            proposal_store=ProposalStore(db_path),
            provider_client=provider_client,
            module_name=config["module"]["name"],
            module_version=config["module"]["version"],
            max_rounds=config["validation"]["max_rounds"],
            line_cost_tolerance=config["validation"]["line_cost_tolerance"],
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def generate(self, request: ProposalRequest) -> PersistedProposal:
        items = self.catalog.list_all()
        if not items:
            logger.error("Catalog is empty")
            raise PreconditionError("No products in catalog. Run the seed script first.")
        logger.info("Loaded %d products from catalog", len(items))

        system_prompt, user_prompt = build_prompts(
            items, request.budget_limit, request.category_focus,
            request.sustainability_priority, request.client_name,
        )

        accepted = self.run_rounds(system_prompt, user_prompt,
                                   catalog_lookup(items), request.budget_limit)

        impact = compute_impact(accepted.verified.line_items, self.catalog.find_by_id)
        logger.info("Impact computed: %s", impact)

        record = assemble_proposal(request, accepted.verified, impact, {
            "system_prompt": accepted.system_prompt,
            "user_prompt": accepted.user_prompt,
            "raw_response": accepted.result.raw_text,
            "model": accepted.result.model_id,
        })
        try:
            return persist_proposal(self.proposal_store, record)
        except ProposalError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to persist proposal: {exc}") from exc

    def run_rounds(self, system_prompt: str, user_prompt: str, lookup: dict,
                   budget_limit: float) -> AcceptedRound:
        """Drive provider rounds until one verifies or max_rounds is reached."""
        rejections: List[str] = []
        last_rejection = None

        for round_number in range(1, self.max_rounds + 1):
            current_prompt = build_feedback_prompt(user_prompt, rejections, budget_limit)
            logger.info("AI round %d/%d (%s)", round_number, self.max_rounds, REQUESTING)
            result = self.provider_client.call(system_prompt, current_prompt)
            logger.info("AI response received (%d chars)", len(result.raw_text))

            self._record_interaction(system_prompt, current_prompt, result)

            logger.info("Round %d %s", round_number, VERIFYING)
            try:
                verified = verify_response(result.raw_text, lookup, budget_limit,
                                           self.line_cost_tolerance)
            except ValidationRejection as exc:
                last_rejection = exc
                rejections.append(exc.message)
                logger.warning("Round %d rejected: %s", round_number, exc.message)
                continue

            logger.info("Round %d %s", round_number, ACCEPTED)
            return AcceptedRound(
                verified=verified,
                system_prompt=system_prompt,
                user_prompt=current_prompt,
                result=result,
                round_number=round_number,
                rejections=list(rejections),
            )

        logger.error("Validation %s after %d rounds: %s",
                     EXHAUSTED, self.max_rounds, last_rejection.message)
        raise ValidationRejection(last_rejection.message) from last_rejection

    def _record_interaction(self, system_prompt: str, user_prompt: str,
                            result: ProviderResult) -> None:
        try:
            self.interaction_log.record(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                raw_response=result.raw_text,
                module_name=self.module_name,
                module_version=self.module_version,
                model_id=result.model_id,
            )
        except InteractionLogError:
            raise
        except Exception as exc:
            raise InteractionLogError(f"Logging failure, proposal aborted: {exc}") from exc
        logger.info("AI interaction logged")


def generate(request: ProposalRequest, db_path=None) -> PersistedProposal:
    """Module-level entry point using the configured stores and provider."""
    return ProposalGenerator.from_config(db_path=db_path).generate(request)


def main():
    parser = argparse.ArgumentParser(description="Generate a budget-compliant sustainability proposal")
    parser.add_argument("--budget", type=float, required=True, help="Budget limit")
    parser.add_argument("--category", action="append", default=[],
                        help="Category focus (repeatable)")
    parser.add_argument("--priority", default="", help="Sustainability priority")
    parser.add_argument("--client", default="", help="Client name")
    parser.add_argument("--db-path", help="Override database path")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    try:
        request = ProposalRequest.from_payload({
            "client_name": args.client,
            "budget_limit": args.budget,
            "preferences": {
                "category_focus": args.category,
                "sustainability_priority": args.priority,
            },
        })
        record = generate(request, db_path=args.db_path)
    except ProposalError as exc:
        payload = error_payload(exc)
        if args.json:
            print(json.dumps(payload, indent=2))
        else:
            print(f"ERROR [{exc.kind}]: {exc.message}")
        sys.exit(1)

    if args.json:
        print(json.dumps({"ok": True, "data": record.to_dict(include_metadata=False),
                          "error": None}, indent=2))
    else:
        print(f"Proposal {record.id}")
        print(f"  Allocated: {record.allocated_budget} / {record.total_budget_limit} "
              f"(remaining {record.remaining_budget})")
        for p in record.products:
            print(f"  • {p.quantity} x {p.name} @ {p.unit_price} = {p.total_cost}")
        print(f"  Plastic saved:  {record.computed_impact.total_plastic_saved}")
        print(f"  Carbon avoided: {record.computed_impact.total_carbon_avoided}")


if __name__ == "__main__":
    main()

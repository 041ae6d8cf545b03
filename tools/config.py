#!/usr/bin/env python3
"""YAML configuration loading for the proposal generator.

Reads args/llm_config.yaml and args/proposal_config.yaml, expanding
${VAR:-default} patterns against the environment. A .env file at the
project root is loaded first when python-dotenv is installed.
"""

import logging
import os
import re
from pathlib import Path

import yaml

logger = logging.getLogger("ecoproposal.config")

BASE_DIR = Path(__file__).resolve().parent.parent
ARGS_DIR = BASE_DIR / "args"
LLM_CONFIG_PATH = ARGS_DIR / "llm_config.yaml"
PROPOSAL_CONFIG_PATH = ARGS_DIR / "proposal_config.yaml"

# Load .env if present (development convenience; production uses real env vars)
try:
    from dotenv import load_dotenv
    _env_path = BASE_DIR / ".env"
    if _env_path.exists():
        load_dotenv(_env_path, override=False)
except ImportError:
    pass

DEFAULT_RETRY = {
    "max_attempts": 3,
    "retry_delay_seconds": 1.0,
    "rate_limit_min_cooldown_seconds": 5.0,
    "request_timeout_seconds": 60.0,
}

DEFAULT_PROPOSAL = {
    "module": {"name": "B2BProposal", "version": "1.0.0"},
    "validation": {"max_rounds": 5, "line_cost_tolerance": 0.01},
    "storage": {"db_path": "data/ecoproposal.db"},
}

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def expand_env(value):
    """Expand ${VAR:-default} patterns in string values, recursing into containers."""
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    if not isinstance(value, str):
        return value

    def replacer(match):
        expr = match.group(1)
        if ":-" in expr:
            var, default = expr.split(":-", 1)
            return os.environ.get(var) or default
        return os.environ.get(expr, match.group(0))

    return _ENV_PATTERN.sub(replacer, value)


def load_yaml(path) -> dict:
    """Load a YAML file and expand env references. Missing file -> {}."""
    path = Path(path)
    if not path.exists():
        logger.warning("Config not found at %s; using defaults", path)
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return expand_env(data)


def load_llm_config(path=None) -> dict:
    return load_yaml(path or LLM_CONFIG_PATH)


def retry_settings(llm_config: dict) -> dict:
    """Merge the retry block over defaults and coerce numeric types."""
    merged = dict(DEFAULT_RETRY)
    merged.update(llm_config.get("retry") or {})
    return {
        "max_attempts": int(merged["max_attempts"]),
        "retry_delay_seconds": float(merged["retry_delay_seconds"]),
        "rate_limit_min_cooldown_seconds": float(merged["rate_limit_min_cooldown_seconds"]),
        "request_timeout_seconds": float(merged["request_timeout_seconds"]),
    }


def load_proposal_config(path=None) -> dict:
    """Return the proposal config with every section filled from defaults."""
    raw = load_yaml(path or PROPOSAL_CONFIG_PATH)
    config = {}
    for section, defaults in DEFAULT_PROPOSAL.items():
        merged = dict(defaults)
        merged.update(raw.get(section) or {})
        config[section] = merged
    config["validation"]["max_rounds"] = int(config["validation"]["max_rounds"])
    config["validation"]["line_cost_tolerance"] = float(
        config["validation"]["line_cost_tolerance"])
    return config


def resolve_db_path(config: dict = None) -> Path:
    """ECOPROPOSAL_DB_PATH wins; relative config paths are rooted at BASE_DIR."""
    override = os.environ.get("ECOPROPOSAL_DB_PATH")
    if override:
        return Path(override)
    config = config or load_proposal_config()
    path = Path(config["storage"]["db_path"])
    return path if path.is_absolute() else BASE_DIR / path

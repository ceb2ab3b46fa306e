"""
Configuration loader for the underwriting engine
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from src.integrations.contracts.interfaces import ProposalStatus
from src.integrations.contracts.payments import DEFAULT_NEW_ENERGY_KEYWORDS, DEFAULT_PRODUCT_NAME_TEMPLATE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "engine_config.yml"


class PremiumConfig(BaseModel):
    """Premium policy. Rounding itself is fixed (half-up, 2 places) in src/utils/money.py."""

    zero_total_policy: Literal["confirm", "block", "allow"] = "confirm"
    currency: str = "CNY"


class ArtifactConfig(BaseModel):
    """Payment artifact generation"""

    auth_code_length: int = Field(default=8, ge=4, le=32)
    auth_code_alphabet: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    token_bytes: int = Field(default=24, ge=16, le=64)
    ttl_hours: float = Field(default=72.0, gt=0)
    customer_base_url: str = "https://pay.example.com/underwriting/auth"
    mint_attempts: int = Field(default=3, ge=1, le=10)

    @field_validator("auth_code_alphabet")
    @classmethod
    def _alphabet_has_no_duplicates(cls, value: str) -> str:
        if len(set(value)) != len(value) or len(value) < 10:
            raise ValueError("auth_code_alphabet must hold at least 10 distinct characters")
        return value


class LifecycleConfig(BaseModel):
    policy_issue_allowed_from: List[ProposalStatus] = Field(default_factory=lambda: [ProposalStatus.PAID])
    policy_no_prefix: str = "PDAA"
    policy_term_years: int = Field(default=1, ge=1, le=10)

    @field_validator("policy_issue_allowed_from")
    @classmethod
    def _only_pre_issue_statuses(cls, value: List[ProposalStatus]) -> List[ProposalStatus]:
        allowed = {ProposalStatus.UNDERWRITING_CONFIRMED, ProposalStatus.PAID}
        bad = [s.value for s in value if s not in allowed]
        if bad:
            raise ValueError(f"policy issuance cannot start from {bad}")
        return value


class StoreConfig(BaseModel):
    lock_timeout_seconds: float = Field(default=5.0, gt=0)
    pool_timeout_seconds: float = Field(default=10.0, gt=0)


class PaymentLinkConfig(BaseModel):
    product_name_template: str = DEFAULT_PRODUCT_NAME_TEMPLATE
    new_energy_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_NEW_ENERGY_KEYWORDS))
    timeout_seconds: float = Field(default=60.0, gt=0)
    generate_path: str = "/"


class EngineConfig(BaseModel):
    premium: PremiumConfig = Field(default_factory=PremiumConfig)
    artifacts: ArtifactConfig = Field(default_factory=ArtifactConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    payment_link: PaymentLinkConfig = Field(default_factory=PaymentLinkConfig)


def load_engine_config(config_path: Optional[Path] = None) -> EngineConfig:
    """
    Load and validate engine configuration from YAML file

    Args:
        config_path: Path to config file. Defaults to ENGINE_CONFIG_PATH or
            config/engine_config.yml

    Returns:
        Validated EngineConfig object (defaults when no file exists)

    Raises:
        ValidationError: If config doesn't match schema
    """
    if config_path is None:
        env_path = os.getenv("ENGINE_CONFIG_PATH")
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.warning("Engine config not found at %s; using defaults", config_path)
        return EngineConfig()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        config = EngineConfig(**data)
        logger.info(f"Successfully loaded engine config from {config_path}")
        return config
    except ValidationError as e:
        logger.error(f"Engine config validation failed: {e}")
        raise

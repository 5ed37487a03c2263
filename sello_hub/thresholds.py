"""Alert thresholds, pricing strategy and platform pricing rules.

Both live in YAML files and are validated with pydantic so inconsistent
values (e.g. a medium stock band above the high one) fail at load time
rather than producing nonsense recommendations.

Usage:
    from sello_hub.thresholds import load_hub_config
    config = load_hub_config("config/thresholds.yaml")
    config.strategy.increase.min_runway_weeks
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from .models import PlatformConfig

logger = logging.getLogger("sello.thresholds")


class Season(str, Enum):
    SUMMER = "Summer"
    AUTUMN = "Autumn"
    WINTER = "Winter"
    SPRING = "Spring"
    NONE = "None"


def _check_non_negative(model: BaseModel, fields: tuple[str, ...]) -> None:
    for name in fields:
        value = getattr(model, name)
        if value < 0:
            raise ValueError(f"{name} must not be negative (got {value})")


class ThresholdConfig(BaseModel):
    """Alert and diagnostic thresholds used by the deep dive."""

    margin_below_target_pct: float = 10
    velocity_crash_pct: float = 30
    velocity_drop_pct: float = 20
    stockout_runway_multiplier: float = 1
    overstock_days: float = 120
    dead_stock_min_value: float = 200
    return_rate_pct: float = 5
    high_ad_dependency_pct: float = 15
    current_season: Season = Season.NONE

    @model_validator(mode="after")
    def check_values(self) -> ThresholdConfig:
        _check_non_negative(
            self,
            (
                "velocity_crash_pct",
                "velocity_drop_pct",
                "stockout_runway_multiplier",
                "overstock_days",
                "dead_stock_min_value",
                "return_rate_pct",
                "high_ad_dependency_pct",
            ),
        )
        return self


# ---------------------------------------------------------------------------
# Pricing strategy
# ---------------------------------------------------------------------------


class IncreaseRule(BaseModel):
    min_runway_weeks: float = 6
    min_stock: float = 0
    min_velocity_7_days: float = 2
    adjustment_percent: float = 5
    adjustment_fixed: float = 1


class DecreaseRule(BaseModel):
    high_stock_weeks: float = 48
    med_stock_weeks: float = 24
    min_margin_percent: float = 25
    adjustment_percent: float = 5
    include_new_products: bool = False


class SafetyRule(BaseModel):
    min_margin_percent: float = 10


class StrategyConfig(BaseModel):
    """Rules behind INCREASE / DECREASE / MAINTAIN suggestions."""

    increase: IncreaseRule = Field(default_factory=IncreaseRule)
    decrease: DecreaseRule = Field(default_factory=DecreaseRule)
    safety: SafetyRule = Field(default_factory=SafetyRule)

    @model_validator(mode="after")
    def check_consistency(self) -> StrategyConfig:
        if self.decrease.med_stock_weeks > self.decrease.high_stock_weeks:
            raise ValueError(
                f"decrease.med_stock_weeks ({self.decrease.med_stock_weeks}) must not "
                f"exceed decrease.high_stock_weeks ({self.decrease.high_stock_weeks})"
            )
        _check_non_negative(self.increase, ("adjustment_percent", "adjustment_fixed"))
        _check_non_negative(self.decrease, ("adjustment_percent", "min_margin_percent"))
        _check_non_negative(self.safety, ("min_margin_percent",))
        if self.decrease.adjustment_percent >= 100:
            raise ValueError("decrease.adjustment_percent must be below 100")
        return self


class HubConfig(BaseModel):
    """Top-level thresholds file."""

    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)


# ---------------------------------------------------------------------------
# YAML persistence
# ---------------------------------------------------------------------------


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _merge(defaults: dict[str, Any], stored: dict[str, Any]) -> dict[str, Any]:
    merged = dict(defaults)
    for key, value in stored.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_hub_config(path: str | Path) -> HubConfig:
    """Stored values merged over the defaults.

    Raises:
        ValueError: If the stored values are inconsistent.
    """
    path = Path(path)
    if not path.exists():
        logger.info("Thresholds file not found at %s, using defaults", path)
        return HubConfig()

    stored = _load_yaml(path)
    config = HubConfig.model_validate(_merge(HubConfig().model_dump(mode="json"), stored))
    logger.info("Loaded thresholds from %s", path)
    return config


def save_hub_config(config: HubConfig, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False, allow_unicode=True)
    logger.info("Saved thresholds to %s", path)


def reset_hub_config(path: str | Path) -> HubConfig:
    """Delete the stored file and return the defaults."""
    path = Path(path)
    if path.exists():
        path.unlink()
        logger.info("Removed thresholds file %s", path)
    return HubConfig()


# ---------------------------------------------------------------------------
# Platform pricing rules
# ---------------------------------------------------------------------------


class PricingRulesFile(BaseModel):
    platforms: dict[str, PlatformConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_rules(self) -> PricingRulesFile:
        for name, rule in self.platforms.items():
            if not name.strip():
                raise ValueError("Platform names must not be blank")
            if not 0 <= rule.commission < 100:
                raise ValueError(f"{name}: commission must be within 0-100 (got {rule.commission})")
        return self


def load_pricing_rules(path: str | Path) -> dict[str, PlatformConfig]:
    """Default per-platform rules; empty when the file does not exist."""
    path = Path(path)
    if not path.exists():
        logger.warning("Pricing rules not found at %s, starting with none", path)
        return {}
    rules = PricingRulesFile.model_validate(_load_yaml(path)).platforms
    logger.info("Loaded %d platform pricing rules from %s", len(rules), path)
    return rules


def save_pricing_rules(rules: dict[str, PlatformConfig], path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = PricingRulesFile(platforms=rules).model_dump(mode="json")
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(payload, f, sort_keys=False, allow_unicode=True)

"""Configuration for the trading agent."""

from typing import Literal

from pydantic import BaseModel, Field


class AgentSettings(BaseModel):
    """Settings for TradingAgent signal gating and the run loop."""

    enabled: bool = True
    min_confidence: float = Field(default=0.45, ge=0.0, le=1.0)
    max_orders_per_symbol: int = Field(default=1, ge=1)
    trade_cooldown_minutes: float = Field(default=15, ge=0)
    min_price_change_percent: float = Field(default=0.5, ge=0)
    signal_dedup_minutes: float = Field(default=5, ge=0)
    order_type: Literal["MARKET", "LIMIT"] = "LIMIT"
    protective_orders: bool = False
    stale_order_minutes: float = Field(default=5, gt=0)
    order_retention_hours: float = Field(default=24, gt=0)
    loop_interval_seconds: float = Field(default=5, gt=0)
    error_backoff_seconds: float = Field(default=30, gt=0)

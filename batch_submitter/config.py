"""Batch submission configuration."""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


class BatchConfig(BaseModel):
    concurrency: int = Field(default=8, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_cap: float = Field(default=8.0, ge=0)
    rpc_endpoint: str = "http://localhost:8545"
    reject_on_threshold: float = Field(default=0.5, ge=0, le=1)
    broadcast_timeout: float = Field(default=30.0, gt=0)
    gas_price: Optional[int] = Field(default=None, ge=0)
    wait_for_receipt: bool = False
    receipt_timeout: float = Field(default=120.0, gt=0)
    receipt_poll_interval: float = Field(default=1.0, gt=0)

    @model_validator(mode="after")
    def _check_backoff(self) -> "BatchConfig":
        if self.backoff_cap < self.backoff_base:
            raise ValueError("backoff_cap must not be below backoff_base.")
        return self

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> "BatchConfig":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Cannot read config {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Config {path} must be a JSON object.")
        return cls.model_validate(_merge(data, overrides))

    def with_overrides(self, **overrides: Any) -> "BatchConfig":
        return self.model_validate(_merge(self.model_dump(), overrides))

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number ``attempt``."""
        return min(self.backoff_cap, self.backoff_base * (2 ** (attempt - 1)))


def _merge(data: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(data)
    merged.update({key: value for key, value in overrides.items() if value is not None})
    return merged

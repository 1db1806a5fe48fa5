"""Cost estimates from text length and the per-model pricing table."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from .chunker import estimate_tokens

logger = logging.getLogger(__name__)

TOKENS_PER_PRICE_UNIT = 1_000_000


def estimate_cost(input_text: str, output_text: str, pricing: Optional[Mapping[str, float]]) -> float:
    if not pricing:
        return 0.0
    input_cost = estimate_tokens(input_text) / TOKENS_PER_PRICE_UNIT * pricing["input_per_1m"]
    output_cost = estimate_tokens(output_text) / TOKENS_PER_PRICE_UNIT * pricing["output_per_1m"]
    return input_cost + output_cost


class CostEstimator:
    def __init__(self, pricing_table: Dict[str, Dict[str, float]]):
        self.pricing_table = pricing_table

    def estimate(self, input_text: str, output_text: str, model: str) -> float:
        pricing = self.pricing_table.get(model)
        if pricing is None:
            logger.warning("No pricing configured for model %s; reporting zero cost", model)
            return 0.0
        return estimate_cost(input_text, output_text, pricing)

    def pre_submission(self, text: str, model: str) -> float:
        """Expected cost before sending, assuming output about as long as input."""
        if not text:
            return 0.0
        return self.estimate(text, text, model) * 2

"""
Token estimation policy.

The Cost Management API reports cost, not tokens. Token and request counts shown
on the dashboard are therefore approximations: cost divided by an average
per-token price for the model, split 70/30 between input and output, with one
request assumed per 1000 tokens. These numbers are not measurements and can be
far off for workloads whose input/output mix differs from the assumption.
"""
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from costpulse.models import CanonicalModel

# Blended USD price per token, used only for estimation.
AVERAGE_PRICE_PER_TOKEN: dict[CanonicalModel, float] = {
    CanonicalModel.GPT_4O: 0.000006,
    CanonicalModel.GPT_4O_MINI: 0.000000375,
    CanonicalModel.GPT_35_TURBO: 0.000001,
    CanonicalModel.GPT_4_TURBO: 0.00002,
    CanonicalModel.GPT_4: 0.000045,
}
DEFAULT_PRICE_PER_TOKEN = 0.00001
INPUT_SHARE = 0.7
OUTPUT_SHARE = 0.3
TOKENS_PER_REQUEST = 1000


@dataclass(frozen=True)
class TokenEstimate:
    total_tokens: int
    input_tokens: int
    output_tokens: int
    requests: int


class EstimationPolicy(ABC):
    """Turns a cost figure into estimated token and request counts."""

    @abstractmethod
    def estimate(self, cost: float, model: CanonicalModel) -> TokenEstimate:
        pass


class AveragePriceEstimation(EstimationPolicy):
    def __init__(
        self,
        price_per_token: dict[CanonicalModel, float] | None = None,
        default_price: float = DEFAULT_PRICE_PER_TOKEN,
        input_share: float = INPUT_SHARE,
        output_share: float = OUTPUT_SHARE,
    ):
        self.price_per_token = AVERAGE_PRICE_PER_TOKEN if price_per_token is None else price_per_token
        self.default_price = default_price
        self.input_share = input_share
        self.output_share = output_share

    def estimate(self, cost: float, model: CanonicalModel) -> TokenEstimate:
        if cost <= 0:
            return TokenEstimate(0, 0, 0, 0)
        price = self.price_per_token.get(model, self.default_price)
        tokens = math.floor(cost / price)
        return TokenEstimate(
            total_tokens=tokens,
            input_tokens=math.floor(tokens * self.input_share),
            output_tokens=math.floor(tokens * self.output_share),
            requests=tokens // TOKENS_PER_REQUEST,
        )

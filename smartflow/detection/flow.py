"""Flow scoring for smart-money, whale and public-figure wallet categories."""
from typing import Optional
import structlog

from smartflow.models import FlowAnalysis, FlowSnapshot

logger = structlog.get_logger()

LARGE_FLOW_USD = 100_000
STRONG_SMART_MONEY_FLOW_USD = 50_000
POSITIVE_SCORE = 50
STRONG_SCORE = 70


class FlowScorer:
    """Turns a flow snapshot into a 0-100 confidence score."""

    def score(self, snapshot: FlowSnapshot) -> int:
        """Score a snapshot additively and clamp the result to [0, 100]."""
        sm_flow = snapshot.smart_money_net_flow_usd or 0
        sm_count = snapshot.smart_money_wallet_count or 0
        whale_flow = snapshot.whale_net_flow_usd or 0
        whale_count = snapshot.whale_wallet_count or 0
        pf_flow = snapshot.public_figure_net_flow_usd or 0
        pf_count = snapshot.public_figure_wallet_count or 0

        score = 0

        # 1. Smart money
        if sm_flow > 0:
            score += 30
        if sm_count >= 3:
            score += 20
        if sm_count >= 5:
            score += 10

        # 2. Whales
        if whale_flow > 0:
            score += 20
        if whale_count >= 2:
            score += 10
        if whale_count >= 5:
            score += 10

        # 3. Public figures
        if pf_flow > 0:
            score += 10
        if pf_count >= 1:
            score += 5

        # 4. Size bonuses
        if sm_flow > LARGE_FLOW_USD:
            score += 15
        if whale_flow > LARGE_FLOW_USD:
            score += 10

        # 5. Inflow dominance
        flows = (sm_flow, whale_flow, pf_flow)
        total_positive = sum(f for f in flows if f > 0)
        total_negative = sum(abs(f) for f in flows if f < 0)
        if total_positive > total_negative * 2:
            score += 20

        return min(100, max(0, score))

    def analyze(self, snapshot: FlowSnapshot, token_id: Optional[int] = None) -> FlowAnalysis:
        """Score a snapshot and pair the two."""
        analysis = FlowAnalysis(snapshot=snapshot, score=self.score(snapshot), token_id=token_id)
        logger.debug(
            "flow_scored",
            token=snapshot.token_address,
            chain=snapshot.chain,
            score=analysis.score,
        )
        return analysis

    def is_positive(self, analysis: FlowAnalysis) -> bool:
        return (
            analysis.smart_money_net_flow_usd > 0
            and analysis.whale_net_flow_usd >= 0
            and analysis.score >= POSITIVE_SCORE
        )

    def has_strong_flow(self, analysis: FlowAnalysis) -> bool:
        return (
            analysis.score >= STRONG_SCORE
            and analysis.smart_money_wallet_count >= 3
            and analysis.smart_money_net_flow_usd > STRONG_SMART_MONEY_FLOW_USD
        )

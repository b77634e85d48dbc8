"""
Decay-weighted risk scoring.

Components:
    DecayScorer: Daily and live (forecast) score snapshots
    SeverityResolver: Event name to severity, with display-group rollup
"""

from riskcast.engine.scoring.decay_scorer import DecayScorer, ScoredEvent, ScoringConfig
from riskcast.engine.scoring.severity import SeverityResolver, most_severe

__all__ = [
    "DecayScorer",
    "ScoredEvent",
    "ScoringConfig",
    "SeverityResolver",
    "most_severe",
]

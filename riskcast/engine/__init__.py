"""
Riskcast engine core components.

This package contains the scheduling and scoring engines:

- Job queue: leasable work rows with stale-lease reclaim and bounded retries
- Dispatcher: per-user local-time eligibility and bounded fan-out
- Baseline evaluation: value kinds, mean/stddev and median/MAD baselines,
  event writes with day-scoped dedupe
- Decay scoring: per-severity decay curves, zones and the 7-day forecast
- Worker: runs leased jobs and reports a batch summary

All engine components are designed for:
- Stateless invocation (every coordination fact lives in the store)
- Idempotent writes (natural-key upserts, conditional job updates)
- Comprehensive observability (structured logging with job context)
"""

__version__ = "1.0.0"

__all__ = [
    "BaselineEvaluator",
    "DecayScorer",
    "Dispatcher",
    "JobQueue",
    "StressIndexCalculator",
    "Worker",
]

from riskcast.engine.baseline import BaselineEvaluator, StressIndexCalculator
from riskcast.engine.dispatch import Dispatcher
from riskcast.engine.jobs import JobQueue
from riskcast.engine.scoring import DecayScorer
from riskcast.engine.worker import Worker

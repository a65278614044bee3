"""
Rate Limiting & Admission Control

Client-side admission control for outbound registry calls:
- Sliding-window limiter with a bucketed usage ledger
- Blocking (thread) and cooperative (asyncio) acquisition
- Background sweep reclaiming capacity once per window
- In-process metrics
"""

from .config import InvalidConfiguration, QuotaConfig, TimeUnit
from .limiter import AdmissionLimiter, configure
from .metrics import get_metrics_collector, get_metrics_summary

__all__ = [
    "InvalidConfiguration",
    "QuotaConfig",
    "TimeUnit",
    "AdmissionLimiter",
    "configure",
    "get_metrics_collector",
    "get_metrics_summary",
]

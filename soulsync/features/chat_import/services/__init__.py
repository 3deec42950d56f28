"""
Service layer for the chat import feature.
"""

from .analysis_fetcher import AnalysisFetcher
from .analysis_monitor import RelationshipAnalysisMonitor
from .metrics_propagator import MetricsPropagator
from .progress_estimator import ProgressEstimator, calculate_estimated_time
from .status_poller import StatusPoller

__all__ = [
    "AnalysisFetcher",
    "RelationshipAnalysisMonitor",
    "MetricsPropagator",
    "ProgressEstimator",
    "calculate_estimated_time",
    "StatusPoller",
]

"""
abfunnel - A/B funnel metrics for browser test suites.

Collect per-run funnel metrics, aggregate them by variant, report winners.
"""

from abfunnel.aggregator import ReportAggregator
from abfunnel.collector import EventTracker, MetricsCollector
from abfunnel.config import ReportConfig, load_config
from abfunnel.variants import VariantResolver
from abfunnel.web_vitals import WebVitalsSampler

__version__ = "0.1.0"
__all__ = [
    "EventTracker",
    "MetricsCollector",
    "ReportAggregator",
    "ReportConfig",
    "VariantResolver",
    "WebVitalsSampler",
    "__version__",
    "load_config",
]

"""
Подпакет для анализа воронок и удержания.
"""

from ch_analytics.analysis.funnel import FunnelResult, FunnelStep
from ch_analytics.analysis.conversion import calculate_conversion_rates
from ch_analytics.analysis.dropoff import analyze_dropoffs
from ch_analytics.analysis.retention import retention_matrix, n_day_retention_rates

__all__ = [
    "FunnelResult",
    "FunnelStep",
    "calculate_conversion_rates",
    "analyze_dropoffs",
    "retention_matrix",
    "n_day_retention_rates"
]

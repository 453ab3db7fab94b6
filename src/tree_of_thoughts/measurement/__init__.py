"""Measurement layer: descriptive tree-quality metrics.

Public API
----------
- :class:`QualityCalculator` -- computes :class:`QualityMetrics`
- :class:`QualityGate` -- optional end-gate strategy on the composite score
"""

from tree_of_thoughts.measurement.quality import (
    QualityCalculator,
    QualityGate,
    QualityMetrics,
)

__all__ = [
    "QualityCalculator",
    "QualityGate",
    "QualityMetrics",
]

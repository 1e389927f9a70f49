"""
End-to-end intervention analysis.
"""

from .intervention_analyzer import InterventionAnalyzer, InterventionAnalysisResults

__all__ = [
    "InterventionAnalyzer",
    "InterventionAnalysisResults",
]

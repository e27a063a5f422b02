"""
Sentinel Core Processors

Public exports for feature engineering processors.
"""

from core.processors.features import FeatureExtractor, FeatureVector

__all__ = [
    "FeatureExtractor",
    "FeatureVector",
]

"""
Payload normalizers for wearable data providers.

Importing the package registers every normalizer with NormalizerRegistry.
"""

from .models import MetricCategory, MetricRecord, NormalizedBatch, WorkoutRecord
from .base import ComputedSpec, FieldSpec, PayloadNormalizer, extract_metrics, resolve_path
from .registry import NormalizerRegistry
from .inbody import InBodyNormalizer
from .terra import TerraNormalizer
from .whoop import WhoopNormalizer, sport_name

__all__ = [
    "MetricCategory",
    "MetricRecord",
    "NormalizedBatch",
    "WorkoutRecord",
    "ComputedSpec",
    "FieldSpec",
    "PayloadNormalizer",
    "extract_metrics",
    "resolve_path",
    "NormalizerRegistry",
    "InBodyNormalizer",
    "TerraNormalizer",
    "WhoopNormalizer",
    "sport_name",
]

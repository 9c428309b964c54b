"""
InBody analysis normalizer.

InBody scans arrive as already-extracted analysis values (weight, body fat,
muscle mass, BMI, BMR, ...) keyed by the scan's test date. They are stored
as INBODY canonical records, the most trusted body-composition source.
"""

from typing import Any, Dict, List, Optional
import logging

from .base import FieldSpec, PayloadNormalizer, extract_metrics, first_value, parse_date, round_half_up
from .models import MetricCategory as C, NormalizedBatch
from .registry import NormalizerRegistry

logger = logging.getLogger(__name__)

ANALYSIS_SPECS = (
    FieldSpec("Weight", "kg", C.BODY_COMPOSITION, ("weight",)),
    FieldSpec("Body Fat %", "%", C.BODY_COMPOSITION, ("percent_body_fat",)),
    FieldSpec("Skeletal Muscle Mass", "kg", C.BODY_COMPOSITION, ("skeletal_muscle_mass",)),
    FieldSpec("BMI", None, C.BODY_COMPOSITION, ("bmi",)),
    FieldSpec("BMR", "kcal", C.BODY_COMPOSITION, ("bmr",), round_half_up),
    FieldSpec("Body Fat Mass", "kg", C.BODY_COMPOSITION, ("body_fat_mass",)),
    FieldSpec("Visceral Fat Area", "cm²", C.BODY_COMPOSITION, ("visceral_fat_area",)),
    FieldSpec("Total Body Water", "L", C.BODY_COMPOSITION, ("total_body_water",)),
)


@NormalizerRegistry.register
class InBodyNormalizer(PayloadNormalizer):

    @property
    def provider_name(self) -> str:
        return "INBODY"

    @property
    def display_name(self) -> str:
        return "InBody"

    @property
    def data_types(self) -> List[str]:
        return ["analysis"]

    def normalize(
        self,
        data_type: str,
        items: List[Dict[str, Any]],
        source: str = "INBODY",
        external_user_id: Optional[str] = None,
    ) -> NormalizedBatch:
        batch = NormalizedBatch(provider=self.provider_name, external_user_id=external_user_id, source=source)
        if not self.handles(data_type):
            return batch

        for item in items:
            if not isinstance(item, dict):
                batch.skipped += 1
                continue
            measurement_date = parse_date(first_value(item, ("test_date",)))
            if measurement_date is None:
                logger.warning("Skipping InBody analysis without a usable test_date")
                batch.skipped += 1
                continue

            records, failed = extract_metrics(
                item,
                ANALYSIS_SPECS,
                measurement_date,
                source,
                f"inbody_{measurement_date.isoformat()}",
            )
            batch.records.extend(records)
            batch.skipped += failed

        return batch

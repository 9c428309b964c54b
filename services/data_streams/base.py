"""
Base building blocks for payload normalizers.

Provider payloads are mapped through declarative tables of FieldSpec rows
instead of per-field imperative code. Each row is extracted independently:
a missing, null or malformed field only drops that one metric.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import math
import re

from .models import MetricRecord, NormalizedBatch

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000
SECONDS_PER_HOUR = 3600
KJ_PER_KCAL = 4.184

_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def resolve_path(obj: Any, path: str) -> Any:
    """
    Defensive nested lookup: `resolve_path(d, "a.b[0].c")`.

    Returns None as soon as an intermediate value is missing or of the
    wrong type. Never raises.
    """
    current = obj
    for name, index in _PATH_TOKEN.findall(path):
        if current is None:
            return None
        if name:
            if not isinstance(current, dict):
                return None
            current = current.get(name)
        else:
            if not isinstance(current, (list, tuple)):
                return None
            i = int(index)
            current = current[i] if i < len(current) else None
    return current


def to_number(value: Any) -> Optional[float]:
    """Real numbers only. Booleans, numeric strings and NaN are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value:  # NaN
        return None
    return float(value)


def first_number(obj: Any, paths: Sequence[str]) -> Optional[float]:
    for path in paths:
        number = to_number(resolve_path(obj, path))
        if number is not None:
            return number
    return None


def first_value(obj: Any, paths: Sequence[str]) -> Any:
    for path in paths:
        value = resolve_path(obj, path)
        if value not in (None, ""):
            return value
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; 'Z' suffix accepted. None when unparseable."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    """
    Calendar date of a timestamp as written by the provider.

    The date part is taken without timezone conversion, so a sleep that
    ends at 07:00 local time lands on that local day.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


# Transforms
def ms_to_hours(value: float) -> float:
    return round(value / MS_PER_HOUR, 2)


def seconds_to_hours(value: float) -> float:
    return round(value / SECONDS_PER_HOUR, 2)


def grams_to_kg(value: float) -> float:
    return round(value / 1000, 2)


def kj_to_kcal(value: float) -> float:
    return float(round(value / KJ_PER_KCAL))


def round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def identity(value: float) -> float:
    return value


@dataclass(frozen=True)
class FieldSpec:
    """
    One row of a mapping table.

    The first of `paths` that resolves to a number is used, passed through
    `transform`, and emitted as `metric_name`.
    """
    metric_name: str
    unit: Optional[str]
    category: str
    paths: Tuple[str, ...]
    transform: Callable[[float], float] = identity

    def extract(self, obj: Any) -> Optional[float]:
        number = first_number(obj, self.paths)
        if number is None:
            return None
        return self.transform(number)


@dataclass(frozen=True)
class ComputedSpec:
    """Mapping row whose value is derived from the whole item (e.g. end - start)."""
    metric_name: str
    unit: Optional[str]
    category: str
    compute: Callable[[Any], Optional[float]]

    def extract(self, obj: Any) -> Optional[float]:
        return to_number(self.compute(obj))


def extract_metrics(
    obj: Any,
    specs: Iterable[Any],
    measurement_date: date,
    source: str,
    id_prefix: str,
) -> Tuple[List[MetricRecord], int]:
    """
    Run a mapping table over one payload item.

    Returns:
        (records, failed) where failed counts rows that raised while
        extracting; rows that are simply absent are not counted
    """
    records: List[MetricRecord] = []
    failed = 0

    for spec in specs:
        try:
            value = spec.extract(obj)
        except Exception as e:
            failed += 1
            logger.warning(f"Failed to extract {spec.metric_name} from {source} payload: {e}")
            continue

        if value is None:
            continue

        records.append(
            MetricRecord(
                metric_name=spec.metric_name,
                value=value,
                unit=spec.unit,
                metric_category=spec.category,
                source=source,
                measurement_date=measurement_date,
                external_id=f"{id_prefix}_{slugify(spec.metric_name)}",
            )
        )

    return records, failed


class PayloadNormalizer(ABC):
    """
    Base class for provider payload normalizers.

    Each provider implements this interface and registers itself with
    NormalizerRegistry; the webhook pipeline looks normalizers up by
    provider name.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Upper-case provider identifier, e.g. 'TERRA', 'WHOOP'."""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        pass

    @property
    def data_types(self) -> List[str]:
        """Payload types this normalizer produces records for."""
        return []

    def handles(self, data_type: str) -> bool:
        return data_type in self.data_types

    @abstractmethod
    def normalize(
        self,
        data_type: str,
        items: List[Dict[str, Any]],
        source: str,
        external_user_id: Optional[str] = None,
    ) -> NormalizedBatch:
        """
        Convert payload items of one type into canonical records.

        Args:
            data_type: Payload type ('body', 'sleep', 'recovery', ...)
            items: Payload items; non-dict items are skipped
            source: Upper-case source stamped on every record
            external_user_id: Provider-side user id, carried for logging
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} provider={self.provider_name}>"

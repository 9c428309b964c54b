from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime, date
from uuid import UUID
from typing import Optional, List, Dict, Any


class ManualMetricCreate(BaseModel):
    """Schema for a manually entered metric (stored with source MANUAL)"""
    metric_name: str = Field(min_length=1, max_length=100)
    value: float
    unit: Optional[str] = None
    metric_category: str = "body_composition"
    measurement_date: date


class InBodyAnalysisCreate(BaseModel):
    """Values already extracted from an InBody scan (stored with source INBODY)"""
    test_date: datetime
    weight: Optional[float] = Field(default=None, gt=0)
    percent_body_fat: Optional[float] = Field(default=None, ge=0, le=100)
    skeletal_muscle_mass: Optional[float] = Field(default=None, gt=0)
    body_fat_mass: Optional[float] = Field(default=None, ge=0)
    visceral_fat_area: Optional[float] = Field(default=None, ge=0)
    total_body_water: Optional[float] = Field(default=None, gt=0)
    bmi: Optional[float] = Field(default=None, gt=0)
    bmr: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def require_a_measurement(self):
        values = self.model_dump(exclude={"test_date"}, exclude_none=True)
        if not values:
            raise ValueError("InBody analysis carries no measurements")
        return self


class UnifiedMetricResponse(BaseModel):
    id: UUID
    user_id: UUID
    metric_name: str
    value: float
    unit: Optional[str] = None
    metric_category: str
    source: str
    measurement_date: date
    external_id: Optional[str] = None
    priority: int
    confidence_score: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResolvedMetricResponse(BaseModel):
    """Current value for one metric after source reconciliation"""
    value: float
    unit: Optional[str] = None
    source: str
    measurement_date: date
    priority: int
    confidence: int


class SourceStatsResponse(BaseModel):
    count: int
    last_date: Optional[date] = None
    coverage_pct: float


class BodyMetricsResponse(BaseModel):
    user_id: UUID
    days: int
    current: Dict[str, Optional[ResolvedMetricResponse]]
    timeline: List[Dict[str, Any]]  # date, source, priority, confidence + one key per metric field
    sparklines: Dict[str, List[float]]
    source_stats: Dict[str, SourceStatsResponse]


class ProviderConnectionResponse(BaseModel):
    id: UUID
    user_id: UUID
    provider: str
    external_user_id: str
    device_provider: str
    is_active: bool
    last_sync_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

"""
Pydantic request/response models for the ABG Interpreter API.
"""
import math
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .reference_ranges import MEASURED_FIELDS, canonical_field


class CamelModel(BaseModel):
    """Models serialised with camelCase keys, as the web client expects."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Measured values ---

class MeasuredValue(BaseModel):
    value: Optional[float] = None
    error: Optional[str] = None
    warning: Optional[str] = None  # informational, may accompany a value

    @model_validator(mode="after")
    def value_cleared_on_error(self) -> "MeasuredValue":
        if self.error is not None:
            self.value = None
        return self


def _finite_number(raw: Any) -> Optional[float]:
    """Unwrap ``{value, error, warning}`` or a bare number into a finite float.

    An entry carrying an error counts as missing, whatever its value.
    """
    if isinstance(raw, dict):
        if raw.get("error") is not None:
            return None
        raw = raw.get("value")
    elif isinstance(raw, MeasuredValue):
        raw = raw.value
    if raw is None or isinstance(raw, bool):
        return None
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


# --- Analysis ---

class AnalyzeRequest(CamelModel):
    values: Dict[str, Any] = Field(default_factory=dict)
    clinical_history: Optional[str] = None
    sample_type: Optional[str] = None
    mode: Literal["manual", "image"] = "manual"
    image: Optional[str] = None  # base64, only for mode="image"

    @field_validator("values", mode="before")
    @classmethod
    def values_is_mapping(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v

    def numeric_values(self) -> Dict[str, Optional[float]]:
        """Canonical field -> finite float (or None), extra keys kept at the end."""
        provided = {canonical_field(k): _finite_number(v) for k, v in self.values.items()}
        ordered = {name: provided.pop(name, None) for name in MEASURED_FIELDS}
        ordered.update(provided)
        return ordered


class AnalysisResult(CamelModel):
    key_findings: str
    compensation_analysis: str
    hh_analysis: str
    stewart_analysis: str
    additional_calculations: str
    differentials: str


# --- OCR ---

class OcrRequest(CamelModel):
    image: str

    @field_validator("image")
    @classmethod
    def image_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Image data required")
        return v.strip()


class ExtractedValues(BaseModel):
    ph: MeasuredValue = Field(default_factory=MeasuredValue)
    pco2: MeasuredValue = Field(default_factory=MeasuredValue)
    po2: MeasuredValue = Field(default_factory=MeasuredValue)
    hco3: MeasuredValue = Field(default_factory=MeasuredValue)
    sodium: MeasuredValue = Field(default_factory=MeasuredValue)
    potassium: MeasuredValue = Field(default_factory=MeasuredValue)
    chloride: MeasuredValue = Field(default_factory=MeasuredValue)
    albumin: MeasuredValue = Field(default_factory=MeasuredValue)
    lactate: MeasuredValue = Field(default_factory=MeasuredValue)
    glucose: MeasuredValue = Field(default_factory=MeasuredValue)
    calcium: MeasuredValue = Field(default_factory=MeasuredValue)
    hb: MeasuredValue = Field(default_factory=MeasuredValue)
    be: MeasuredValue = Field(default_factory=MeasuredValue)
    fio2: MeasuredValue = Field(default_factory=MeasuredValue)


# --- Jobs ---

class JobKind(str, Enum):
    ANALYSIS = "analysis"
    OCR = "ocr"


class JobStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class JobRecord(CamelModel):
    status: JobStatus
    data: Optional[Any] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class JobAccepted(CamelModel):
    job_id: str


class ErrorResponse(BaseModel):
    error: str

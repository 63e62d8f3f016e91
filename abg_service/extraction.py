"""
Turn raw Gemini text into fully-keyed, validated results.

Two result shapes exist:
  - analysis: six markdown sections (``ANALYSIS_KEYS``), placeholders for
    anything missing or too short to be a real section
  - measured values: one ``{value, error, warning}`` entry per field in
    ``MEASURED_FIELDS``, parsed, range checked and unit corrected

``extract_analysis`` and ``extract_measured_values`` never raise. They return
an ``Extraction`` whose ``data`` is always fully keyed; ``error`` is set when
the text held no usable JSON at all, and callers decide whether that fails
the request.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import ExtractionError
from .json_utils import parse_model_json
from .models import AnalysisResult, ExtractedValues, MeasuredValue
from .reference_ranges import (
    FIELD_LABELS,
    KPA_PLAUSIBLE_FLOOR,
    MEASURED_FIELDS,
    MMHG_PER_KPA,
    PHYSIOLOGICAL_BOUNDS,
    canonical_field,
)

logger = logging.getLogger(__name__)

ANALYSIS_KEYS = (
    "keyFindings",
    "compensationAnalysis",
    "hhAnalysis",
    "stewartAnalysis",
    "additionalCalculations",
    "differentials",
)
PLACEHOLDER_TEXT = "Not performed for this analysis."
MIN_SECTION_CHARS = 5

ERROR_UNREADABLE = "unreadable"
ERROR_OUT_OF_RANGE = "out of physiological range"

_MISSING_TOKENS = {"", "null", "none", "n/a", "na", "-", "--", "not provided"}
_FLAG_RE = re.compile(r"\([^)]*\)|[#*↑↓↗↘←→<>]")
_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)")


@dataclass
class Extraction:
    """Tagged extraction result: ``data`` is always complete, ``error`` marks failure."""
    data: Dict[str, Any]
    error: Optional[ExtractionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return self.data


# ---------------------------------------------------------------------------
# Analysis sections
# ---------------------------------------------------------------------------

def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _section_text(raw: Any) -> Optional[str]:
    """Coerce whatever the model put in a section into markdown text."""
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw.strip()
    if isinstance(raw, list):
        return "\n".join(f"- {_section_text(item) or ''}".rstrip() for item in raw).strip()
    if isinstance(raw, dict):
        return "\n".join(f"**{k}**: {_section_text(v) or ''}" for k, v in raw.items()).strip()
    return str(raw)


def complete_analysis(parsed: Dict[str, Any]) -> Dict[str, str]:
    """Return all ``ANALYSIS_KEYS``, substituting the placeholder where needed."""
    result = {}
    for key in ANALYSIS_KEYS:
        raw = parsed.get(key)
        if raw is None:
            raw = parsed.get(_snake(key))
        text = _section_text(raw)
        if not text or len(text) < MIN_SECTION_CHARS:
            if raw is not None:
                logger.warning(f"Section {key} too short ({text!r}), using placeholder")
            text = PLACEHOLDER_TEXT
        result[key] = text
    # Round-trip through the schema so the shape is guaranteed
    return AnalysisResult.model_validate(result).model_dump(by_alias=True)


def extract_analysis(text: str) -> Extraction:
    try:
        parsed = parse_model_json(text)
    except ExtractionError as e:
        return Extraction(data=complete_analysis({}), error=e)

    missing = [k for k in ANALYSIS_KEYS if k not in parsed and _snake(k) not in parsed]
    if missing:
        logger.info(f"Analysis missing sections {missing}, backfilling")
    return Extraction(data=complete_analysis(parsed))


# ---------------------------------------------------------------------------
# Measured values
# ---------------------------------------------------------------------------

def coerce_number(raw: Any) -> MeasuredValue:
    """Parse a raw OCR value. Missing -> empty entry; garbage -> ``unreadable``."""
    if raw is None:
        return MeasuredValue()
    if isinstance(raw, bool):
        return MeasuredValue(error=ERROR_UNREADABLE)
    if isinstance(raw, (int, float)):
        number = float(raw)
    else:
        cleaned = str(raw).strip()
        if cleaned.lower() in _MISSING_TOKENS:
            return MeasuredValue()
        cleaned = _FLAG_RE.sub(" ", cleaned)
        if "," in cleaned and "." not in cleaned:
            cleaned = cleaned.replace(",", ".")
        match = _NUMBER_RE.search(cleaned)
        if not match:
            return MeasuredValue(error=ERROR_UNREADABLE)
        number = float(match.group())
    if not math.isfinite(number):
        return MeasuredValue(error=ERROR_UNREADABLE)
    return MeasuredValue(value=number)


def _correct_kpa_scaling(field: str, number: float) -> Optional[MeasuredValue]:
    """Undo a spurious /7.5 on a kPa gas value, if that lands it back in range."""
    floor = KPA_PLAUSIBLE_FLOOR.get(field)
    if floor is None or number >= floor:
        return None
    low, high = PHYSIOLOGICAL_BOUNDS[field]
    corrected = round(number * MMHG_PER_KPA, 2)
    if not (max(low, floor) <= corrected <= high):
        return None
    label = FIELD_LABELS[field][0]
    logger.warning(f"{label} {number} kPa implausibly low, corrected to {corrected} kPa")
    return MeasuredValue(
        value=corrected,
        warning=(
            f"{label} of {number} kPa is implausibly low and looked mis-scaled; "
            f"corrected (x{MMHG_PER_KPA}) to {corrected} kPa. Please verify against the report."
        ),
    )


def normalize_field(field: str, raw: Any) -> MeasuredValue:
    """Coerce, unit-correct and range check one measured value."""
    entry = coerce_number(raw)
    if entry.value is None:
        return entry

    corrected = _correct_kpa_scaling(field, entry.value)
    if corrected is not None:
        return corrected

    low, high = PHYSIOLOGICAL_BOUNDS[field]
    if not low <= entry.value <= high:
        logger.warning(f"{field} value {entry.value} outside bounds [{low}, {high}], discarding")
        return MeasuredValue(error=ERROR_OUT_OF_RANGE)
    return entry


def _reclean(field: str, entry: Dict[str, Any]) -> MeasuredValue:
    """Normalise an entry that is already ``{value, error, warning}`` shaped."""
    value = entry.get("value")
    if value is None:
        return MeasuredValue(error=entry.get("error"))
    result = normalize_field(field, value)
    if result.value is not None and result.warning is None and entry.get("warning"):
        result.warning = entry["warning"]
    return result


def normalize_measured_values(parsed: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Return every field in ``MEASURED_FIELDS`` as a ``{value, error, warning}`` dict."""
    nested = parsed.get("values")
    if isinstance(nested, dict) and not any(canonical_field(k) in MEASURED_FIELDS for k in parsed):
        parsed = nested

    raw_by_field: Dict[str, Any] = {}
    for key, raw in parsed.items():
        raw_by_field.setdefault(canonical_field(key), raw)

    result = {}
    for field in MEASURED_FIELDS:
        raw = raw_by_field.get(field)
        if isinstance(raw, dict):
            result[field] = _reclean(field, raw)
        else:
            result[field] = normalize_field(field, raw)
    return ExtractedValues(**result).model_dump()


def extract_measured_values(text: str) -> Extraction:
    try:
        parsed = parse_model_json(text)
    except ExtractionError as e:
        return Extraction(data=normalize_measured_values({}), error=e)
    return Extraction(data=normalize_measured_values(parsed))

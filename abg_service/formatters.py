"""
Text formatting utilities for blood gas data.

Converts measured and derived values into the line-per-value blocks used in
Gemini prompts. Missing values are always written out as "not provided" /
"not available" so the model never fills the gap itself.
"""
import math
from typing import Mapping, Optional

from .reference_ranges import FIELD_LABELS, MEASURED_FIELDS

NOT_PROVIDED = "not provided"
NOT_AVAILABLE = "not available"


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def format_number(value: float) -> str:
    """Plain decimal rendering without float noise (7.150000001 -> 7.15)."""
    return f"{value:.4f}".rstrip("0").rstrip(".") if value != int(value) else str(int(value))


def format_measured_values(values: Mapping[str, Optional[float]]) -> str:
    """Format canonical fields in fixed order, then any extra numeric keys."""
    lines = []
    for name in MEASURED_FIELDS:
        label, unit = FIELD_LABELS[name]
        value = values.get(name)
        if _is_number(value):
            lines.append(f"- {label}: {format_number(value)}{' ' + unit if unit else ''}")
        else:
            lines.append(f"- {label}: {NOT_PROVIDED}")
    for name, value in values.items():
        if name in FIELD_LABELS or not _is_number(value):
            continue
        lines.append(f"- {name}: {format_number(value)}")
    return "\n".join(lines)


def format_calculations(calculations: Mapping[str, Optional[float]]) -> str:
    lines = []
    for label, value in calculations.items():
        rendered = format_number(value) if _is_number(value) else NOT_AVAILABLE
        lines.append(f"- {label}: {rendered}")
    return "\n".join(lines) if lines else f"- {NOT_AVAILABLE}"


def format_text(value: Optional[str], default: str = NOT_PROVIDED) -> str:
    value = (value or "").strip()
    return value if value else default

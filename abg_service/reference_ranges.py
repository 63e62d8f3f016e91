"""
Measured blood gas fields, their display labels/units and the physiological
bounds used to reject misread values.

Gas tensions (pCO2, pO2) are always kPa. FiO2 is a percentage.
"""
from typing import Dict, Tuple

# 1 kPa = 7.5 mmHg
MMHG_PER_KPA = 7.5

# Canonical key order for ExtractedValues and for prompt rendering
MEASURED_FIELDS: Tuple[str, ...] = (
    "ph",
    "pco2",
    "po2",
    "hco3",
    "sodium",
    "potassium",
    "chloride",
    "albumin",
    "lactate",
    "glucose",
    "calcium",
    "hb",
    "be",
    "fio2",
)

# Inclusive plausible ranges; anything outside is treated as a misread
PHYSIOLOGICAL_BOUNDS: Dict[str, Tuple[float, float]] = {
    "ph": (6.0, 8.0),
    "pco2": (0.5, 30.0),
    "po2": (0.5, 100.0),
    "hco3": (2.0, 60.0),
    "sodium": (80.0, 200.0),
    "potassium": (1.0, 12.0),
    "chloride": (50.0, 150.0),
    "albumin": (10.0, 70.0),
    "lactate": (0.0, 30.0),
    "glucose": (0.0, 80.0),
    "calcium": (0.2, 5.0),
    "hb": (30.0, 250.0),
    "be": (-50.0, 50.0),
    "fio2": (21.0, 100.0),
}

# Below these a kPa reading is implausible and most likely mis-scaled (mmHg / 7.5 twice)
KPA_PLAUSIBLE_FLOOR: Dict[str, float] = {
    "pco2": 2.0,
    "po2": 2.0,
}

FIELD_LABELS: Dict[str, Tuple[str, str]] = {
    "ph": ("pH", ""),
    "pco2": ("pCO2", "kPa"),
    "po2": ("pO2", "kPa"),
    "hco3": ("HCO3-", "mmol/L"),
    "sodium": ("Na+", "mmol/L"),
    "potassium": ("K+", "mmol/L"),
    "chloride": ("Cl-", "mmol/L"),
    "albumin": ("Albumin", "g/L"),
    "lactate": ("Lactate", "mmol/L"),
    "glucose": ("Glucose", "mmol/L"),
    "calcium": ("Ionised Ca2+", "mmol/L"),
    "hb": ("Haemoglobin", "g/L"),
    "be": ("Base Excess", "mmol/L"),
    "fio2": ("FiO2", "%"),
}

# Alternative keys clients send for the same quantity
FIELD_ALIASES: Dict[str, str] = {
    "na": "sodium",
    "k": "potassium",
    "cl": "chloride",
    "alb": "albumin",
    "lac": "lactate",
    "glu": "glucose",
    "ca": "calcium",
    "thb": "hb",
    "hemoglobin": "hb",
    "haemoglobin": "hb",
    "base_excess": "be",
    "baseexcess": "be",
    "bicarbonate": "hco3",
}


def canonical_field(name: str) -> str:
    key = str(name).strip().lower()
    return FIELD_ALIASES.get(key, key)

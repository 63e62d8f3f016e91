"""
Standard acid-base arithmetic precomputed server-side and handed to Gemini,
so the model interprets numbers rather than calculating them.

Every function returns None when an input it needs is missing.
"""
from typing import Dict, Mapping, Optional

from .reference_ranges import MMHG_PER_KPA

NORMAL_ANION_GAP = 12.0
NORMAL_ALBUMIN_G_L = 40.0
NORMAL_HCO3 = 24.0


def _r(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


def anion_gap(na, k, cl, hco3) -> Optional[float]:
    """AG = (Na+ + K+) - (Cl- + HCO3-)"""
    if None in (na, k, cl, hco3):
        return None
    return _r((na + k) - (cl + hco3))


def corrected_anion_gap(ag, albumin) -> Optional[float]:
    """Albumin-corrected AG = AG + 0.25 x (40 - albumin g/L)"""
    if ag is None or albumin is None:
        return None
    return _r(ag + 0.25 * (NORMAL_ALBUMIN_G_L - albumin))


def delta_ratio(ag, hco3) -> Optional[float]:
    """(AG - 12) / (24 - HCO3-); undefined when HCO3- is 24."""
    if ag is None or hco3 is None or hco3 == NORMAL_HCO3:
        return None
    return _r((ag - NORMAL_ANION_GAP) / (NORMAL_HCO3 - hco3))


def sid_apparent(na, k, cl) -> Optional[float]:
    if None in (na, k, cl):
        return None
    return _r((na + k) - cl)


def sid_effective(hco3, albumin, ph) -> Optional[float]:
    """SIDe ~ HCO3- + albumin x (0.123 x pH - 0.631)"""
    if None in (hco3, albumin, ph):
        return None
    return _r(hco3 + albumin * (0.123 * ph - 0.631))


def strong_ion_gap(sida, side) -> Optional[float]:
    if sida is None or side is None:
        return None
    return _r(sida - side)


def winters_expected_pco2_mmhg(hco3) -> Optional[float]:
    """Winter's formula: expected pCO2 (mmHg) = 1.5 x HCO3- + 8 (+/- 2)"""
    if hco3 is None:
        return None
    return _r(1.5 * hco3 + 8)


def pf_ratio(po2_kpa, fio2_percent, sample_type: Optional[str]) -> Optional[float]:
    """PaO2/FiO2 in mmHg; only meaningful on arterial samples."""
    if po2_kpa is None or not fio2_percent:
        return None
    if (sample_type or "").strip().lower() != "arterial":
        return None
    return _r((po2_kpa * MMHG_PER_KPA) / (fio2_percent / 100.0))


def precompute(values: Mapping[str, Optional[float]], sample_type: Optional[str] = None) -> Dict[str, Optional[float]]:
    """All derived values, keyed by the label used in the prompt."""
    na, k, cl = values.get("sodium"), values.get("potassium"), values.get("chloride")
    hco3, albumin, ph = values.get("hco3"), values.get("albumin"), values.get("ph")

    ag = anion_gap(na, k, cl, hco3)
    sida = sid_apparent(na, k, cl)
    side = sid_effective(hco3, albumin, ph)
    winters_mmhg = winters_expected_pco2_mmhg(hco3)

    return {
        "Anion Gap (AG)": ag,
        "Albumin-corrected AG": corrected_anion_gap(ag, albumin),
        "Delta Ratio": delta_ratio(ag, hco3),
        "SIDa": sida,
        "SIDe": side,
        "SIG": strong_ion_gap(sida, side),
        "Winter's expected pCO2 (mmHg)": winters_mmhg,
        "Winter's expected pCO2 (kPa)": _r(winters_mmhg / MMHG_PER_KPA) if winters_mmhg is not None else None,
        "P/F Ratio (mmHg)": pf_ratio(values.get("po2"), values.get("fio2"), sample_type),
    }

"""Derived-test formulas.

Each formula receives the canonical values of its input tests (keyed by test
id) and the patient context, and returns the derived canonical value or None
when the inputs do not allow a result (e.g. division by zero).
"""

from collections.abc import Callable, Mapping

from labdesk.schemas.catalog import PatientContext

Formula = Callable[[Mapping[str, float], PatientContext], float | None]


def ck_mb_index(values: Mapping[str, float], patient: PatientContext) -> float | None:
    """CK-MB relative index: CK-MB / CK total * 100."""
    ck_total = values["ck_total"]
    if ck_total == 0:
        return None
    return values["ck_mb"] / ck_total * 100


def anion_gap(values: Mapping[str, float], patient: PatientContext) -> float | None:
    """Anion gap: Na - (Cl + HCO3)."""
    return values["sodium"] - (values["chloride"] + values["co2_bicarb"])


def ckd_epi_2021(values: Mapping[str, float], patient: PatientContext) -> float | None:
    """eGFR by the race-free CKD-EPI 2021 creatinine equation.

    Creatinine must be in mg/dL. Patients recorded with sex "other" use the
    male coefficients, matching the equation's reference population default.
    """
    creatinine = values["creatinine"]
    if creatinine <= 0:
        return None

    female = patient.sex == "F"
    kappa = 0.7 if female else 0.9
    alpha = -0.241 if female else -0.302
    multiplier = 1.012 if female else 1.0

    ratio = creatinine / kappa
    egfr = (
        142
        * min(ratio, 1) ** alpha
        * max(ratio, 1) ** -1.2
        * 0.9938 ** patient.age
        * multiplier
    )
    return float(round(egfr))


FORMULAS: dict[str, Formula] = {
    "ck_mb_index": ck_mb_index,
    "anion_gap": anion_gap,
    "ckd_epi_2021": ckd_epi_2021,
}

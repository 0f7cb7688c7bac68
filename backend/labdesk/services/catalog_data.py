"""Bundled laboratory test catalog.

Cardiac, CBC and CMP panels with unit factors, demographic reference bands,
critical thresholds and derived-test formulas.

Reference values are demo-grade, sourced from standard clinical chemistry
references. Not for clinical use.
"""

# ---------------------------------------------------------------------------
# Catalog table
#
# Structure:
#   test id -> {
#       "display_name": str,
#       "loinc": str,
#       "kind": "numeric" | "calculated",   # optional, default numeric
#       "canonical_unit": str,
#       "units": [{code, factor, decimals}],  # factor: canonical per display unit
#       "reference_bands": [{sex, min_age, max_age, low, high}],
#       "critical_ranges": [{low, high}],
#       "panels": [panel ids],
#       "synonyms": [str],
#       "derived": {formula, inputs},        # calculated tests only
#       "notes": str,                        # optional
#   }
#
# All bounds are in the canonical unit. Bands omit min_age/max_age when they
# apply to every age, and omit sex when they apply to both sexes.
# ---------------------------------------------------------------------------

CATALOG_VERSION = "2.1"

PANELS: list[dict] = [
    {"id": "cardiac", "label": "Cardiac Panel"},
    {"id": "cbc", "label": "CBC"},
    {"id": "cmp", "label": "CMP"},
]

TEST_DEFINITIONS: dict[str, dict] = {
    # -----------------------------------------------------------------------
    # Cardiac
    # -----------------------------------------------------------------------
    "troponin_i": {
        "display_name": "Troponin I",
        "loinc": "10839-9",
        "canonical_unit": "ng/mL",
        "units": [
            {"code": "ng/mL", "factor": 1, "decimals": 2},
            {"code": "µg/L", "factor": 1, "decimals": 2},
            {"code": "ng/L", "factor": 0.001, "decimals": 0},
        ],
        "reference_bands": [{"high": 0.04}],
        "critical_ranges": [{"high": 0.40}],
        "panels": ["cardiac"],
        "synonyms": ["TnI", "hs-TnI", "High-sensitivity Troponin I"],
        "notes": "Use assay-specific cutoffs.",
    },
    "troponin_t": {
        "display_name": "Troponin T",
        "loinc": "6598-7",
        "canonical_unit": "ng/mL",
        "units": [
            {"code": "ng/mL", "factor": 1, "decimals": 3},
            {"code": "µg/L", "factor": 1, "decimals": 3},
        ],
        "reference_bands": [{"high": 0.01}],
        "critical_ranges": [{"high": 0.10}],
        "panels": ["cardiac"],
        "synonyms": ["TnT", "hs-TnT"],
    },
    "ck_total": {
        "display_name": "Creatine Kinase (CK), Total",
        "loinc": "2157-6",
        "canonical_unit": "U/L",
        "units": [{"code": "U/L", "factor": 1, "decimals": 0}],
        "reference_bands": [
            {"sex": "M", "low": 39, "high": 308},
            {"sex": "F", "low": 26, "high": 192},
        ],
        "critical_ranges": [{"high": 2000}],
        "panels": ["cardiac"],
        "synonyms": ["CK", "CPK"],
    },
    "ck_mb": {
        "display_name": "CK-MB (Mass)",
        "loinc": "13969-1",
        "canonical_unit": "ng/mL",
        "units": [{"code": "ng/mL", "factor": 1, "decimals": 1}],
        "reference_bands": [{"low": 0, "high": 5.0}],
        "critical_ranges": [{"high": 10.0}],
        "panels": ["cardiac"],
        "synonyms": ["CK-MB mass"],
    },
    "ck_mb_index": {
        "display_name": "CK-MB Index (calc)",
        "loinc": "",
        "kind": "calculated",
        "canonical_unit": "%",
        "units": [{"code": "%", "factor": 1, "decimals": 1}],
        "reference_bands": [{"low": 0, "high": 3.0}],
        "critical_ranges": [{"high": 5.0}],
        "panels": ["cardiac"],
        "derived": {"formula": "ck_mb_index", "inputs": ["ck_mb", "ck_total"]},
    },
    "bnp": {
        "display_name": "BNP",
        "loinc": "30934-4",
        "canonical_unit": "pg/mL",
        "units": [
            {"code": "pg/mL", "factor": 1, "decimals": 0},
            {"code": "ng/L", "factor": 1, "decimals": 0},
        ],
        "reference_bands": [{"high": 100}],
        "critical_ranges": [{"high": 400}],
        "panels": ["cardiac"],
        "synonyms": ["Brain Natriuretic Peptide", "B-type Natriuretic Peptide"],
        "notes": "Elevated in heart failure.",
    },
    "ntprobnp": {
        "display_name": "NT-proBNP",
        "loinc": "33762-6",
        "canonical_unit": "pg/mL",
        "units": [{"code": "pg/mL", "factor": 1, "decimals": 0}],
        "reference_bands": [
            {"max_age": 75, "high": 125},
            {"min_age": 75, "high": 450},
        ],
        "critical_ranges": [{"high": 1800}],
        "panels": ["cardiac"],
        "synonyms": ["N-terminal proBNP"],
    },
    "d_dimer": {
        "display_name": "D-Dimer",
        "loinc": "48065-7",
        "canonical_unit": "µg/mL FEU",
        "units": [
            {"code": "µg/mL FEU", "factor": 1, "decimals": 2},
            {"code": "ng/mL FEU", "factor": 0.001, "decimals": 0},
            {"code": "mg/L FEU", "factor": 1, "decimals": 2},
        ],
        "reference_bands": [
            {"max_age": 50, "high": 0.5},
            {"min_age": 50, "high": 1.0},
        ],
        "critical_ranges": [{"high": 2.0}],
        "panels": ["cardiac"],
        "synonyms": ["Fibrin D-dimer", "FDP"],
    },
    "hs_crp": {
        "display_name": "hs-CRP",
        "loinc": "30522-7",
        "canonical_unit": "mg/L",
        "units": [
            {"code": "mg/L", "factor": 1, "decimals": 2},
            {"code": "mg/dL", "factor": 10, "decimals": 3},
        ],
        "reference_bands": [{"high": 3.0}],
        "critical_ranges": [{"high": 10.0}],
        "panels": ["cardiac"],
        "synonyms": ["High-sensitivity CRP", "C-Reactive Protein"],
    },
    "ldh": {
        "display_name": "LDH",
        "loinc": "14804-9",
        "canonical_unit": "U/L",
        "units": [{"code": "U/L", "factor": 1, "decimals": 0}],
        "reference_bands": [{"low": 125, "high": 243}],
        "critical_ranges": [{"high": 500}],
        "panels": ["cardiac"],
        "synonyms": ["Lactate Dehydrogenase"],
    },
    # -----------------------------------------------------------------------
    # CBC (Complete Blood Count)
    # -----------------------------------------------------------------------
    "wbc": {
        "display_name": "WBC Count",
        "loinc": "6690-2",
        "canonical_unit": "10^3/µL",
        "units": [
            {"code": "10^3/µL", "factor": 1, "decimals": 1},
            {"code": "10^9/L", "factor": 1, "decimals": 1},
        ],
        "reference_bands": [{"low": 4.5, "high": 11.0}],
        "critical_ranges": [{"low": 1.0, "high": 50.0}],
        "panels": ["cbc"],
        "synonyms": ["White Blood Cell", "Leukocytes"],
    },
    "rbc": {
        "display_name": "RBC Count",
        "loinc": "789-8",
        "canonical_unit": "10^6/µL",
        "units": [
            {"code": "10^6/µL", "factor": 1, "decimals": 2},
            {"code": "10^12/L", "factor": 1, "decimals": 2},
        ],
        "reference_bands": [
            {"sex": "M", "low": 4.5, "high": 5.9},
            {"sex": "F", "low": 4.0, "high": 5.2},
        ],
        "critical_ranges": [{"low": 2.5, "high": 7.5}],
        "panels": ["cbc"],
        "synonyms": ["Red Blood Cell", "Erythrocytes"],
    },
    "hemoglobin": {
        "display_name": "Hemoglobin",
        "loinc": "718-7",
        "canonical_unit": "g/dL",
        "units": [
            {"code": "g/dL", "factor": 1, "decimals": 1},
            {"code": "g/L", "factor": 0.1, "decimals": 0},
        ],
        "reference_bands": [
            {"sex": "M", "low": 13.5, "high": 17.5},
            {"sex": "F", "low": 12.0, "high": 16.0},
        ],
        "critical_ranges": [{"low": 7.0, "high": 20.0}],
        "panels": ["cbc"],
        "synonyms": ["Hgb", "Hb"],
    },
    "hematocrit": {
        "display_name": "Hematocrit",
        "loinc": "4544-3",
        "canonical_unit": "%",
        "units": [{"code": "%", "factor": 1, "decimals": 1}],
        "reference_bands": [
            {"sex": "M", "low": 38.8, "high": 50.0},
            {"sex": "F", "low": 34.9, "high": 44.5},
        ],
        "critical_ranges": [{"low": 21, "high": 60}],
        "panels": ["cbc"],
        "synonyms": ["Hct", "PCV"],
    },
    "platelets": {
        "display_name": "Platelet Count",
        "loinc": "777-3",
        "canonical_unit": "10^3/µL",
        "units": [
            {"code": "10^3/µL", "factor": 1, "decimals": 0},
            {"code": "10^9/L", "factor": 1, "decimals": 0},
        ],
        "reference_bands": [{"low": 150, "high": 400}],
        "critical_ranges": [{"low": 50, "high": 1000}],
        "panels": ["cbc"],
        "synonyms": ["PLT", "Thrombocytes"],
    },
    "mcv": {
        "display_name": "MCV",
        "loinc": "787-2",
        "canonical_unit": "fL",
        "units": [{"code": "fL", "factor": 1, "decimals": 1}],
        "reference_bands": [{"low": 80, "high": 100}],
        "critical_ranges": [{"low": 60, "high": 120}],
        "panels": ["cbc"],
        "synonyms": ["Mean Corpuscular Volume"],
    },
    "mch": {
        "display_name": "MCH",
        "loinc": "785-6",
        "canonical_unit": "pg",
        "units": [{"code": "pg", "factor": 1, "decimals": 1}],
        "reference_bands": [{"low": 27, "high": 33}],
        "panels": ["cbc"],
        "synonyms": ["Mean Corpuscular Hemoglobin"],
    },
    "mchc": {
        "display_name": "MCHC",
        "loinc": "786-4",
        "canonical_unit": "g/dL",
        "units": [
            {"code": "g/dL", "factor": 1, "decimals": 1},
            {"code": "g/L", "factor": 0.1, "decimals": 0},
        ],
        "reference_bands": [{"low": 32, "high": 36}],
        "panels": ["cbc"],
        "synonyms": ["Mean Corpuscular Hemoglobin Concentration"],
    },
    "rdw": {
        "display_name": "RDW",
        "loinc": "788-0",
        "canonical_unit": "%",
        "units": [{"code": "%", "factor": 1, "decimals": 1}],
        "reference_bands": [{"low": 11.5, "high": 14.5}],
        "critical_ranges": [{"high": 25.0}],
        "panels": ["cbc"],
        "synonyms": ["Red Cell Distribution Width"],
    },
    "mpv": {
        "display_name": "MPV",
        "loinc": "32623-1",
        "canonical_unit": "fL",
        "units": [{"code": "fL", "factor": 1, "decimals": 1}],
        "reference_bands": [{"low": 7.4, "high": 10.4}],
        "panels": ["cbc"],
        "synonyms": ["Mean Platelet Volume"],
    },
    "neutrophils_percent": {
        "display_name": "Neutrophils %",
        "loinc": "770-8",
        "canonical_unit": "%",
        "units": [{"code": "%", "factor": 1, "decimals": 0}],
        "reference_bands": [{"low": 40, "high": 70}],
        "critical_ranges": [{"low": 10, "high": 95}],
        "panels": ["cbc"],
        "synonyms": ["Segs", "Polys"],
    },
    "lymphocytes_percent": {
        "display_name": "Lymphocytes %",
        "loinc": "736-9",
        "canonical_unit": "%",
        "units": [{"code": "%", "factor": 1, "decimals": 0}],
        "reference_bands": [{"low": 20, "high": 40}],
        "critical_ranges": [{"low": 5, "high": 80}],
        "panels": ["cbc"],
        "synonyms": ["Lymphs"],
    },
    # -----------------------------------------------------------------------
    # CMP (Comprehensive Metabolic Panel)
    # -----------------------------------------------------------------------
    "sodium": {
        "display_name": "Sodium",
        "loinc": "2951-2",
        "canonical_unit": "mmol/L",
        "units": [
            {"code": "mmol/L", "factor": 1, "decimals": 0},
            {"code": "mEq/L", "factor": 1, "decimals": 0},
        ],
        "reference_bands": [{"low": 136, "high": 145}],
        "critical_ranges": [{"low": 120, "high": 160}],
        "panels": ["cmp"],
        "synonyms": ["Na"],
    },
    "potassium": {
        "display_name": "Potassium",
        "loinc": "2823-3",
        "canonical_unit": "mmol/L",
        "units": [
            {"code": "mmol/L", "factor": 1, "decimals": 1},
            {"code": "mEq/L", "factor": 1, "decimals": 1},
            {"code": "mg/dL", "factor": 0.2558, "decimals": 1},
        ],
        "reference_bands": [{"low": 3.5, "high": 5.0}],
        "critical_ranges": [{"low": 2.5, "high": 6.5}],
        "panels": ["cmp"],
        "synonyms": ["K"],
    },
    "chloride": {
        "display_name": "Chloride",
        "loinc": "2075-0",
        "canonical_unit": "mmol/L",
        "units": [
            {"code": "mmol/L", "factor": 1, "decimals": 0},
            {"code": "mEq/L", "factor": 1, "decimals": 0},
        ],
        "reference_bands": [{"low": 98, "high": 107}],
        "critical_ranges": [{"low": 80, "high": 120}],
        "panels": ["cmp"],
        "synonyms": ["Cl"],
    },
    "co2_bicarb": {
        "display_name": "CO2 (Bicarbonate)",
        "loinc": "2028-9",
        "canonical_unit": "mmol/L",
        "units": [
            {"code": "mmol/L", "factor": 1, "decimals": 0},
            {"code": "mEq/L", "factor": 1, "decimals": 0},
        ],
        "reference_bands": [{"low": 22, "high": 29}],
        "critical_ranges": [{"low": 10, "high": 40}],
        "panels": ["cmp"],
        "synonyms": ["Bicarb", "HCO3"],
    },
    "glucose": {
        "display_name": "Glucose",
        "loinc": "2345-7",
        "canonical_unit": "mg/dL",
        "units": [
            {"code": "mg/dL", "factor": 1, "decimals": 0},
            {"code": "mmol/L", "factor": 18.016, "decimals": 1},
        ],
        "reference_bands": [{"low": 70, "high": 99}],
        "critical_ranges": [{"low": 50, "high": 500}],
        "panels": ["cmp"],
        "synonyms": ["Blood Sugar", "Glu", "FBS"],
        "notes": "Fasting reference range shown.",
    },
    "bun": {
        "display_name": "BUN",
        "loinc": "3094-0",
        "canonical_unit": "mg/dL",
        "units": [
            {"code": "mg/dL", "factor": 1, "decimals": 0},
            {"code": "mmol/L", "factor": 2.801, "decimals": 1},
        ],
        "reference_bands": [{"low": 7, "high": 20}],
        "critical_ranges": [{"high": 100}],
        "panels": ["cmp"],
        "synonyms": ["Blood Urea Nitrogen", "Urea"],
    },
    "creatinine": {
        "display_name": "Creatinine",
        "loinc": "2160-0",
        "canonical_unit": "mg/dL",
        "units": [
            {"code": "mg/dL", "factor": 1, "decimals": 2},
            {"code": "µmol/L", "factor": 1 / 88.4, "decimals": 0},
        ],
        "reference_bands": [
            {"sex": "M", "low": 0.7, "high": 1.3},
            {"sex": "F", "low": 0.6, "high": 1.1},
        ],
        "critical_ranges": [{"high": 6.0}],
        "panels": ["cmp"],
        "synonyms": ["Cr", "Creat"],
    },
    "egfr": {
        "display_name": "eGFR (calc)",
        "loinc": "48643-1",
        "kind": "calculated",
        "canonical_unit": "mL/min/1.73m²",
        "units": [{"code": "mL/min/1.73m²", "factor": 1, "decimals": 0}],
        "reference_bands": [{"min_age": 18, "low": 60}],
        "critical_ranges": [{"low": 15}],
        "panels": ["cmp"],
        "synonyms": ["GFR", "Glomerular Filtration Rate"],
        "derived": {"formula": "ckd_epi_2021", "inputs": ["creatinine"]},
        "notes": "CKD-EPI 2021 equation. Requires age, sex, creatinine.",
    },
    "calcium": {
        "display_name": "Calcium",
        "loinc": "17861-6",
        "canonical_unit": "mg/dL",
        "units": [
            {"code": "mg/dL", "factor": 1, "decimals": 1},
            {"code": "mmol/L", "factor": 4.008, "decimals": 2},
        ],
        "reference_bands": [{"low": 8.6, "high": 10.2}],
        "critical_ranges": [{"low": 6.5, "high": 13.0}],
        "panels": ["cmp"],
        "synonyms": ["Ca"],
    },
    "total_protein": {
        "display_name": "Total Protein",
        "loinc": "2885-2",
        "canonical_unit": "g/dL",
        "units": [
            {"code": "g/dL", "factor": 1, "decimals": 1},
            {"code": "g/L", "factor": 0.1, "decimals": 0},
        ],
        "reference_bands": [{"low": 6.0, "high": 8.3}],
        "critical_ranges": [{"low": 4.0, "high": 10.0}],
        "panels": ["cmp"],
        "synonyms": ["TP"],
    },
    "albumin": {
        "display_name": "Albumin",
        "loinc": "1751-7",
        "canonical_unit": "g/dL",
        "units": [
            {"code": "g/dL", "factor": 1, "decimals": 1},
            {"code": "g/L", "factor": 0.1, "decimals": 0},
        ],
        "reference_bands": [{"low": 3.5, "high": 5.0}],
        "critical_ranges": [{"low": 2.0, "high": 6.5}],
        "panels": ["cmp"],
        "synonyms": ["Alb"],
    },
    "ast": {
        "display_name": "AST",
        "loinc": "1920-8",
        "canonical_unit": "U/L",
        "units": [{"code": "U/L", "factor": 1, "decimals": 0}],
        "reference_bands": [{"low": 10, "high": 40}],
        "critical_ranges": [{"high": 1000}],
        "panels": ["cmp"],
        "synonyms": ["SGOT", "Aspartate Aminotransferase"],
    },
    "alt": {
        "display_name": "ALT",
        "loinc": "1742-6",
        "canonical_unit": "U/L",
        "units": [{"code": "U/L", "factor": 1, "decimals": 0}],
        "reference_bands": [{"low": 7, "high": 56}],
        "critical_ranges": [{"high": 1000}],
        "panels": ["cmp"],
        "synonyms": ["SGPT", "Alanine Aminotransferase"],
    },
    "alk_phos": {
        "display_name": "Alkaline Phosphatase",
        "loinc": "6768-6",
        "canonical_unit": "U/L",
        "units": [{"code": "U/L", "factor": 1, "decimals": 0}],
        "reference_bands": [{"low": 44, "high": 147}],
        "critical_ranges": [{"high": 1000}],
        "panels": ["cmp"],
        "synonyms": ["ALP"],
    },
    "bilirubin_total": {
        "display_name": "Bilirubin, Total",
        "loinc": "1975-2",
        "canonical_unit": "mg/dL",
        "units": [
            {"code": "mg/dL", "factor": 1, "decimals": 1},
            {"code": "µmol/L", "factor": 1 / 17.1, "decimals": 0},
        ],
        "reference_bands": [{"low": 0.2, "high": 1.2}],
        "critical_ranges": [{"high": 20.0}],
        "panels": ["cmp"],
        "synonyms": ["T. Bili", "TB"],
    },
    "anion_gap": {
        "display_name": "Anion Gap (calc)",
        "loinc": "",
        "kind": "calculated",
        "canonical_unit": "mmol/L",
        "units": [{"code": "mmol/L", "factor": 1, "decimals": 0}],
        "reference_bands": [{"low": 8, "high": 16}],
        "critical_ranges": [{"high": 25}],
        "panels": ["cmp"],
        "synonyms": ["AG"],
        "derived": {"formula": "anion_gap", "inputs": ["sodium", "chloride", "co2_bicarb"]},
    },
}

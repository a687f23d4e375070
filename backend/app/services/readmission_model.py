"""Readmission risk model configuration (model version V1).

All thresholds, weights, keyword lists and categorisation maps used by the
readmission explainability and prediction services. Changing any value here
changes model behaviour and requires a new MODEL_VERSION.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

MODEL_VERSION = "V1"


class LengthOfStayCategory(str, Enum):
    TOO_SHORT = "too_short"
    NORMAL = "normal"
    EXTENDED = "extended"
    PROLONGED = "prolonged"


class RucaCategory(str, Enum):
    URBAN = "urban"
    LARGE_RURAL = "large_rural"
    SMALL_RURAL = "small_rural"
    ISOLATED_RURAL = "isolated_rural"


class RiskCategory(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


# =============================================================================
# Clinical thresholds
# =============================================================================


@dataclass(frozen=True, slots=True)
class LengthOfStayThresholds:
    too_short: int = 2  # below this
    normal_max: int = 5
    extended_max: int = 10


@dataclass(frozen=True, slots=True)
class VitalsStabilityThresholds:
    systolic_min: int = 90
    systolic_max: int = 160
    diastolic_min: int = 60
    diastolic_max: int = 100
    heart_rate_min: int = 60
    heart_rate_max: int = 100
    o2_saturation_min: int = 92


@dataclass(frozen=True, slots=True)
class LabThresholds:
    egfr_min: float = 60
    hemoglobin_min: float = 12
    hemoglobin_max: float = 17
    sodium_min: float = 135
    sodium_max: float = 145
    glucose_min: float = 70
    glucose_max: float = 140
    # Any of these marks lab trends as concerning
    egfr_critical_low: float = 30
    hemoglobin_critical_low: float = 10
    sodium_critical_low: float = 130
    sodium_critical_high: float = 150
    glucose_critical_low: float = 60
    glucose_critical_high: float = 200


LOS_THRESHOLDS = LengthOfStayThresholds()
VITALS_STABILITY_THRESHOLDS = VitalsStabilityThresholds()
LAB_THRESHOLDS = LabThresholds()

ICD10_PREFIXES = MappingProxyType({
    "CHF": ("I50",),
    "COPD": ("J44", "J45"),
    "diabetes": ("E11", "E10"),
    "renal_failure": ("N18",),
    "cancer": ("C",),
    "pneumonia": ("J18",),
    "stroke": ("I63",),
    "sepsis": ("A41",),
})

HIGH_RISK_DIAGNOSIS_PREFIXES = ("I50", "J44", "J45", "E11", "E10", "N18")

# =============================================================================
# Medications
# =============================================================================


@dataclass(frozen=True, slots=True)
class MedicationThresholds:
    polypharmacy: int = 5
    significant_changes: int = 3


MEDICATION_THRESHOLDS = MedicationThresholds()

HIGH_RISK_MEDICATION_KEYWORDS = MappingProxyType({
    "anticoagulants": ("warfarin", "heparin", "enoxaparin", "rivaroxaban", "apixaban"),
    "insulin": ("insulin",),
    "opioids": ("oxycodone", "hydrocodone", "morphine", "fentanyl", "tramadol"),
    "immunosuppressants": ("prednisone", "tacrolimus", "cyclosporine"),
})

# =============================================================================
# Post-discharge and functional status
# =============================================================================


@dataclass(frozen=True, slots=True)
class FollowUpThresholds:
    within_7_days: int = 7
    within_14_days: int = 14


@dataclass(frozen=True, slots=True)
class CognitiveThresholds:
    impairment: int = 6  # score above this is impaired
    severity_min: int = 4
    mild_max: int = 7
    moderate_max: int = 9


@dataclass(frozen=True, slots=True)
class FallRiskParams:
    falls_multiplier: int = 2
    falls_max_base: int = 6
    mobility_threshold: int = 7
    mobility_bonus: int = 2
    cognitive_threshold: int = 6
    cognitive_bonus: int = 1
    walker_bonus: int = 1
    max_score: int = 10


FOLLOW_UP_THRESHOLDS = FollowUpThresholds()
COGNITIVE_THRESHOLDS = CognitiveThresholds()
FALL_RISK_PARAMS = FallRiskParams()
MOBILITY_DEVICE_KEYWORDS = ("walker", "wheelchair")

# =============================================================================
# Rurality
# =============================================================================


@dataclass(frozen=True, slots=True)
class RucaThresholds:
    urban_max: int = 3
    large_rural_max: int = 6
    small_rural_max: int = 9
    # 10 is isolated rural


RUCA_THRESHOLDS = RucaThresholds()

# =============================================================================
# Engagement and self-reported health
# =============================================================================


@dataclass(frozen=True, slots=True)
class EngagementThresholds:
    consecutive_missed_concern: int = 3
    engagement_drop: float = 0.3
    negative_mood: float = 0.4
    game_decline: float = 0.7
    game_decline_min_days: int = 14
    zero_activity_concern: int = 7
    zero_activity_disengaging: int = 10
    disengaging_drop: int = -30
    vitals_consistency: float = 0.7
    missed_vitals_concern: int = 4


ENGAGEMENT_THRESHOLDS = EngagementThresholds()

NEGATIVE_MOOD_KEYWORDS = ("sad", "anxious", "not great", "stressed", "tired")

RED_FLAG_SYMPTOM_KEYWORDS = (
    "chest pain",
    "shortness of breath",
    "sob",
    "severe pain",
    "bleeding",
    "confusion",
    "dizzy",
    "faint",
    "unconscious",
)

CONCERNING_PATTERN_IDS = (
    "declining_mood",
    "missed_vitals",
    "no_games",
    "zero_activity",
    "critical_alerts",
)


@dataclass(frozen=True, slots=True)
class SelfReportedThresholds:
    systolic_high: int = 160
    systolic_low: int = 90
    diastolic_high: int = 100
    blood_sugar_high: int = 250
    blood_sugar_low: int = 70
    # abs(first - last) > last * weight_change
    weight_change: float = 0.05
    mobility_declining: int = 3
    pain_increasing: int = 5
    fatigue_increasing: int = 5
    days_home_alone: int = 15
    family_contact_min: int = 8


SELF_REPORTED_THRESHOLDS = SelfReportedThresholds()

# =============================================================================
# Scoring inputs
# =============================================================================

# (feature path, weight); None is missing, False and 0 are present
DATA_COMPLETENESS_WEIGHTS = (
    ("clinical.prior_admissions_30_day", 5),
    ("clinical.comorbidity_count", 5),
    ("post_discharge.follow_up_scheduled", 4),
    ("social_determinants.lives_alone", 3),
    ("medication.active_medication_count", 3),
)

AI_PROMPT_WEIGHTS = MappingProxyType({
    "clinical": MappingProxyType({
        "prior_admissions_30_day": 0.25,
        "prior_admissions_90_day": 0.20,
        "ed_visits_6_month": 0.15,
        "comorbidity_count": 0.18,
        "high_risk_diagnosis": 0.15,
    }),
    "medications": MappingProxyType({
        "polypharmacy": 0.13,
        "high_risk_meds": 0.14,
        "no_prescription_filled": 0.16,
    }),
    "post_discharge": MappingProxyType({
        "no_follow_up": 0.18,
        "follow_up_within_7_days": -0.12,
    }),
    "social": MappingProxyType({
        "transportation_barrier": 0.16,
        "lives_alone": 0.14,
        "rural_location": 0.15,
        "low_health_literacy": 0.12,
    }),
    "functional": MappingProxyType({
        "adl_dependencies": 0.12,
        "recent_falls": 0.11,
        "cognitive_impairment": 0.13,
    }),
    "clinical_secondary": MappingProxyType({
        "length_of_stay": 0.10,
        "vitals_stable": -0.09,
        "lab_trends_concerning": 0.11,
    }),
    "engagement": MappingProxyType({
        "consecutive_missed": 0.16,
        "engagement_drop": 0.18,
        "red_flag_symptoms": 0.20,
        "negative_mood": 0.13,
        "game_declining": 0.14,
        "days_zero_activity": 0.15,
        "is_disengaging": 0.19,
        "stopped_responding": 0.22,
    }),
})

RUCA_PROMPT_WEIGHTS = MappingProxyType({
    RucaCategory.URBAN.value: "0.00 (baseline)",
    RucaCategory.LARGE_RURAL.value: "0.08",
    RucaCategory.SMALL_RURAL.value: "0.12",
    RucaCategory.ISOLATED_RURAL.value: "0.18",
})


@dataclass(frozen=True, slots=True)
class TenantReadmissionConfig:
    """Per-tenant predictor switches."""

    predictor_enabled: bool = False
    auto_create_care_plan: bool = False
    high_risk_threshold: float = 0.50


TENANT_CONFIG_DEFAULTS = TenantReadmissionConfig()

RISK_CATEGORY_BOUNDS = (
    (0.3, RiskCategory.LOW),
    (0.5, RiskCategory.MODERATE),
    (0.7, RiskCategory.HIGH),
)

# =============================================================================
# Helpers
# =============================================================================


def categorize_length_of_stay(days: int | None) -> LengthOfStayCategory:
    if not days:
        return LengthOfStayCategory.NORMAL
    if days < LOS_THRESHOLDS.too_short:
        return LengthOfStayCategory.TOO_SHORT
    if days <= LOS_THRESHOLDS.normal_max:
        return LengthOfStayCategory.NORMAL
    if days <= LOS_THRESHOLDS.extended_max:
        return LengthOfStayCategory.EXTENDED
    return LengthOfStayCategory.PROLONGED


def categorize_diagnosis(icd10: str | None) -> str:
    """Map an ICD-10 code to a condition family, or "other"."""
    if not icd10:
        return "other"
    code = icd10.strip().upper()
    for category, prefixes in ICD10_PREFIXES.items():
        if category == "cancer":
            continue
        if code.startswith(prefixes):
            return category
    return "other"


def is_high_risk_diagnosis(icd10: str | None) -> bool:
    if not icd10:
        return False
    return icd10.strip().upper().startswith(HIGH_RISK_DIAGNOSIS_PREFIXES)


def _within(value: float | None, low: float, high: float | None = None) -> bool:
    # Missing and zero readings count as stable
    if not value:
        return True
    return value >= low and (high is None or value <= high)


def vitals_stable(
    systolic: float | None = None,
    diastolic: float | None = None,
    heart_rate: float | None = None,
    o2_saturation: float | None = None,
) -> bool:
    t = VITALS_STABILITY_THRESHOLDS
    return (
        _within(systolic, t.systolic_min, t.systolic_max)
        and _within(diastolic, t.diastolic_min, t.diastolic_max)
        and _within(heart_rate, t.heart_rate_min, t.heart_rate_max)
        and _within(o2_saturation, t.o2_saturation_min)
    )


def labs_concerning(
    egfr: float | None = None,
    hemoglobin: float | None = None,
    sodium: float | None = None,
    glucose: float | None = None,
) -> bool:
    t = LAB_THRESHOLDS
    if egfr is not None and egfr < t.egfr_critical_low:
        return True
    if hemoglobin is not None and hemoglobin < t.hemoglobin_critical_low:
        return True
    if sodium is not None and (sodium < t.sodium_critical_low or sodium > t.sodium_critical_high):
        return True
    if glucose is not None and (glucose < t.glucose_critical_low or glucose > t.glucose_critical_high):
        return True
    return False


def is_high_risk_medication(name: str | None) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(keyword in lowered for keywords in HIGH_RISK_MEDICATION_KEYWORDS.values() for keyword in keywords)


def cognitive_severity(score: int | None) -> str | None:
    t = COGNITIVE_THRESHOLDS
    if score is None or score < t.severity_min:
        return None
    if score < t.mild_max:
        return "mild"
    if score < t.moderate_max:
        return "moderate"
    return "severe"


def calculate_fall_risk_score(
    falls_count: int,
    mobility_risk_score: int | None = None,
    cognitive_risk_score: int | None = None,
    walking_ability: str | None = None,
) -> int:
    """0-10 fall risk score from recent falls, mobility, cognition and device use."""
    p = FALL_RISK_PARAMS
    score = min(falls_count * p.falls_multiplier, p.falls_max_base)
    if mobility_risk_score is not None and mobility_risk_score > p.mobility_threshold:
        score += p.mobility_bonus
    if cognitive_risk_score is not None and cognitive_risk_score > p.cognitive_threshold:
        score += p.cognitive_bonus
    if walking_ability and any(device in walking_ability.lower() for device in MOBILITY_DEVICE_KEYWORDS):
        score += p.walker_bonus
    return min(score, p.max_score)


def ruca_category(code: int | None) -> RucaCategory:
    """Rural-Urban Commuting Area code (1-10) to a rurality category."""
    if code is None or code <= RUCA_THRESHOLDS.urban_max:
        return RucaCategory.URBAN
    if code <= RUCA_THRESHOLDS.large_rural_max:
        return RucaCategory.LARGE_RURAL
    if code <= RUCA_THRESHOLDS.small_rural_max:
        return RucaCategory.SMALL_RURAL
    return RucaCategory.ISOLATED_RURAL


def risk_category(probability: float) -> RiskCategory:
    for upper, category in RISK_CATEGORY_BOUNDS:
        if probability < upper:
            return category
    return RiskCategory.CRITICAL

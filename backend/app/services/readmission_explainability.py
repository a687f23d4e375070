"""Human-readable explanations for readmission risk features.

Turns a ReadmissionFeatures snapshot into weighted risk and protective
factors, a data-quality assessment, clinician recommendations and a
plain-language patient summary. Purely descriptive: nothing here changes
a prediction.
"""

from typing import Any

from app.schemas.readmission import (
    DataQuality,
    ReadmissionFeatures,
    RiskFactor,
    RiskSummary,
)
from app.services.readmission_model import (
    AI_PROMPT_WEIGHTS,
    DATA_COMPLETENESS_WEIGHTS,
    RUCA_PROMPT_WEIGHTS,
)

TOP_FACTOR_COUNT = 5
PATIENT_SUMMARY_FACTORS = 3

RISK_EXPLANATIONS: dict[str, tuple[str, str]] = {
    "prior_admissions_30_day": (
        "Recent hospital admission within 30 days is the strongest predictor of readmission",
        "CMS Hospital Readmissions Reduction Program",
    ),
    "prior_admissions_90_day": (
        "Multiple hospitalizations in 90 days indicates unstable health status",
        "Jencks et al., NEJM 2009",
    ),
    "ed_visits_6_month": (
        "Frequent ED visits suggest difficulty managing conditions at home",
        "AHRQ Quality Indicators",
    ),
    "comorbidity_count": (
        "Multiple chronic conditions increase complexity and readmission risk",
        "Charlson Comorbidity Index",
    ),
    "is_high_risk_diagnosis": (
        "CHF, COPD, diabetes, and renal failure have highest readmission rates",
        "CMS Hospital Compare",
    ),
    "lab_trends_concerning": (
        "Abnormal lab values at discharge indicate incomplete stabilization",
        "Clinical guidelines",
    ),
    "vital_signs_stable_at_discharge": (
        "Stable vital signs at discharge indicate clinical readiness",
        "Clinical assessment guidelines",
    ),
    "is_polypharmacy": (
        "5+ medications increases risk of interactions and adherence issues",
        "WHO Medication Safety Report",
    ),
    "has_high_risk_medications": (
        "Anticoagulants, insulin, opioids require careful monitoring",
        "ISMP High-Alert Medications",
    ),
    "no_prescription_filled": (
        "Unfilled prescriptions prevent proper treatment continuation",
        "Pharmacy claims data analysis",
    ),
    "no_follow_up_scheduled": (
        "No follow-up appointment leaves patients without clinical monitoring",
        "Transitional Care Model",
    ),
    "follow_up_within_7_days": (
        "Early follow-up catches deterioration before it requires rehospitalization",
        "AHRQ Care Transitions",
    ),
    "has_transportation_barrier": (
        "Transportation barriers prevent follow-up attendance and pharmacy access",
        "SDOH research",
    ),
    "lives_alone": (
        "Living alone means no immediate help if symptoms worsen",
        "Social support studies",
    ),
    "is_rural_location": (
        "Rural patients face longer travel times and limited healthcare access",
        "Rural Health Research",
    ),
    "low_health_literacy": (
        "Low health literacy affects understanding of discharge instructions",
        "Health Literacy Universal Precautions",
    ),
    "adl_dependencies": (
        "Difficulty with daily activities indicates need for support services",
        "Katz ADL Index",
    ),
    "has_recent_falls": (
        "Fall history indicates frailty and injury risk",
        "CDC STEADI program",
    ),
    "has_cognitive_impairment": (
        "Cognitive issues affect medication management and symptom recognition",
        "Dementia care guidelines",
    ),
    "is_disengaging": (
        "Sudden drop in engagement often precedes clinical deterioration",
        "WellFit behavioral data analysis",
    ),
    "stopped_responding": (
        "No response for 3+ days is a critical warning sign",
        "WellFit early warning system",
    ),
    "consecutive_missed_check_ins": (
        "Missed check-ins may indicate health decline or social withdrawal",
        "WellFit engagement patterns",
    ),
    "has_engagement_drop": (
        "Significant engagement decline correlates with health status change",
        "WellFit longitudinal analysis",
    ),
}

RECOMMENDATIONS: dict[str, str] = {
    "prior_admissions_30_day": "Intensive transitional care management recommended",
    "prior_admissions_90_day": "Intensive transitional care management recommended",
    "no_follow_up_scheduled": "Schedule follow-up appointment within 7 days of discharge",
    "has_transportation_barrier": "Arrange transportation assistance or telehealth visits",
    "is_polypharmacy": "Medication reconciliation and pharmacist consultation",
    "has_high_risk_medications": "Close monitoring of high-risk medications with dosing education",
    "lives_alone": "Consider home health services or daily check-in program",
    "is_rural_location": "Establish telehealth follow-up and local support resources",
    "has_cognitive_impairment": "Ensure caregiver receives discharge instructions and medication training",
    "is_disengaging": "URGENT: Immediate welfare check and care team outreach",
    "stopped_responding": "URGENT: Immediate welfare check and care team outreach",
    "no_prescription_filled": "Confirm prescription access and affordability",
}

PATIENT_MESSAGES: dict[str, str] = {
    "clinical": "• Your recent health history means staying in close contact with your doctor is important",
    "medication": "• Taking your medications correctly is key - ask if you have any questions",
    "post_discharge": "• Making it to your follow-up appointments helps us catch problems early",
    "social": "• Having support at home and a way to get to appointments makes a big difference",
    "functional": "• Being careful with daily activities and asking for help when needed keeps you safe",
    "engagement": "• Checking in regularly helps us know how you're doing",
}

PROTECTIVE_MESSAGES: dict[str, str] = {
    "follow_up_within_7_days": "• Your follow-up appointment is scheduled soon",
    "vital_signs_stable_at_discharge": "• Your vital signs looked good when you left",
}


def _factor(
    name: str,
    category: str,
    value: Any,
    weight: float,
    is_protective: bool = False,
) -> RiskFactor:
    explanation, evidence = RISK_EXPLANATIONS[name]
    return RiskFactor(
        name=name,
        category=category,
        value=value,
        weight=weight,
        explanation=explanation,
        evidence=evidence,
        is_protective=is_protective,
    )


def get_all_risk_factors(features: ReadmissionFeatures) -> list[RiskFactor]:
    """Every risk and protective factor present in the features."""
    clinical = features.clinical
    medication = features.medication
    post = features.post_discharge
    social = features.social_determinants
    functional = features.functional_status
    engagement = features.engagement
    w_clinical = AI_PROMPT_WEIGHTS["clinical"]
    w_secondary = AI_PROMPT_WEIGHTS["clinical_secondary"]
    w_meds = AI_PROMPT_WEIGHTS["medications"]
    w_post = AI_PROMPT_WEIGHTS["post_discharge"]
    w_social = AI_PROMPT_WEIGHTS["social"]
    w_functional = AI_PROMPT_WEIGHTS["functional"]
    w_engagement = AI_PROMPT_WEIGHTS["engagement"]

    factors: list[RiskFactor] = []

    if (clinical.prior_admissions_30_day or 0) > 0:
        factors.append(_factor("prior_admissions_30_day", "clinical", clinical.prior_admissions_30_day,
                               w_clinical["prior_admissions_30_day"]))
    if clinical.prior_admissions_90_day > 0:
        factors.append(_factor("prior_admissions_90_day", "clinical", clinical.prior_admissions_90_day,
                               w_clinical["prior_admissions_90_day"]))
    if clinical.ed_visits_6_month > 0:
        factors.append(_factor("ed_visits_6_month", "clinical", clinical.ed_visits_6_month,
                               w_clinical["ed_visits_6_month"]))
    if (clinical.comorbidity_count or 0) >= 3:
        factors.append(_factor("comorbidity_count", "clinical", clinical.comorbidity_count,
                               w_clinical["comorbidity_count"]))
    if clinical.is_high_risk_diagnosis:
        factors.append(_factor("is_high_risk_diagnosis", "clinical", True, w_clinical["high_risk_diagnosis"]))
    if clinical.lab_trends_concerning:
        factors.append(_factor("lab_trends_concerning", "clinical", True, w_secondary["lab_trends_concerning"]))
    if clinical.vital_signs_stable_at_discharge:
        factors.append(_factor("vital_signs_stable_at_discharge", "clinical", True,
                               w_secondary["vitals_stable"], is_protective=True))

    if medication.is_polypharmacy:
        factors.append(_factor("is_polypharmacy", "medication", medication.active_medication_count,
                               w_meds["polypharmacy"]))
    if medication.has_high_risk_medications:
        factors.append(_factor("has_high_risk_medications", "medication", medication.high_risk_medication_list,
                               w_meds["high_risk_meds"]))
    if medication.no_prescription_filled:
        factors.append(_factor("no_prescription_filled", "medication", True, w_meds["no_prescription_filled"]))

    if post.no_follow_up_scheduled:
        factors.append(_factor("no_follow_up_scheduled", "post_discharge", True, w_post["no_follow_up"]))
    if post.follow_up_within_7_days:
        factors.append(_factor("follow_up_within_7_days", "post_discharge", True,
                               w_post["follow_up_within_7_days"], is_protective=True))

    if social.has_transportation_barrier:
        factors.append(_factor("has_transportation_barrier", "social", True, w_social["transportation_barrier"]))
    if social.lives_alone:
        factors.append(_factor("lives_alone", "social", True, w_social["lives_alone"]))
    if social.is_rural_location:
        factors.append(_factor("is_rural_location", "social", social.ruca_category, w_social["rural_location"]))
    if social.low_health_literacy:
        factors.append(_factor("low_health_literacy", "social", social.health_literacy_level,
                               w_social["low_health_literacy"]))

    if functional.adl_dependencies > 0:
        factors.append(_factor("adl_dependencies", "functional", functional.adl_dependencies,
                               w_functional["adl_dependencies"]))
    if functional.has_recent_falls:
        factors.append(_factor("has_recent_falls", "functional", functional.falls_in_past_90_days,
                               w_functional["recent_falls"]))
    if functional.has_cognitive_impairment:
        factors.append(_factor("has_cognitive_impairment", "functional", functional.cognitive_impairment_severity,
                               w_functional["cognitive_impairment"]))

    if engagement.is_disengaging:
        factors.append(_factor("is_disengaging", "engagement", True, w_engagement["is_disengaging"]))
    if engagement.stopped_responding:
        factors.append(_factor("stopped_responding", "engagement", engagement.consecutive_missed_check_ins,
                               w_engagement["stopped_responding"]))
    if engagement.consecutive_missed_check_ins >= 3:
        factors.append(_factor("consecutive_missed_check_ins", "engagement",
                               engagement.consecutive_missed_check_ins, w_engagement["consecutive_missed"]))
    if engagement.has_engagement_drop:
        factors.append(_factor("has_engagement_drop", "engagement", engagement.engagement_change_percent,
                               w_engagement["engagement_drop"]))

    return factors


def _nested_value(features: ReadmissionFeatures, path: str) -> Any:
    value: Any = features
    for part in path.split("."):
        value = getattr(value, part, None)
        if value is None:
            return None
    return value


def calculate_data_quality(features: ReadmissionFeatures) -> DataQuality:
    """Weighted completeness of the critical fields; only None counts as missing."""
    missing: list[str] = []
    present_weight = 0
    total_weight = 0
    for path, weight in DATA_COMPLETENESS_WEIGHTS:
        total_weight += weight
        if _nested_value(features, path) is None:
            missing.append(path)
        else:
            present_weight += weight

    completeness = round(present_weight / total_weight * 100)
    if completeness >= 80:
        confidence = "high"
    elif completeness >= 60:
        confidence = "medium"
    else:
        confidence = "low"
    return DataQuality(completeness=completeness, missing_fields=missing, confidence=confidence)


def _ranked_risks(factors: list[RiskFactor]) -> list[RiskFactor]:
    return sorted((f for f in factors if not f.is_protective), key=lambda f: abs(f.weight), reverse=True)


def generate_recommendations(factors: list[RiskFactor]) -> list[str]:
    recommendations = [
        RECOMMENDATIONS[factor.name]
        for factor in _ranked_risks(factors)[:TOP_FACTOR_COUNT]
        if factor.name in RECOMMENDATIONS
    ]
    return list(dict.fromkeys(recommendations))


def generate_risk_summary(features: ReadmissionFeatures) -> RiskSummary:
    """Top risk factors, protective factors, data quality and recommendations."""
    factors = get_all_risk_factors(features)
    protective = sorted((f for f in factors if f.is_protective), key=lambda f: abs(f.weight), reverse=True)
    return RiskSummary(
        top_risk_factors=_ranked_risks(factors)[:TOP_FACTOR_COUNT],
        protective_factors=protective,
        data_quality=calculate_data_quality(features),
        recommendations=generate_recommendations(factors),
    )


def generate_patient_summary(features: ReadmissionFeatures) -> str:
    """Plain-language summary suitable for sharing with the patient."""
    summary = generate_risk_summary(features)
    parts: list[str] = []

    if summary.top_risk_factors:
        parts.append(
            "Based on your health information, we want to help you stay well at home. Some things to focus on:"
        )
        for factor in summary.top_risk_factors[:PATIENT_SUMMARY_FACTORS]:
            parts.append(PATIENT_MESSAGES[factor.category])

    if summary.protective_factors:
        parts.append("\nGood news - you have some things working in your favor:")
        for factor in summary.protective_factors:
            if factor.name in PROTECTIVE_MESSAGES:
                parts.append(PROTECTIVE_MESSAGES[factor.name])

    return "\n".join(parts)


def get_ruca_weight_display(category: str | None = None) -> str:
    return RUCA_PROMPT_WEIGHTS.get(category or "urban", "0.00")

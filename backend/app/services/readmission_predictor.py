"""LLM-backed 30-day readmission risk prediction.

Features are rendered into an evidence-weighted prompt, de-identified,
and sent to the OpenAI Responses API with a structured output schema.
The model's numbers are clamped and cross-checked against the category
bounds before being returned.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from openai import AsyncOpenAI

from app.config import settings
from app.schemas.accuracy import PredictionRecord
from app.schemas.readmission import (
    DataSourcesAnalyzed,
    DischargeContext,
    LLMReadmissionAssessment,
    ReadmissionFeatures,
    ReadmissionPrediction,
    TenantReadmissionSettings,
)
from app.services.accuracy_tracking import AccuracyTrackingService
from app.services.phi_deidentifier import DeidentificationLevel, DeidentificationOptions, deidentify
from app.services.readmission_explainability import calculate_data_quality
from app.services.readmission_model import (
    AI_PROMPT_WEIGHTS,
    MODEL_VERSION,
    RUCA_PROMPT_WEIGHTS,
    RiskCategory,
    risk_category,
)

logger = logging.getLogger(__name__)

SKILL_NAME = "readmission_risk_predictor"
DEFAULT_MAX_OUTPUT_TOKENS = 4096
CARE_PLAN_CATEGORIES = (RiskCategory.HIGH.value, RiskCategory.CRITICAL.value)

_SECTION_TITLES = {
    "clinical": "CLINICAL FACTORS (highest weight)",
    "post_discharge": "POST-DISCHARGE SETUP",
    "social": "SOCIAL DETERMINANTS (rural population focus)",
    "medications": "MEDICATIONS",
    "functional": "FUNCTIONAL STATUS",
    "clinical_secondary": "DISCHARGE STABILITY",
    "engagement": "ENGAGEMENT AND BEHAVIOUR (early warning, 7-14 days ahead)",
}


def _extract_usage(response: Any) -> dict[str, int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return {}
    return {
        "input_tokens": getattr(usage, "input_tokens", 0),
        "output_tokens": getattr(usage, "output_tokens", 0),
    }


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _yes_no(flag: bool | None) -> str:
    if flag is None:
        return "unknown"
    return "YES" if flag else "no"


def days_since(moment: datetime, now: datetime | None = None) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max((now or datetime.now(timezone.utc)) - moment, timedelta(0)).days


def build_system_prompt() -> str:
    """System prompt listing the evidence-based feature weights."""
    lines = [
        "You are an expert clinical analyst specialising in 30-day hospital "
        "readmission risk prediction for a rural community healthcare program.",
        "",
        "EVIDENCE-BASED FEATURE WEIGHTING (negative weights are protective):",
    ]
    for group, weights in AI_PROMPT_WEIGHTS.items():
        lines.append("")
        lines.append(f"{_SECTION_TITLES.get(group, group.upper())}:")
        for name, weight in weights.items():
            lines.append(f"- {name.replace('_', ' ')}: {weight:+.2f}")
    lines.append("")
    lines.append("RURALITY (RUCA) ADJUSTMENT:")
    for category, weight in RUCA_PROMPT_WEIGHTS.items():
        lines.append(f"- {category}: {weight}")
    lines.extend([
        "",
        "Prior admissions are the strongest predictor. A sudden drop in check-in "
        "compliance or a patient who stopped responding is a critical warning sign.",
        "Return probabilities between 0 and 1. Risk category bounds on the 30-day "
        "probability: low < 0.3, moderate < 0.5, high < 0.7, otherwise critical.",
    ])
    return "\n".join(lines)


def build_feature_prompt(context: DischargeContext, features: ReadmissionFeatures) -> str:
    """Render the discharge and its features as the user prompt."""
    c = features.clinical
    m = features.medication
    p = features.post_discharge
    s = features.social_determinants
    f = features.functional_status
    e = features.engagement

    # Calendar dates are identifiers; the model only sees elapsed days
    lines = ["Predict readmission risk for a recent hospital discharge.", ""]

    lines.append("=== DISCHARGE INFORMATION ===")
    lines.append(f"- Days since discharge: {days_since(context.discharge_date)}")
    lines.append(f"- Facility: {context.discharge_facility or 'unknown'}")
    lines.append(f"- Disposition: {context.discharge_disposition.value}")
    if context.primary_diagnosis_code or context.primary_diagnosis_description:
        lines.append(
            f"- Primary diagnosis: {context.primary_diagnosis_description or ''} "
            f"({context.primary_diagnosis_code or 'no code'})"
        )
    if context.secondary_diagnoses:
        lines.append(f"- Secondary diagnoses: {', '.join(context.secondary_diagnoses)}")
    if context.length_of_stay is not None:
        lines.append(f"- Length of stay: {context.length_of_stay} days ({c.length_of_stay_category or 'n/a'})")

    lines.append("")
    lines.append("=== CLINICAL FACTORS ===")
    lines.append(
        f"- Prior admissions: 30 days={c.prior_admissions_30_day if c.prior_admissions_30_day is not None else 'unknown'}, "
        f"90 days={c.prior_admissions_90_day}"
    )
    lines.append(f"- ED visits (6 months): {c.ed_visits_6_month}")
    lines.append(f"- Comorbidities: {c.comorbidity_count if c.comorbidity_count is not None else 'unknown'}")
    lines.append(
        f"- CHF={_yes_no(c.has_chf)} COPD={_yes_no(c.has_copd)} "
        f"diabetes={_yes_no(c.has_diabetes)} renal failure={_yes_no(c.has_renal_failure)}"
    )
    lines.append(f"- High-risk diagnosis: {_yes_no(c.is_high_risk_diagnosis)}")
    lines.append(f"- Vitals stable at discharge: {_yes_no(c.vital_signs_stable_at_discharge)}")
    lines.append(f"- Labs within normal limits: {_yes_no(c.labs_within_normal_limits)}")
    lines.append(f"- Lab trends concerning: {_yes_no(c.lab_trends_concerning)}")

    lines.append("")
    lines.append("=== MEDICATION FACTORS ===")
    lines.append(f"- Active medications: {m.active_medication_count if m.active_medication_count is not None else 'unknown'}")
    lines.append(f"- Polypharmacy: {_yes_no(m.is_polypharmacy)}")
    if m.has_high_risk_medications:
        lines.append(f"- High-risk medications: {', '.join(m.high_risk_medication_list) or 'yes'}")
    lines.append(f"- Significant medication changes: {_yes_no(m.significant_medication_changes)}")
    lines.append(f"- Prescriptions filled within 3 days: {_yes_no(m.prescription_filled_within_3_days)}")
    if m.no_prescription_filled:
        lines.append("- NO PRESCRIPTION FILLED")

    lines.append("")
    lines.append("=== POST-DISCHARGE SETUP ===")
    lines.append(f"- Follow-up scheduled: {_yes_no(p.follow_up_scheduled)}")
    if p.days_until_follow_up is not None:
        lines.append(f"- Days until follow-up: {p.days_until_follow_up}")
    lines.append(f"- Follow-up within 7 days: {_yes_no(p.follow_up_within_7_days)}")
    lines.append(f"- PCP assigned: {_yes_no(p.has_pcp_assigned)}")
    if p.discharge_to_home_alone:
        lines.append("- Discharged home alone")
    if p.pending_test_results:
        lines.append(f"- Pending test results: {', '.join(p.pending_test_results)}")

    lines.append("")
    lines.append("=== SOCIAL DETERMINANTS ===")
    lines.append(f"- Lives alone: {_yes_no(s.lives_alone)}; caregiver: {_yes_no(s.has_caregiver)}")
    lines.append(f"- Transportation barrier: {_yes_no(s.has_transportation_barrier)}")
    if s.distance_to_nearest_hospital_miles is not None:
        lines.append(f"- Distance to nearest hospital: {s.distance_to_nearest_hospital_miles:.0f} miles")
    lines.append(f"- Rural: {_yes_no(s.is_rural_location)} (RUCA category: {s.ruca_category or 'unknown'})")
    lines.append(f"- Insurance: {s.insurance_type or 'unknown'}")
    lines.append(f"- Low health literacy: {_yes_no(s.low_health_literacy)}")
    lines.append(f"- Socially isolated: {_yes_no(s.socially_isolated)}")

    lines.append("")
    lines.append("=== FUNCTIONAL STATUS ===")
    lines.append(f"- ADL dependencies: {f.adl_dependencies}")
    lines.append(f"- Falls in past 90 days: {f.falls_in_past_90_days}")
    lines.append(
        f"- Cognitive impairment: {_yes_no(f.has_cognitive_impairment)}"
        + (f" ({f.cognitive_impairment_severity})" if f.cognitive_impairment_severity else "")
    )
    if f.mobility_level:
        lines.append(f"- Mobility: {f.mobility_level}")

    lines.append("")
    lines.append("=== ENGAGEMENT ===")
    if e.check_in_completion_rate_30_day is not None:
        lines.append(f"- Check-in completion (30 days): {e.check_in_completion_rate_30_day:.0%}")
    if e.check_in_completion_rate_7_day is not None:
        lines.append(f"- Check-in completion (7 days): {e.check_in_completion_rate_7_day:.0%}")
    lines.append(f"- Consecutive missed check-ins: {e.consecutive_missed_check_ins}")
    if e.has_engagement_drop:
        lines.append(f"- ENGAGEMENT DROP: {e.engagement_change_percent:.0f}%")
    if e.stopped_responding:
        lines.append("- STOPPED RESPONDING")
    if e.is_disengaging:
        lines.append("- Disengaging")
    lines.append(f"- Days with zero activity: {e.days_with_zero_activity}")
    if e.red_flag_symptoms:
        lines.append(f"- RED FLAG SYMPTOMS: {', '.join(e.red_flag_symptoms)}")
    if e.negative_mood_trend:
        lines.append("- Negative mood trend")
    if e.concerning_patterns:
        lines.append(f"- Concerning patterns: {', '.join(e.concerning_patterns)}")

    quality = calculate_data_quality(features)
    lines.append("")
    lines.append("=== DATA QUALITY ===")
    lines.append(f"- Data completeness: {features.data_completeness_score:.0f}%")
    if quality.missing_fields:
        lines.append(f"- Missing: {', '.join(quality.missing_fields)} (lower confidence accordingly)")

    lines.append("")
    lines.append("=== TASK ===")
    lines.append(
        "Weigh all factors above. Return 7, 30 and 90 day readmission probabilities, "
        "a risk category, weighted risk factors, protective factors, prioritised "
        "interventions and your prediction confidence."
    )
    return "\n".join(lines)


def data_sources_analyzed(features: ReadmissionFeatures) -> DataSourcesAnalyzed:
    return DataSourcesAnalyzed(
        readmission_history=features.clinical.prior_admissions_30_day is not None,
        sdoh_indicators=features.social_determinants.lives_alone is not None,
        checkin_patterns=features.engagement.check_in_completion_rate_30_day is not None,
        medication_adherence=(features.medication.active_medication_count or 0) > 0,
        care_plan_adherence=features.post_discharge.follow_up_scheduled is not None,
    )


class ReadmissionPredictor:
    """Predicts readmission risk for one discharge with an LLM."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        tracker: AccuracyTrackingService | None = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ):
        """Initialize the predictor.

        Args:
            client: Optional pre-configured AsyncOpenAI client (for testing).
            model: Model name. Defaults to settings.llm_model.
            tracker: Accuracy tracker that records each prediction.
            max_output_tokens: Maximum tokens in the model response.

        Raises:
            ValueError: If no client provided and OPENAI_API_KEY is not configured.
        """
        if client is not None:
            self._client = client
        else:
            if not settings.openai_api_key:
                raise ValueError(
                    "OPENAI_API_KEY environment variable is required. "
                    "Set it in your .env file or environment."
                )
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)

        self._model = model or settings.llm_model
        self._tracker = tracker
        self._max_output_tokens = max_output_tokens

    async def _assess(self, system_prompt: str, user_prompt: str) -> tuple[LLMReadmissionAssessment, dict[str, int]]:
        response = await self._client.responses.parse(
            model=self._model,
            input=[
                {"role": "developer", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            text_format=LLMReadmissionAssessment,
            max_output_tokens=self._max_output_tokens,
        )
        parsed = response.output_parsed
        if parsed is None:
            logger.warning("Structured parsing returned None, attempting fallback")
            raw_output = getattr(response, "output_text", None)
            if not raw_output:
                raise RuntimeError(
                    "LLM response could not be parsed. "
                    "Neither structured output nor raw text was available."
                )
            parsed = LLMReadmissionAssessment.model_validate_json(raw_output)
        return parsed, _extract_usage(response)

    async def predict(
        self,
        context: DischargeContext,
        features: ReadmissionFeatures,
        tenant_config: TenantReadmissionSettings | None = None,
    ) -> ReadmissionPrediction:
        """Predict 7, 30 and 90 day readmission risk.

        Args:
            context: Discharge being assessed.
            features: Evidence-based risk features for the discharge.
            tenant_config: Tenant switches; defaults apply when omitted.

        Returns:
            ReadmissionPrediction with clamped probabilities.

        Raises:
            ValueError: If the predictor is disabled for the tenant.
            RuntimeError: If the model output cannot be parsed.
        """
        tenant_config = tenant_config or TenantReadmissionSettings()
        if not tenant_config.predictor_enabled:
            raise ValueError("Readmission predictor is not enabled for this tenant")

        t0 = time.perf_counter()
        deidentified = deidentify(
            build_feature_prompt(context, features),
            DeidentificationOptions(
                level=DeidentificationLevel(settings.phi_deidentification_level),
                preserve_structure=True,
            ),
        )
        if deidentified.warnings:
            logger.warning("Prompt de-identification warnings: %s", deidentified.warnings)

        prompt_version, variant = (None, None)
        if self._tracker is not None:
            prompt_version, variant = await self._tracker.select_prompt(SKILL_NAME)
        system_prompt = prompt_version.prompt_content if prompt_version is not None else build_system_prompt()

        assessment, usage = await self._assess(system_prompt, deidentified.text)

        risk_30 = _clamp(assessment.readmission_risk_30_day)
        category = risk_category(risk_30).value
        if category != assessment.risk_category:
            logger.info(
                "Model category %s disagrees with 30-day risk %.2f, using %s",
                assessment.risk_category, risk_30, category,
            )

        latency_ms = round((time.perf_counter() - t0) * 1000)
        prediction = ReadmissionPrediction(
            patient_id=context.patient_id,
            discharge_date=context.discharge_date,
            readmission_risk_30_day=risk_30,
            readmission_risk_7_day=_clamp(assessment.readmission_risk_7_day),
            readmission_risk_90_day=_clamp(assessment.readmission_risk_90_day),
            risk_category=category,
            risk_factors=assessment.risk_factors,
            protective_factors=assessment.protective_factors,
            recommended_interventions=assessment.recommended_interventions,
            predicted_readmission_date=assessment.predicted_readmission_date,
            prediction_confidence=_clamp(assessment.prediction_confidence) * features.data_completeness_score / 100,
            data_sources_analyzed=data_sources_analyzed(features),
            requires_care_plan=tenant_config.auto_create_care_plan and (
                category in CARE_PLAN_CATEGORIES or risk_30 >= tenant_config.high_risk_threshold
            ),
            model=self._model,
            risk_model_version=MODEL_VERSION,
            latency_ms=latency_ms,
        )

        if self._tracker is not None:
            prediction_id = await self._tracker.record_prediction(PredictionRecord(
                skill_name=SKILL_NAME,
                prediction_type="score",
                prediction_value={
                    "readmission_risk_30_day": prediction.readmission_risk_30_day,
                    "risk_category": prediction.risk_category,
                },
                confidence=prediction.prediction_confidence,
                patient_id=context.patient_id,
                entity_type="discharge",
                model=self._model,
                input_tokens=usage.get("input_tokens"),
                output_tokens=usage.get("output_tokens"),
                latency_ms=latency_ms,
                prompt_version_id=prompt_version.id if prompt_version is not None else None,
                experiment_id=variant.experiment_id if variant is not None else None,
                experiment_variant=variant.variant if variant is not None else None,
            ))
            prediction.prediction_id = str(prediction_id)

        logger.info(
            "Readmission prediction: risk30=%.2f category=%s (%dms, %s)",
            prediction.readmission_risk_30_day, category, latency_ms, usage or "n/a",
        )
        return prediction

"""AI prediction accuracy tracking and prompt A/B experiments.

Every AI skill records its predictions here; outcomes are attached later
(provider review, system events). Accuracy per skill feeds prompt
versioning and experiments, which are evaluated with a two-proportion
z-test.
"""

import logging
import math
import random
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import Float, cast, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.accuracy import AIPrediction, AIPromptExperiment, AIPromptVersion
from app.schemas.accuracy import (
    AccuracyMetrics,
    CodeRef,
    ExperimentConfig,
    ExperimentResults,
    PredictionRecord,
    VariantAssignment,
)

logger = logging.getLogger(__name__)

SIGNIFICANCE_LEVEL = 0.05
BILLING_ACCEPTANCE_THRESHOLD = 0.7

# Abramowitz and Stegun 7.1.26
_ERF_A = (0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429)
_ERF_P = 0.3275911


def normal_cdf(x: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun erf approximation."""
    sign = -1.0 if x < 0 else 1.0
    x = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _ERF_P * x)
    a1, a2, a3, a4, a5 = _ERF_A
    y = 1.0 - (((((a5 * t + a4) * t) + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


def two_proportion_z_test(
    control_n: int,
    control_successes: int,
    treatment_n: int,
    treatment_successes: int,
) -> float | None:
    """Two-tailed p-value for a difference in proportions, None without data."""
    if control_n <= 0 or treatment_n <= 0:
        return None
    control_p = control_successes / control_n
    treatment_p = treatment_successes / treatment_n
    pooled = (control_successes + treatment_successes) / (control_n + treatment_n)
    se = math.sqrt(pooled * (1 - pooled) * (1 / control_n + 1 / treatment_n))
    z = (treatment_p - control_p) / se if se > 0 else 0.0
    return 2 * (1 - normal_cdf(abs(z)))


def compute_metrics(row: Any) -> AccuracyMetrics:
    """Build metrics from one row of the per-skill aggregate query."""
    with_outcome = row.with_outcome or 0
    accurate = row.accurate or 0
    return AccuracyMetrics(
        skill_name=row.skill_name,
        total_predictions=row.total or 0,
        predictions_with_outcome=with_outcome,
        accurate_count=accurate,
        inaccurate_count=with_outcome - accurate,
        accuracy_rate=accurate / with_outcome if with_outcome else None,
        avg_confidence=float(row.avg_confidence) if row.avg_confidence is not None else None,
        total_cost_usd=float(row.total_cost_usd or 0),
        avg_latency_ms=round(row.avg_latency_ms) if row.avg_latency_ms is not None else None,
    )


def _assign_variant(experiment: AIPromptExperiment, rng: Callable[[], float]) -> VariantAssignment:
    if rng() < experiment.traffic_split:
        return VariantAssignment(
            experiment_id=experiment.id, prompt_id=experiment.treatment_prompt_id, variant="treatment"
        )
    return VariantAssignment(experiment_id=experiment.id, prompt_id=experiment.control_prompt_id, variant="control")


class AccuracyTrackingService:
    """Prediction, outcome, prompt and experiment bookkeeping for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID):
        self.db = db
        self.tenant_id = tenant_id

    # --- predictions -------------------------------------------------------

    async def record_prediction(self, record: PredictionRecord) -> uuid.UUID:
        """Store a prediction right after it is made.

        Returns:
            The prediction id, used later to attach the outcome.
        """
        prediction = AIPrediction(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            skill_name=record.skill_name,
            prediction_type=record.prediction_type,
            prediction_value=record.prediction_value,
            confidence_score=record.confidence,
            patient_id=record.patient_id,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            model=record.model,
            input_tokens=record.input_tokens,
            output_tokens=record.output_tokens,
            cost_usd=record.cost_usd,
            latency_ms=record.latency_ms,
            prompt_version_id=record.prompt_version_id,
            experiment_id=record.experiment_id,
            experiment_variant=record.experiment_variant,
        )
        self.db.add(prediction)
        if record.prompt_version_id:
            await self.db.execute(
                update(AIPromptVersion)
                .where(
                    AIPromptVersion.tenant_id == self.tenant_id,
                    AIPromptVersion.id == record.prompt_version_id,
                )
                .values(total_uses=AIPromptVersion.total_uses + 1)
            )
        await self.db.flush()
        logger.debug("Recorded %s prediction %s", record.skill_name, prediction.id)
        return prediction.id

    async def _get_prediction(self, prediction_id: uuid.UUID) -> AIPrediction | None:
        result = await self.db.execute(
            select(AIPrediction).where(
                AIPrediction.tenant_id == self.tenant_id,
                AIPrediction.id == prediction_id,
            )
        )
        return result.scalar_one_or_none()

    async def record_outcome(
        self,
        prediction_id: uuid.UUID,
        actual_outcome: dict,
        is_accurate: bool,
        outcome_source: str,
        notes: str | None = None,
    ) -> AIPrediction:
        """Attach the real-world outcome to a prediction.

        Recording again replaces the outcome. Experiment and prompt-version
        counters only move by the difference, so a repeat never counts twice.

        Raises:
            ValueError: If the prediction does not exist.
        """
        prediction = await self._get_prediction(prediction_id)
        if prediction is None:
            raise ValueError("Prediction not found")

        previous = prediction.is_accurate
        outcome_delta = 1 if previous is None else 0
        accurate_delta = int(is_accurate) - int(bool(previous))

        prediction.actual_outcome = actual_outcome
        prediction.is_accurate = is_accurate
        prediction.outcome_source = outcome_source
        prediction.outcome_notes = notes
        prediction.outcome_recorded_at = datetime.now(timezone.utc)

        if outcome_delta or accurate_delta:
            if prediction.experiment_id and prediction.experiment_variant in ("control", "treatment"):
                await self._count_experiment_outcome(
                    prediction.experiment_id, prediction.experiment_variant, outcome_delta, accurate_delta
                )
            if prediction.prompt_version_id:
                await self._count_prompt_outcome(prediction.prompt_version_id, outcome_delta, accurate_delta)
        else:
            logger.debug("Outcome for prediction %s unchanged, counters left as is", prediction.id)

        await self.db.flush()
        return prediction

    async def _count_experiment_outcome(
        self,
        experiment_id: uuid.UUID,
        variant: str,
        outcome_delta: int,
        accurate_delta: int,
    ) -> None:
        predictions_col = getattr(AIPromptExperiment, f"{variant}_predictions")
        accurate_col = getattr(AIPromptExperiment, f"{variant}_accurate")
        await self.db.execute(
            update(AIPromptExperiment)
            .where(
                AIPromptExperiment.tenant_id == self.tenant_id,
                AIPromptExperiment.id == experiment_id,
            )
            .values({
                predictions_col: predictions_col + outcome_delta,
                accurate_col: accurate_col + accurate_delta,
            })
        )

    async def _count_prompt_outcome(self, prompt_id: uuid.UUID, outcome_delta: int, accurate_delta: int) -> None:
        outcomes = AIPromptVersion.total_outcomes + outcome_delta
        accurate = AIPromptVersion.total_accurate + accurate_delta
        await self.db.execute(
            update(AIPromptVersion)
            .where(
                AIPromptVersion.tenant_id == self.tenant_id,
                AIPromptVersion.id == prompt_id,
            )
            .values(
                total_outcomes=outcomes,
                total_accurate=accurate,
                accuracy_rate=cast(accurate, Float) / func.nullif(outcomes, 0),
            )
        )

    # --- metrics -----------------------------------------------------------

    async def _metrics_since(self, days: int, skill_name: str | None = None) -> list[AccuracyMetrics]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        query = (
            select(
                AIPrediction.skill_name,
                func.count().label("total"),
                func.count(AIPrediction.is_accurate).label("with_outcome"),
                func.count().filter(AIPrediction.is_accurate.is_(True)).label("accurate"),
                func.avg(AIPrediction.confidence_score).label("avg_confidence"),
                func.sum(AIPrediction.cost_usd).label("total_cost_usd"),
                func.avg(AIPrediction.latency_ms).label("avg_latency_ms"),
            )
            .where(
                AIPrediction.tenant_id == self.tenant_id,
                AIPrediction.predicted_at >= since,
            )
            .group_by(AIPrediction.skill_name)
            .order_by(AIPrediction.skill_name)
        )
        if skill_name:
            query = query.where(AIPrediction.skill_name == skill_name)
        result = await self.db.execute(query)
        return [compute_metrics(row) for row in result.all()]

    async def skill_accuracy(self, skill_name: str, days: int = 30) -> AccuracyMetrics:
        metrics = await self._metrics_since(days, skill_name)
        return metrics[0] if metrics else AccuracyMetrics(skill_name=skill_name)

    async def accuracy_dashboard(self, days: int = 30) -> list[AccuracyMetrics]:
        """Metrics for every skill with predictions in the window."""
        return await self._metrics_since(days)

    # --- prompt versions ---------------------------------------------------

    async def create_prompt_version(
        self,
        skill_name: str,
        prompt_type: str,
        prompt_content: str,
        description: str | None = None,
        change_notes: str | None = None,
    ) -> AIPromptVersion:
        """Add the next (inactive) version of a skill's prompt."""
        result = await self.db.execute(
            select(func.max(AIPromptVersion.version_number)).where(
                AIPromptVersion.tenant_id == self.tenant_id,
                AIPromptVersion.skill_name == skill_name,
                AIPromptVersion.prompt_type == prompt_type,
            )
        )
        current = result.scalar()
        version = AIPromptVersion(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            skill_name=skill_name,
            prompt_type=prompt_type,
            version_number=(current or 0) + 1,
            prompt_content=prompt_content,
            description=description,
            change_notes=change_notes,
            is_active=False,
            total_uses=0,
        )
        self.db.add(version)
        await self.db.flush()
        logger.info("Created prompt %s/%s v%d", skill_name, prompt_type, version.version_number)
        return version

    async def activate_prompt_version(self, prompt_id: uuid.UUID) -> AIPromptVersion:
        """Make a version the active one for its (skill, type).

        Raises:
            ValueError: If the version does not exist.
        """
        result = await self.db.execute(
            select(AIPromptVersion).where(
                AIPromptVersion.tenant_id == self.tenant_id,
                AIPromptVersion.id == prompt_id,
            )
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise ValueError("Prompt version not found")

        now = datetime.now(timezone.utc)
        await self.db.execute(
            update(AIPromptVersion)
            .where(
                AIPromptVersion.tenant_id == self.tenant_id,
                AIPromptVersion.skill_name == version.skill_name,
                AIPromptVersion.prompt_type == version.prompt_type,
                AIPromptVersion.is_active.is_(True),
                AIPromptVersion.id != version.id,
            )
            .values(is_active=False, deactivated_at=now)
        )
        version.is_active = True
        version.activated_at = now
        await self.db.flush()
        return version

    async def get_active_prompt(self, skill_name: str, prompt_type: str = "system") -> AIPromptVersion | None:
        result = await self.db.execute(
            select(AIPromptVersion).where(
                AIPromptVersion.tenant_id == self.tenant_id,
                AIPromptVersion.skill_name == skill_name,
                AIPromptVersion.prompt_type == prompt_type,
                AIPromptVersion.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def prompt_history(self, skill_name: str, prompt_type: str = "system") -> list[AIPromptVersion]:
        result = await self.db.execute(
            select(AIPromptVersion)
            .where(
                AIPromptVersion.tenant_id == self.tenant_id,
                AIPromptVersion.skill_name == skill_name,
                AIPromptVersion.prompt_type == prompt_type,
            )
            .order_by(AIPromptVersion.version_number.desc())
        )
        return list(result.scalars().all())

    # --- experiments -------------------------------------------------------

    async def create_experiment(self, config: ExperimentConfig) -> AIPromptExperiment:
        experiment = AIPromptExperiment(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            experiment_name=config.experiment_name,
            skill_name=config.skill_name,
            hypothesis=config.hypothesis,
            control_prompt_id=config.control_prompt_id,
            treatment_prompt_id=config.treatment_prompt_id,
            traffic_split=config.traffic_split,
            min_sample_size=config.min_sample_size,
            status="draft",
            control_predictions=0,
            control_accurate=0,
            treatment_predictions=0,
            treatment_accurate=0,
        )
        self.db.add(experiment)
        await self.db.flush()
        return experiment

    async def get_experiment(self, experiment_id: uuid.UUID) -> AIPromptExperiment | None:
        result = await self.db.execute(
            select(AIPromptExperiment).where(
                AIPromptExperiment.tenant_id == self.tenant_id,
                AIPromptExperiment.id == experiment_id,
            )
        )
        return result.scalar_one_or_none()

    async def start_experiment(self, experiment_id: uuid.UUID) -> AIPromptExperiment:
        """Move a draft experiment to running.

        Raises:
            ValueError: If the experiment is missing or not a draft.
        """
        experiment = await self.get_experiment(experiment_id)
        if experiment is None:
            raise ValueError("Experiment not found")
        if experiment.status != "draft":
            raise ValueError(f"Experiment is {experiment.status}, only draft experiments can start")
        experiment.status = "running"
        experiment.start_at = datetime.now(timezone.utc)
        await self.db.flush()
        return experiment

    async def choose_variant(
        self,
        experiment_name: str,
        rng: Callable[[], float] = random.random,
    ) -> VariantAssignment | None:
        """Pick the prompt for one call of a running experiment, by traffic split."""
        result = await self.db.execute(
            select(AIPromptExperiment).where(
                AIPromptExperiment.tenant_id == self.tenant_id,
                AIPromptExperiment.experiment_name == experiment_name,
                AIPromptExperiment.status == "running",
            )
        )
        experiment = result.scalar_one_or_none()
        if experiment is None:
            return None
        return _assign_variant(experiment, rng)

    async def select_prompt(
        self,
        skill_name: str,
        prompt_type: str = "system",
        rng: Callable[[], float] = random.random,
    ) -> tuple[AIPromptVersion | None, VariantAssignment | None]:
        """Prompt version a skill should use for its next call.

        A running experiment on the skill takes precedence over the active
        version. Returns (None, None) when the skill has neither, and the
        caller falls back to its built-in prompt.
        """
        result = await self.db.execute(
            select(AIPromptExperiment)
            .where(
                AIPromptExperiment.tenant_id == self.tenant_id,
                AIPromptExperiment.skill_name == skill_name,
                AIPromptExperiment.status == "running",
            )
            .order_by(AIPromptExperiment.start_at.desc())
        )
        experiment = result.scalars().first()
        if experiment is not None:
            assignment = _assign_variant(experiment, rng)
            result = await self.db.execute(
                select(AIPromptVersion).where(
                    AIPromptVersion.tenant_id == self.tenant_id,
                    AIPromptVersion.id == assignment.prompt_id,
                )
            )
            version = result.scalar_one_or_none()
            if version is not None:
                return version, assignment
            logger.warning(
                "Experiment %s points at missing prompt %s, using the active version",
                experiment.experiment_name, assignment.prompt_id,
            )
        return await self.get_active_prompt(skill_name, prompt_type), None

    async def experiment_results(self, experiment_id: uuid.UUID) -> ExperimentResults | None:
        experiment = await self.get_experiment(experiment_id)
        if experiment is None:
            return None

        control_n = experiment.control_predictions
        treatment_n = experiment.treatment_predictions
        p_value = two_proportion_z_test(
            control_n, experiment.control_accurate, treatment_n, experiment.treatment_accurate
        )
        significant = p_value is not None and p_value < SIGNIFICANCE_LEVEL

        winner = "no_difference"
        if significant:
            control_rate = experiment.control_accurate / control_n
            treatment_rate = experiment.treatment_accurate / treatment_n
            winner = "treatment" if treatment_rate > control_rate else "control"

        return ExperimentResults(
            experiment_name=experiment.experiment_name,
            control_predictions=control_n,
            control_accurate=experiment.control_accurate,
            treatment_predictions=treatment_n,
            treatment_accurate=experiment.treatment_accurate,
            p_value=p_value,
            is_significant=significant,
            winner=winner,
            min_sample_size_reached=min(control_n, treatment_n) >= experiment.min_sample_size,
        )

    # --- skill-specific outcomes ------------------------------------------

    async def record_billing_code_accuracy(
        self,
        prediction_id: uuid.UUID,
        suggested_codes: list[CodeRef],
        final_codes: list[CodeRef],
        reviewed_by: str,
    ) -> AIPrediction:
        """Score suggested billing codes against the provider's final codes."""
        suggested = {c.code for c in suggested_codes}
        final = {c.code for c in final_codes}
        accepted = sum(1 for c in final_codes if c.code in suggested)
        rejected = sum(1 for c in suggested_codes if c.code not in final)
        added_by_provider = sum(1 for c in final_codes if c.code not in suggested)
        is_accurate = bool(suggested_codes) and accepted / len(suggested_codes) >= BILLING_ACCEPTANCE_THRESHOLD

        return await self.record_outcome(
            prediction_id,
            {
                "final_codes": [c.model_dump() for c in final_codes],
                "accepted": accepted,
                "rejected": rejected,
                "added_by_provider": added_by_provider,
                "reviewed_by": reviewed_by,
            },
            is_accurate,
            "provider_review",
        )

    async def record_sdoh_detection_accuracy(
        self,
        prediction_id: uuid.UUID,
        was_confirmed: bool,
        was_false_positive: bool,
        reviewed_by: str,
    ) -> AIPrediction:
        return await self.record_outcome(
            prediction_id,
            {
                "was_confirmed": was_confirmed,
                "was_false_positive": was_false_positive,
                "reviewed_by": reviewed_by,
            },
            was_confirmed and not was_false_positive,
            "provider_review",
        )

"""Tests for AI accuracy tracking, prompt versions and experiments."""

import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.sql.dml import Update

from app.models.accuracy import AIPrediction, AIPromptExperiment, AIPromptVersion
from app.schemas.accuracy import CodeRef, ExperimentConfig, PredictionRecord
from app.services.accuracy_tracking import (
    AccuracyTrackingService,
    compute_metrics,
    normal_cdf,
    two_proportion_z_test,
)

from tests.conftest import TEST_TENANT_ID, added, make_result


def prediction(skill: str = "billing_code_suggester", **overrides) -> AIPrediction:
    fields = {
        "id": uuid.uuid4(),
        "tenant_id": TEST_TENANT_ID,
        "skill_name": skill,
        "prediction_type": "code",
        "prediction_value": {"codes": ["99213"]},
        "model": "gpt-4o",
    }
    fields.update(overrides)
    return AIPrediction(**fields)


def experiment(**overrides) -> AIPromptExperiment:
    fields = {
        "id": uuid.uuid4(),
        "tenant_id": TEST_TENANT_ID,
        "experiment_name": "shorter-prompt",
        "skill_name": "sdoh_passive_detector",
        "hypothesis": "Shorter prompt is as accurate",
        "control_prompt_id": uuid.uuid4(),
        "treatment_prompt_id": uuid.uuid4(),
        "traffic_split": 0.5,
        "min_sample_size": 100,
        "status": "draft",
        "control_predictions": 0,
        "control_accurate": 0,
        "treatment_predictions": 0,
        "treatment_accurate": 0,
    }
    fields.update(overrides)
    return AIPromptExperiment(**fields)


def prompt_version(**overrides) -> AIPromptVersion:
    fields = {
        "id": uuid.uuid4(),
        "tenant_id": TEST_TENANT_ID,
        "skill_name": "sdoh_passive_detector",
        "prompt_type": "system",
        "version_number": 1,
        "prompt_content": "Detect SDOH",
        "is_active": True,
    }
    fields.update(overrides)
    return AIPromptVersion(**fields)


def metrics_row(skill: str = "billing_code_suggester", **overrides) -> SimpleNamespace:
    """One row of the per-skill aggregate query."""
    fields = {
        "skill_name": skill,
        "total": 0,
        "with_outcome": 0,
        "accurate": 0,
        "avg_confidence": None,
        "total_cost_usd": None,
        "avg_latency_ms": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def updates(mock_db) -> list[Update]:
    """UPDATE statements passed to the mocked session."""
    return [c.args[0] for c in mock_db.execute.await_args_list if isinstance(c.args[0], Update)]


class TestStatistics:
    def test_normal_cdf(self):
        assert normal_cdf(0) == pytest.approx(0.5, abs=1e-6)
        assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-3)
        assert normal_cdf(-1.96) == pytest.approx(0.025, abs=1e-3)

    def test_significant_difference(self):
        p_value = two_proportion_z_test(100, 50, 100, 70)
        assert p_value < 0.01

    def test_equal_rates(self):
        assert two_proportion_z_test(100, 50, 100, 50) == pytest.approx(1.0, abs=1e-6)

    def test_no_variance(self):
        assert two_proportion_z_test(10, 10, 10, 10) == pytest.approx(1.0, abs=1e-6)

    def test_no_data(self):
        assert two_proportion_z_test(0, 0, 10, 5) is None

    def test_compute_metrics(self):
        metrics = compute_metrics(metrics_row(
            total=3,
            with_outcome=2,
            accurate=1,
            avg_confidence=Decimal("0.8"),
            total_cost_usd=Decimal("0.03"),
            avg_latency_ms=Decimal("200.4"),
        ))
        assert metrics.skill_name == "billing_code_suggester"
        assert metrics.total_predictions == 3
        assert metrics.predictions_with_outcome == 2
        assert metrics.accurate_count == 1
        assert metrics.inaccurate_count == 1
        assert metrics.accuracy_rate == 0.5
        assert metrics.avg_confidence == pytest.approx(0.8)
        assert metrics.total_cost_usd == pytest.approx(0.03)
        assert metrics.avg_latency_ms == 200

    def test_compute_metrics_without_outcomes(self):
        metrics = compute_metrics(metrics_row(total=4))
        assert metrics.total_predictions == 4
        assert metrics.accuracy_rate is None
        assert metrics.avg_confidence is None
        assert metrics.total_cost_usd == 0.0
        assert metrics.avg_latency_ms is None


class TestAccuracyTrackingService:
    @pytest.fixture
    def service(self, mock_db) -> AccuracyTrackingService:
        return AccuracyTrackingService(mock_db, TEST_TENANT_ID)

    @pytest.mark.asyncio
    async def test_record_prediction(self, service, mock_db):
        prediction_id = await service.record_prediction(PredictionRecord(
            skill_name="readmission_risk_predictor",
            prediction_type="score",
            prediction_value={"readmission_risk_30_day": 0.42},
            confidence=0.8,
            model="gpt-4o",
            latency_ms=950,
        ))
        stored = added(mock_db, AIPrediction)[0]
        assert stored.id == prediction_id
        assert stored.tenant_id == TEST_TENANT_ID
        assert stored.confidence_score == 0.8

    @pytest.mark.asyncio
    async def test_record_outcome_missing(self, service):
        with pytest.raises(ValueError):
            await service.record_outcome(uuid.uuid4(), {}, True, "provider_review")

    @pytest.mark.asyncio
    async def test_record_outcome(self, service, mock_db):
        stored = prediction()
        mock_db.execute.return_value = make_result(stored)
        updated = await service.record_outcome(stored.id, {"final": "99214"}, False, "provider_review", "upcoded")
        assert updated.is_accurate is False
        assert updated.actual_outcome == {"final": "99214"}
        assert updated.outcome_notes == "upcoded"
        assert updated.outcome_recorded_at is not None
        assert mock_db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_outcome_counts_toward_experiment(self, service, mock_db):
        stored = prediction(experiment_id=uuid.uuid4(), experiment_variant="treatment")
        mock_db.execute.side_effect = [make_result(stored), make_result()]
        await service.record_outcome(stored.id, {}, True, "automated")
        assert mock_db.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_repeated_outcome_does_not_recount(self, service, mock_db):
        stored = prediction(experiment_id=uuid.uuid4(), experiment_variant="treatment", is_accurate=True)
        mock_db.execute.return_value = make_result(stored)
        await service.record_outcome(stored.id, {"again": True}, True, "automated")
        assert updates(mock_db) == []
        assert stored.actual_outcome == {"again": True}

    @pytest.mark.asyncio
    async def test_corrected_outcome_moves_accurate_count_only(self, service, mock_db):
        experiment_id = uuid.uuid4()
        stored = prediction(experiment_id=experiment_id, experiment_variant="control", is_accurate=True)
        mock_db.execute.return_value = make_result(stored)
        with patch.object(service, "_count_experiment_outcome", new=AsyncMock()) as count:
            await service.record_outcome(stored.id, {}, False, "provider_review")
        count.assert_awaited_once_with(experiment_id, "control", 0, -1)

    @pytest.mark.asyncio
    async def test_record_prediction_counts_prompt_use(self, service, mock_db):
        version_id = uuid.uuid4()
        await service.record_prediction(PredictionRecord(
            skill_name="sdoh_passive_detector",
            prediction_type="classification",
            prediction_value={"category": "housing_instability"},
            model="gpt-4o",
            prompt_version_id=version_id,
        ))
        [statement] = updates(mock_db)
        assert statement.table.name == "ai_prompt_versions"
        assert added(mock_db, AIPrediction)[0].prompt_version_id == version_id

    @pytest.mark.asyncio
    async def test_outcome_counts_toward_prompt_version(self, service, mock_db):
        stored = prediction(prompt_version_id=uuid.uuid4())
        mock_db.execute.return_value = make_result(stored)
        await service.record_outcome(stored.id, {}, True, "automated")
        [statement] = updates(mock_db)
        assert statement.table.name == "ai_prompt_versions"
        sql = str(statement)
        assert "total_outcomes" in sql
        assert "accuracy_rate" in sql

    @pytest.mark.asyncio
    async def test_accuracy_dashboard_groups_by_skill(self, service, mock_db):
        mock_db.execute.return_value = make_result(rows=[
            metrics_row("billing_code_suggester", total=1, with_outcome=1, accurate=0),
            metrics_row("sdoh_passive_detector", total=2, with_outcome=2, accurate=1),
        ])
        dashboard = await service.accuracy_dashboard(days=7)
        assert [m.skill_name for m in dashboard] == ["billing_code_suggester", "sdoh_passive_detector"]
        assert dashboard[1].total_predictions == 2
        assert dashboard[1].accuracy_rate == 0.5

    @pytest.mark.asyncio
    async def test_skill_accuracy_without_predictions(self, service, mock_db):
        metrics = await service.skill_accuracy("sdoh_passive_detector")
        assert metrics.skill_name == "sdoh_passive_detector"
        assert metrics.total_predictions == 0

    @pytest.mark.asyncio
    async def test_create_prompt_version_increments(self, service, mock_db):
        mock_db.execute.return_value = make_result(2)
        version = await service.create_prompt_version("sdoh_passive_detector", "system", "Detect SDOH")
        assert version.version_number == 3
        assert version.is_active is False
        assert added(mock_db, AIPromptVersion) == [version]

    @pytest.mark.asyncio
    async def test_first_prompt_version(self, service, mock_db):
        version = await service.create_prompt_version("sdoh_passive_detector", "system", "Detect SDOH")
        assert version.version_number == 1

    @pytest.mark.asyncio
    async def test_activate_prompt_version(self, service, mock_db):
        version = AIPromptVersion(
            id=uuid.uuid4(), tenant_id=TEST_TENANT_ID, skill_name="s", prompt_type="system",
            version_number=2, prompt_content="p", is_active=False,
        )
        mock_db.execute.side_effect = [make_result(version), make_result()]
        activated = await service.activate_prompt_version(version.id)
        assert activated.is_active is True
        assert activated.activated_at is not None

    @pytest.mark.asyncio
    async def test_activate_missing_version(self, service):
        with pytest.raises(ValueError):
            await service.activate_prompt_version(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_create_and_start_experiment(self, service, mock_db):
        config = ExperimentConfig(
            experiment_name="shorter-prompt",
            skill_name="sdoh_passive_detector",
            hypothesis="Shorter prompt is as accurate",
            control_prompt_id=uuid.uuid4(),
            treatment_prompt_id=uuid.uuid4(),
        )
        created = await service.create_experiment(config)
        assert created.status == "draft"
        assert created.treatment_predictions == 0

        mock_db.execute.return_value = make_result(created)
        started = await service.start_experiment(created.id)
        assert started.status == "running"
        assert started.start_at is not None

    @pytest.mark.asyncio
    async def test_start_running_experiment_fails(self, service, mock_db):
        mock_db.execute.return_value = make_result(experiment(status="running"))
        with pytest.raises(ValueError, match="running"):
            await service.start_experiment(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_choose_variant_by_traffic_split(self, service, mock_db):
        running = experiment(status="running", traffic_split=0.3)
        mock_db.execute.return_value = make_result(running)
        treatment = await service.choose_variant("shorter-prompt", rng=lambda: 0.1)
        control = await service.choose_variant("shorter-prompt", rng=lambda: 0.9)
        assert treatment.variant == "treatment"
        assert treatment.prompt_id == running.treatment_prompt_id
        assert treatment.experiment_id == running.id
        assert control.variant == "control"

    @pytest.mark.asyncio
    async def test_choose_variant_without_running_experiment(self, service):
        assert await service.choose_variant("missing") is None

    @pytest.mark.asyncio
    async def test_select_prompt_uses_experiment_variant(self, service, mock_db):
        running = experiment(status="running", traffic_split=0.5)
        treatment = prompt_version(id=running.treatment_prompt_id, version_number=2, is_active=False)
        mock_db.execute.side_effect = [make_result(items=[running]), make_result(treatment)]
        version, assignment = await service.select_prompt("sdoh_passive_detector", rng=lambda: 0.2)
        assert version is treatment
        assert assignment.variant == "treatment"
        assert assignment.experiment_id == running.id

    @pytest.mark.asyncio
    async def test_select_prompt_falls_back_to_active_version(self, service, mock_db):
        active = prompt_version()
        mock_db.execute.side_effect = [make_result(), make_result(items=[active])]
        version, assignment = await service.select_prompt("sdoh_passive_detector")
        assert version is active
        assert assignment is None

    @pytest.mark.asyncio
    async def test_select_prompt_without_any_version(self, service):
        assert await service.select_prompt("sdoh_passive_detector") == (None, None)

    @pytest.mark.asyncio
    async def test_experiment_results_significant(self, service, mock_db):
        mock_db.execute.return_value = make_result(experiment(
            status="running",
            control_predictions=100,
            control_accurate=50,
            treatment_predictions=100,
            treatment_accurate=70,
        ))
        results = await service.experiment_results(uuid.uuid4())
        assert results.is_significant
        assert results.winner == "treatment"
        assert results.min_sample_size_reached

    @pytest.mark.asyncio
    async def test_experiment_results_without_data(self, service, mock_db):
        mock_db.execute.return_value = make_result(experiment())
        results = await service.experiment_results(uuid.uuid4())
        assert results.p_value is None
        assert results.winner == "no_difference"
        assert not results.min_sample_size_reached

    @pytest.mark.asyncio
    async def test_billing_code_accuracy(self, service, mock_db):
        stored = prediction()
        mock_db.execute.return_value = make_result(stored)
        suggested = [CodeRef(code=c, type="CPT") for c in ("99213", "93000", "85025")]
        final = [CodeRef(code=c, type="CPT") for c in ("99213", "93000", "36415")]
        updated = await service.record_billing_code_accuracy(stored.id, suggested, final, "coder-1")
        assert updated.actual_outcome["accepted"] == 2
        assert updated.actual_outcome["rejected"] == 1
        assert updated.actual_outcome["added_by_provider"] == 1
        # 2 of 3 accepted is below the 70% bar
        assert updated.is_accurate is False

    @pytest.mark.asyncio
    async def test_sdoh_detection_accuracy(self, service, mock_db):
        stored = prediction("sdoh_passive_detector")
        mock_db.execute.return_value = make_result(stored)
        updated = await service.record_sdoh_detection_accuracy(stored.id, True, False, "nurse-1")
        assert updated.is_accurate is True
        assert updated.outcome_source == "provider_review"


class TestRoutes:
    @pytest.mark.asyncio
    async def test_record_prediction(self, client, auth_headers):
        response = await client.post(
            "/api/ai/predictions",
            json={
                "skill_name": "billing_code_suggester",
                "prediction_type": "code",
                "prediction_value": {"codes": ["99213"]},
                "model": "gpt-4o",
            },
            headers=auth_headers,
        )
        assert response.status_code == 201
        assert uuid.UUID(response.json()["prediction_id"])

    @pytest.mark.asyncio
    async def test_invalid_prediction_type(self, client, auth_headers):
        response = await client.post(
            "/api/ai/predictions",
            json={"skill_name": "x", "prediction_type": "guess", "prediction_value": {}, "model": "m"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_outcome_not_found(self, client, auth_headers):
        response = await client.post(
            f"/api/ai/predictions/{uuid.uuid4()}/outcome",
            json={"actual_outcome": {}, "is_accurate": True, "outcome_source": "automated"},
            headers=auth_headers,
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_outcome_recorded(self, client, auth_headers, mock_db):
        mock_db.execute.return_value = make_result(prediction())
        response = await client.post(
            f"/api/ai/predictions/{uuid.uuid4()}/outcome",
            json={"actual_outcome": {"ok": True}, "is_accurate": True, "outcome_source": "automated"},
            headers=auth_headers,
        )
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_billing_review(self, client, auth_headers, mock_db):
        mock_db.execute.return_value = make_result(prediction())
        response = await client.post(
            f"/api/ai/predictions/{uuid.uuid4()}/billing-review",
            json={
                "suggested_codes": [{"code": "99213", "type": "CPT"}],
                "final_codes": [{"code": "99213", "type": "CPT"}],
            },
            headers=auth_headers,
        )
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_skill_accuracy(self, client, auth_headers):
        response = await client.get("/api/ai/accuracy/billing_code_suggester?days=7", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["total_predictions"] == 0

    @pytest.mark.asyncio
    async def test_create_prompt(self, client, auth_headers):
        response = await client.post(
            "/api/ai/prompts",
            json={"skill_name": "sdoh_passive_detector", "prompt_content": "Detect SDOH"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["version_number"] == 1
        assert data["prompt_type"] == "system"
        assert data["is_active"] is False

    @pytest.mark.asyncio
    async def test_no_active_prompt(self, client, auth_headers):
        response = await client.get("/api/ai/prompts/sdoh_passive_detector/active", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_start_missing_experiment(self, client, auth_headers):
        response = await client.post(f"/api/ai/experiments/{uuid.uuid4()}/start", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_start_running_experiment_conflict(self, client, auth_headers, mock_db):
        mock_db.execute.return_value = make_result(experiment(status="running"))
        response = await client.post(f"/api/ai/experiments/{uuid.uuid4()}/start", headers=auth_headers)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_results_not_found(self, client, auth_headers):
        response = await client.get(f"/api/ai/experiments/{uuid.uuid4()}/results", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_variant_without_running_experiment(self, client, auth_headers):
        response = await client.get("/api/ai/experiments/shorter-prompt/variant", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_variant_assignment(self, client, auth_headers, mock_db):
        running = experiment(status="running", traffic_split=1.0)
        mock_db.execute.return_value = make_result(running)
        response = await client.get("/api/ai/experiments/shorter-prompt/variant", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {
            "experiment_id": str(running.id),
            "prompt_id": str(running.treatment_prompt_id),
            "variant": "treatment",
        }

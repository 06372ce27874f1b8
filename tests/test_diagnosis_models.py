"""
Unit tests for the diagnosis domain models.
"""
import pytest

from models.diagnosis_models import (
    EVENT_STAGE,
    AnalysisSession,
    ConsolidatedResult,
    DiseaseFinding,
    EventType,
    PlantCandidate,
    ProgressEvent,
    Stage,
    TreatmentSet,
)


class TestAnalysisSession:
    def test_advances_forward(self):
        session = AnalysisSession(session_id="s1", image_ref="https://example.com/a.jpg")
        session.advance(Stage.IDENTIFYING)
        session.advance(Stage.IDENTIFYING)
        session.advance(Stage.TREATMENT_LOOKUP)

        assert session.stage is Stage.TREATMENT_LOOKUP

    def test_regression_raises(self):
        session = AnalysisSession(session_id="s1", image_ref="x", stage=Stage.ADVISORY)

        with pytest.raises(RuntimeError):
            session.advance(Stage.IDENTIFYING)

    def test_error_reachable_from_any_stage(self):
        session = AnalysisSession(session_id="s1", image_ref="x", stage=Stage.FINALIZING)
        session.advance(Stage.ERROR)

        assert session.stage is Stage.ERROR

    def test_no_transition_after_terminal_stage(self):
        session = AnalysisSession(session_id="s1", image_ref="x", stage=Stage.COMPLETE)

        with pytest.raises(RuntimeError):
            session.advance(Stage.ERROR)


class TestEventTables:
    def test_every_event_has_a_stage(self):
        assert set(EVENT_STAGE) == set(EventType)

    def test_terminal_events(self):
        assert ProgressEvent(EventType.COMPLETE, {}, 1).is_terminal
        assert ProgressEvent(EventType.ERROR, {}, 1).is_terminal
        assert not ProgressEvent(EventType.CARE, {}, 1).is_terminal


class TestTreatmentSet:
    def test_to_dict_omits_empty_chemical_and_biological(self):
        treatments = TreatmentSet(cultural=[{"name": "Bón phân cân đối"}])

        assert treatments.to_dict() == {"cultural": [{"name": "Bón phân cân đối"}]}

    def test_item_names_are_unique_and_stripped(self):
        treatments = TreatmentSet(
            chemical=[{"name": " Score 250EC "}],
            biological=[{"name": "Score 250EC"}, {"name": ""}],
            cultural=[{"name": "Tỉa lá gốc"}],
        )

        assert treatments.item_names() == ["Score 250EC", "Tỉa lá gốc"]

    def test_unknown_category_raises(self):
        with pytest.raises(ValueError):
            TreatmentSet().items_for("mechanical")


class TestConsolidatedResult:
    def test_healthy_result_uses_cultural_only_treatments(self):
        care = [{"name": "Tưới gốc vào buổi sáng"}]
        result = ConsolidatedResult(plant=PlantCandidate("Lúa", "Oryza sativa", 0.9), care=care)
        data = result.to_dict()

        assert data["isHealthy"] is True
        assert data["treatments"] == {"cultural": care}
        assert data["plant"]["commonName"] == "Lúa"

    def test_diseased_result_maps_disease_to_treatments(self):
        result = ConsolidatedResult(
            plant=PlantCandidate("Cà chua"),
            diseases=[DiseaseFinding("Đốm lá", 0.92)],
            treatments={"Đốm lá": TreatmentSet(chemical=[{"name": "Score 250EC"}])},
            analyzed_at=1700000000.5,
        )
        data = result.to_dict()

        assert data["isHealthy"] is False
        assert data["treatments"] == {"Đốm lá": {"chemical": [{"name": "Score 250EC"}], "cultural": []}}
        assert data["analyzedAt"] == 1700000000500

"""
Shared fixtures for the diagnosis service tests.
"""
import pytest

from models.diagnosis_models import DiseaseFinding, IdentificationResult, PlantCandidate, TreatmentSet
from utils.database_init import AsyncDatabaseInitializer
from utils.knowledge_seed import DEFAULT_SEED_PATH
from utils.settings import DiagnosisSettings


@pytest.fixture
def settings():
    return DiagnosisSettings(
        plantid_api_key="test-key",
        identify_timeout=1.0,
        request_timeout=5.0,
        advisory_timeout=1.0,
        knowledge_timeout=1.0,
    )


@pytest.fixture
def tomato_identification():
    return IdentificationResult(
        plant=PlantCandidate(common_name="Cà chua", scientific_name="Solanum lycopersicum", confidence=0.95),
        diseases=[DiseaseFinding(name="Đốm lá", confidence=0.92, description="Vết đốm nâu trên lá")],
    )


@pytest.fixture
def tomato_treatments():
    return TreatmentSet(
        chemical=[{"name": "Score 250EC", "activeIngredient": "Difenoconazole 250g/L"}],
        biological=[{"name": "Phun Bacillus subtilis", "timeframe": "1-2 tuần"}],
        cultural=[{"name": "Tỉa lá gốc, giữ tán thông thoáng", "priority": "Medium"}],
    )


@pytest.fixture
def knowledge_db(tmp_path):
    """Knowledge database in a temp dir, seeded lazily on first connection."""
    return AsyncDatabaseInitializer(database_dir=tmp_path, seed_path=DEFAULT_SEED_PATH)

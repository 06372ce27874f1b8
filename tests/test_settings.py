"""
Unit tests for environment-driven settings.
"""
import pytest

from utils.settings import DiagnosisSettings

ENV_NAMES = (
    "IDENTIFIER_BACKEND",
    "PLANTID_API_KEY",
    "PLANTID_BASE_URL",
    "IDENTIFY_TIMEOUT",
    "REQUEST_TIMEOUT",
    "ADVISORY_TIMEOUT",
    "MAX_DISEASES",
    "KNOWLEDGE_SEED_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestDiagnosisSettings:
    def test_defaults(self):
        settings = DiagnosisSettings()

        assert settings.identify_timeout == 30.0
        assert settings.request_timeout == 120.0
        assert settings.rate_limit_points == 10
        assert settings.rate_limit_window == 1.0
        assert settings.disease_min_confidence == 0.05

    def test_identify_timeout_must_be_shorter_than_request_timeout(self):
        with pytest.raises(ValueError):
            DiagnosisSettings(identify_timeout=120.0, request_timeout=120.0)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError):
            DiagnosisSettings(identifier_backend="leafsnap")


class TestFromEnv:
    def test_plantid_backend_requires_key(self):
        with pytest.raises(RuntimeError):
            DiagnosisSettings.from_env()

    def test_reads_values(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PLANTID_API_KEY", "abc")
        monkeypatch.setenv("PLANTID_BASE_URL", "https://plant.example/api/v3/")
        monkeypatch.setenv("IDENTIFY_TIMEOUT", "12.5")
        monkeypatch.setenv("MAX_DISEASES", "5")
        monkeypatch.setenv("KNOWLEDGE_SEED_PATH", str(tmp_path / "seed.json"))

        settings = DiagnosisSettings.from_env()

        assert settings.plantid_api_key == "abc"
        assert settings.plantid_base_url == "https://plant.example/api/v3"
        assert settings.identify_timeout == 12.5
        assert settings.max_diseases == 5
        assert settings.knowledge_seed_path == tmp_path / "seed.json"

    def test_openai_backend_without_plantid_key(self, monkeypatch):
        monkeypatch.setenv("IDENTIFIER_BACKEND", "OpenAI")

        assert DiagnosisSettings.from_env().identifier_backend == "openai"

    def test_invalid_number_raises(self, monkeypatch):
        monkeypatch.setenv("PLANTID_API_KEY", "abc")
        monkeypatch.setenv("REQUEST_TIMEOUT", "soon")

        with pytest.raises(RuntimeError):
            DiagnosisSettings.from_env()

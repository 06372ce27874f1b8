"""Environment-driven settings for the diagnosis service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

IDENTIFIER_BACKENDS = ("plantid", "openai")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class DiagnosisSettings:
    """Timeouts, thresholds and upstream endpoints used by the pipeline.

    Identification and advisory generation each get their own timeout, and
    both must be shorter than the overall request timeout.
    """

    plantid_api_key: str = ""
    plantid_base_url: str = "https://plant.id/api/v3"
    identifier_backend: str = "plantid"
    vision_model: str = "gpt-5"
    advisory_model: str = "gpt-5-mini"
    identify_timeout: float = 30.0
    image_fetch_timeout: float = 15.0
    request_timeout: float = 120.0
    advisory_timeout: float = 20.0
    knowledge_timeout: float = 10.0
    disease_min_confidence: float = 0.05
    max_diseases: int = 3
    rate_limit_points: int = 10
    rate_limit_window: float = 1.0
    knowledge_seed_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.identifier_backend not in IDENTIFIER_BACKENDS:
            raise ValueError(
                f"Unsupported identifier backend '{self.identifier_backend}'. "
                f"Supported: {', '.join(IDENTIFIER_BACKENDS)}"
            )
        if self.identify_timeout <= 0 or self.request_timeout <= 0 or self.advisory_timeout <= 0:
            raise ValueError("Timeouts must be positive.")
        if self.identify_timeout >= self.request_timeout:
            raise ValueError("IDENTIFY_TIMEOUT must be shorter than REQUEST_TIMEOUT.")
        if self.advisory_timeout >= self.request_timeout:
            raise ValueError("ADVISORY_TIMEOUT must be shorter than REQUEST_TIMEOUT.")
        if not 0.0 <= self.disease_min_confidence <= 1.0:
            raise ValueError("DISEASE_MIN_CONFIDENCE must be within [0, 1].")

    @classmethod
    def from_env(cls) -> "DiagnosisSettings":
        """Build settings from environment variables (after `load_dotenv`)."""
        backend = (os.getenv("IDENTIFIER_BACKEND") or "plantid").strip().lower()
        plantid_api_key = os.getenv("PLANTID_API_KEY", "")
        if backend == "plantid" and not plantid_api_key:
            raise RuntimeError("PLANTID_API_KEY environment variable is not set")

        seed_path = os.getenv("KNOWLEDGE_SEED_PATH")
        return cls(
            plantid_api_key=plantid_api_key,
            plantid_base_url=os.getenv("PLANTID_BASE_URL", cls.plantid_base_url).rstrip("/"),
            identifier_backend=backend,
            vision_model=os.getenv("VISION_MODEL", cls.vision_model),
            advisory_model=os.getenv("ADVISORY_MODEL", cls.advisory_model),
            identify_timeout=_env_float("IDENTIFY_TIMEOUT", cls.identify_timeout),
            image_fetch_timeout=_env_float("IMAGE_FETCH_TIMEOUT", cls.image_fetch_timeout),
            request_timeout=_env_float("REQUEST_TIMEOUT", cls.request_timeout),
            advisory_timeout=_env_float("ADVISORY_TIMEOUT", cls.advisory_timeout),
            knowledge_timeout=_env_float("KNOWLEDGE_TIMEOUT", cls.knowledge_timeout),
            disease_min_confidence=_env_float("DISEASE_MIN_CONFIDENCE", cls.disease_min_confidence),
            max_diseases=_env_int("MAX_DISEASES", cls.max_diseases),
            rate_limit_points=_env_int("RATE_LIMIT_POINTS", cls.rate_limit_points),
            rate_limit_window=_env_float("RATE_LIMIT_WINDOW", cls.rate_limit_window),
            knowledge_seed_path=Path(seed_path).expanduser() if seed_path else None,
        )

"""Diagnosis domain models for streaming plant analysis."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Stage(int, Enum):
	"""Pipeline stages in the order a session walks through them."""

	VALIDATING = 1
	IDENTIFYING = 2
	DISEASE_SCAN = 3
	TREATMENT_LOOKUP = 4
	ADVISORY = 5
	FINALIZING = 6
	COMPLETE = 7
	ERROR = 99


class EventType(str, Enum):
	"""Closed set of event names written to the stream."""

	CONNECTED = "connected"
	PLANT_ID = "plant_id"
	PLANT_IDENTIFIED = "plant_identified"
	DISEASE_FOUND = "disease_found"
	TREATMENTS_CHEMICAL = "treatments_chemical"
	TREATMENTS_BIOLOGICAL = "treatments_biological"
	TREATMENTS_CULTURAL = "treatments_cultural"
	CARE = "care"
	ADVISORY = "advisory"
	COMPLETE = "complete"
	ERROR = "error"


# Stage implied by each event; used to check ordering of captured streams.
EVENT_STAGE: Dict[EventType, Stage] = {
	EventType.CONNECTED: Stage.VALIDATING,
	EventType.PLANT_ID: Stage.IDENTIFYING,
	EventType.PLANT_IDENTIFIED: Stage.IDENTIFYING,
	EventType.DISEASE_FOUND: Stage.DISEASE_SCAN,
	EventType.TREATMENTS_CHEMICAL: Stage.TREATMENT_LOOKUP,
	EventType.TREATMENTS_BIOLOGICAL: Stage.TREATMENT_LOOKUP,
	EventType.TREATMENTS_CULTURAL: Stage.TREATMENT_LOOKUP,
	EventType.CARE: Stage.TREATMENT_LOOKUP,
	EventType.ADVISORY: Stage.ADVISORY,
	EventType.COMPLETE: Stage.FINALIZING,
	EventType.ERROR: Stage.ERROR,
}

TERMINAL_EVENTS = frozenset({EventType.COMPLETE, EventType.ERROR})

TREATMENT_CATEGORIES: Tuple[str, ...] = ("chemical", "biological", "cultural")


@dataclass(frozen=True)
class PlantCandidate:
	"""Best plant match returned by the identification service."""

	common_name: str
	scientific_name: Optional[str] = None
	confidence: float = 0.0

	def to_dict(self) -> Dict[str, Any]:
		return {
			"commonName": self.common_name,
			"scientificName": self.scientific_name,
			"confidence": self.confidence,
		}


@dataclass(frozen=True)
class DiseaseFinding:
	"""One suspected disease with its model confidence."""

	name: str
	confidence: float = 0.0
	description: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		return {"name": self.name, "confidence": self.confidence, "description": self.description}


@dataclass
class IdentificationResult:
	"""Normalized output of an identification adapter."""

	plant: Optional[PlantCandidate]
	diseases: List[DiseaseFinding] = field(default_factory=list)


@dataclass
class TreatmentSet:
	"""Treatment items for one disease grouped by category.

	Attributes:
		chemical: Product items (dosage, usage, isolation period...).
		biological: Biological method items (materials, timeframe, effectiveness).
		cultural: Cultural practice items ordered by priority.
		unavailable: Categories whose knowledge store could not be queried.
	"""

	chemical: List[Dict[str, Any]] = field(default_factory=list)
	biological: List[Dict[str, Any]] = field(default_factory=list)
	cultural: List[Dict[str, Any]] = field(default_factory=list)
	unavailable: Tuple[str, ...] = ()

	def items_for(self, category: str) -> List[Dict[str, Any]]:
		if category not in TREATMENT_CATEGORIES:
			raise ValueError(f"Unknown treatment category: '{category}'")
		return getattr(self, category)

	def item_names(self) -> List[str]:
		"""Return every item name across categories, first occurrence only."""
		names: Dict[str, None] = {}
		for category in TREATMENT_CATEGORIES:
			for item in self.items_for(category):
				name = (item.get("name") or "").strip()
				if name:
					names.setdefault(name, None)
		return list(names)

	def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
		"""Serialize, keeping chemical/biological only when they hold items."""
		data: Dict[str, List[Dict[str, Any]]] = {}
		if self.chemical:
			data["chemical"] = list(self.chemical)
		if self.biological:
			data["biological"] = list(self.biological)
		data["cultural"] = list(self.cultural)
		return data


@dataclass
class AnalysisSession:
	"""Per-request state owned by a single orchestrator run."""

	session_id: str
	image_ref: str
	stage: Stage = Stage.VALIDATING
	started_at: float = field(default_factory=lambda: time.time())

	def advance(self, stage: Stage) -> None:
		"""Move forward to `stage`; only ERROR may be entered from anywhere."""
		if self.stage in (Stage.COMPLETE, Stage.ERROR):
			raise RuntimeError(f"Session {self.session_id} already ended in {self.stage.name}")
		if stage is not Stage.ERROR and stage < self.stage:
			raise RuntimeError(f"Stage cannot move back from {self.stage.name} to {stage.name}")
		self.stage = stage


@dataclass(frozen=True)
class ProgressEvent:
	"""A single milestone pushed to the client."""

	type: EventType
	payload: Dict[str, Any]
	seq: int

	@property
	def is_terminal(self) -> bool:
		return self.type in TERMINAL_EVENTS


@dataclass
class ConsolidatedResult:
	"""Terminal merge of everything a session produced."""

	plant: Optional[PlantCandidate]
	diseases: List[DiseaseFinding] = field(default_factory=list)
	treatments: Dict[str, TreatmentSet] = field(default_factory=dict)
	care: List[Dict[str, Any]] = field(default_factory=list)
	advisory: Optional[str] = None
	image_url: Optional[str] = None
	analyzed_at: float = field(default_factory=lambda: time.time())

	@property
	def is_healthy(self) -> bool:
		return not self.diseases

	def to_dict(self) -> Dict[str, Any]:
		if self.is_healthy:
			treatments: Dict[str, Any] = TreatmentSet(cultural=self.care).to_dict()
		else:
			treatments = {name: tset.to_dict() for name, tset in self.treatments.items()}
		return {
			"plant": self.plant.to_dict() if self.plant else None,
			"isHealthy": self.is_healthy,
			"diseases": [finding.to_dict() for finding in self.diseases],
			"treatments": treatments,
			"care": list(self.care),
			"advisory": self.advisory,
			"analyzedAt": int(self.analyzed_at * 1000),
			"imageUrl": self.image_url,
		}

"""Fan out one disease lookup to the chemical, biological and cultural stores."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence

from dal.treatment_dal import CULTURAL_LIMIT, TreatmentDAL
from models.diagnosis_models import TreatmentSet
from services.diagnosis.knowledge_matcher import (
	GENERIC_DISEASE_TERMS,
	GENERIC_PLANT_TERMS,
	TREATMENT_LIMIT,
	MatchScore,
	extract_keywords,
	merge_matches,
	normalize_text,
	score,
)


def search_terms(text: Optional[str], generic_terms) -> List[str]:
	"""Return the OR-combined search terms for a disease or plant name.

	Each keyword is used as-is and accent-folded; the full folded phrase is
	added when it is longer than three characters. With no usable keyword the
	whole phrase is searched.
	"""
	phrase = " ".join((text or "").split())
	if not phrase:
		return []
	terms: List[str] = []
	for keyword in extract_keywords(phrase, generic_terms):
		for term in (keyword, normalize_text(keyword)):
			if term not in terms:
				terms.append(term)
	folded_phrase = normalize_text(phrase)
	if not terms:
		terms.append(phrase.lower())
	if len(folded_phrase) > 3 and folded_phrase not in terms:
		terms.append(folded_phrase)
	return terms


def _rank_by_targets(records: Sequence[Any], query_terms: Sequence[str], limit: int) -> List[Any]:
	"""Order records by the best matcher score of any target disease, one per name."""
	by_name: Dict[str, Any] = {}
	matches: List[MatchScore] = []
	for record in records:
		best = max(
			(score(term, target) for term in query_terms for target in record.target_diseases),
			default=0,
		)
		by_name.setdefault(record.name, record)
		matches.append(MatchScore(record.name, best))
	return [by_name[match.candidate_name] for match in merge_matches(matches, limit)]


class TreatmentAggregator:
	"""Query the three knowledge stores for a disease and plant.

	The legs run concurrently; each is bounded by `leg_timeout`. A failing leg
	is logged and listed in `TreatmentSet.unavailable` instead of failing the
	lookup.
	"""

	def __init__(self, dal: TreatmentDAL, leg_timeout: float = 10.0) -> None:
		if dal is None:
			raise ValueError("TreatmentDAL is required.")
		self.dal = dal
		self.leg_timeout = leg_timeout

	async def chemical(self, disease_name: str, plant_name: Optional[str] = None) -> List[Dict[str, Any]]:
		"""Return up to five verified products for the disease."""
		disease_terms = search_terms(disease_name, GENERIC_DISEASE_TERMS)
		if not disease_terms:
			return []
		crop_terms = search_terms(plant_name, GENERIC_PLANT_TERMS) if plant_name else []
		products = await self.dal.find_products(disease_terms, crop_terms)
		ranked = _rank_by_targets(products, [disease_name, *disease_terms], TREATMENT_LIMIT)
		logging.info("Found %d products for disease '%s', crop '%s'", len(ranked), disease_name, plant_name)
		return [product.to_item() for product in ranked]

	async def biological(self, disease_name: str) -> List[Dict[str, Any]]:
		"""Return up to five verified biological methods for the disease."""
		disease_terms = search_terms(disease_name, GENERIC_DISEASE_TERMS)
		if not disease_terms:
			return []
		methods = await self.dal.find_biological_methods(disease_terms)
		ranked = _rank_by_targets(methods, [disease_name, *disease_terms], TREATMENT_LIMIT)
		logging.info("Found %d biological methods for disease '%s'", len(ranked), disease_name)
		return [method.to_item() for method in ranked]

	async def cultural(self, plant_name: Optional[str] = None) -> List[Dict[str, Any]]:
		"""Return up to ten verified practices for the plant, High priority first."""
		plant_terms = search_terms(plant_name, GENERIC_PLANT_TERMS) if plant_name else []
		practices = await self.dal.find_cultural_practices(plant_terms, CULTURAL_LIMIT)
		logging.info("Found %d cultural practices for crop '%s'", len(practices), plant_name)
		return [practice.to_item() for practice in practices]

	async def care_guide(self, plant_name: Optional[str] = None) -> List[Dict[str, Any]]:
		"""Cultural-only lookup used for general plant care."""
		return await self.cultural(plant_name)

	async def lookup(self, disease_name: Optional[str], plant_name: Optional[str] = None) -> TreatmentSet:
		"""Return the TreatmentSet for a disease, or cultural practices only when there is none."""
		legs: Dict[str, Awaitable[List[Dict[str, Any]]]] = {}
		if disease_name:
			legs["chemical"] = self.chemical(disease_name, plant_name)
			legs["biological"] = self.biological(disease_name)
		legs["cultural"] = self.cultural(plant_name)

		results = await asyncio.gather(*(self._run_leg(category, leg) for category, leg in legs.items()))

		treatments = TreatmentSet()
		unavailable = []
		for category, items in zip(legs, results):
			if items is None:
				unavailable.append(category)
				continue
			setattr(treatments, category, items)
		treatments.unavailable = tuple(unavailable)
		return treatments

	async def _run_leg(self, category: str, leg: Awaitable[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
		try:
			return await asyncio.wait_for(leg, timeout=self.leg_timeout)
		except asyncio.TimeoutError:
			logging.warning("Knowledge store lookup for %s timed out after %.1fs", category, self.leg_timeout)
		except Exception as exc:
			logging.warning("Knowledge store lookup for %s failed: %s", category, exc)
		return None

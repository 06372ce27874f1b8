"""Fuzzy and keyword scoring of free-text disease names.

Scores follow fixed tiers so results are reproducible across runs:

	exact (case-insensitive or accent-folded)   100
	accent-folded prefix                          80
	accent-folded substring, either direction     60
	keyword overlap                               40 + 5 per shared keyword

Ranking keeps the best score per candidate name, sorts descending and keeps
first-seen order for ties.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List, NamedTuple, Sequence, Union

EXACT_SCORE = 100
PREFIX_SCORE = 80
SUBSTRING_SCORE = 60
KEYWORD_BASE_SCORE = 40
KEYWORD_STEP_SCORE = 5

SUGGESTION_LIMIT = 15
TREATMENT_LIMIT = 5
MIN_QUERY_LENGTH = 2

GENERIC_DISEASE_TERMS = frozenset({"bệnh", "disease", "gây", "hại", "trên", "của", "cây", "plant"})
GENERIC_PLANT_TERMS = frozenset({"cây", "plant"})

COMMON_DISEASES = (
	"Đốm lá",
	"Thối rễ",
	"Phấn trắng",
	"Mốc sương",
	"Rỉ sắt",
	"Vàng lá",
	"Thối thân",
	"Sâu bệnh",
	"Nấm đất",
	"Bạch tạng",
	"Đốm vàng",
	"Thối quả",
	"Nấm hồng",
	"Đốm nâu",
	"Thối nhũn",
	"Bệnh héo xanh",
	"Bệnh khảm",
	"Bệnh xoăn lá",
	"Thối cổ rễ",
	"Bệnh cháy lá",
)

_SPLIT_RE = re.compile(r"[\s,]+")


class MatchScore(NamedTuple):
	candidate_name: str
	score: int


def normalize_text(text: str) -> str:
	"""Lowercase, strip combining marks after NFD and collapse whitespace."""
	decomposed = unicodedata.normalize("NFD", (text or "").lower())
	stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
	return " ".join(stripped.split())


def _tokens(text: str) -> List[str]:
	return [token for token in _SPLIT_RE.split(text.strip()) if token]


def extract_keywords(text: str, generic_terms: Iterable[str] = GENERIC_DISEASE_TERMS, min_length: int = 3) -> List[str]:
	"""Return lowercase search keywords derived from a disease or plant name.

	Generic words are removed, the rest is split on whitespace and commas and
	tokens shorter than `min_length` are dropped. Order is preserved and
	duplicates removed.
	"""
	generic = {term.lower() for term in generic_terms}
	keywords: List[str] = []
	for token in _tokens((text or "").lower()):
		if token in generic or len(token) < min_length:
			continue
		if token not in keywords:
			keywords.append(token)
	return keywords


def _keyword_set(normalized: str) -> set:
	generic = {normalize_text(term) for term in GENERIC_DISEASE_TERMS}
	return {token for token in _tokens(normalized) if len(token) >= MIN_QUERY_LENGTH and token not in generic}


def score(query: str, candidate: str) -> int:
	"""Return the 0-100 similarity score of `candidate` for `query`."""
	raw_query = (query or "").strip().lower()
	raw_candidate = (candidate or "").strip().lower()
	if not raw_query or not raw_candidate:
		return 0

	norm_query = normalize_text(raw_query)
	norm_candidate = normalize_text(raw_candidate)
	if raw_query == raw_candidate or norm_query == norm_candidate:
		return EXACT_SCORE
	if norm_candidate.startswith(norm_query):
		return PREFIX_SCORE
	if norm_query in norm_candidate or norm_candidate in norm_query:
		return SUBSTRING_SCORE

	overlap = _keyword_set(norm_query) & _keyword_set(norm_candidate)
	if overlap:
		return KEYWORD_BASE_SCORE + KEYWORD_STEP_SCORE * len(overlap)
	return 0


def merge_matches(matches: Iterable[MatchScore], limit: int | None = None) -> List[MatchScore]:
	"""Deduplicate by candidate name keeping the max score, then sort and truncate."""
	best: dict = {}
	for match in matches:
		current = best.get(match.candidate_name)
		if current is None or match.score > current:
			best[match.candidate_name] = match.score
	# dict preserves first-seen order and sorted() is stable
	ranked = sorted(
		(MatchScore(name, value) for name, value in best.items()),
		key=lambda match: match.score,
		reverse=True,
	)
	return ranked[:limit] if limit is not None else ranked


def rank_scored(
	queries: Union[str, Sequence[str]],
	candidates: Sequence[str],
	limit: int | None = SUGGESTION_LIMIT,
) -> List[MatchScore]:
	"""Score every query against every candidate and merge the non-zero matches."""
	if isinstance(queries, str):
		queries = [queries]
	matches = []
	for query in queries:
		for candidate in candidates:
			value = score(query, candidate)
			if value > 0:
				matches.append(MatchScore(candidate, value))
	return merge_matches(matches, limit)


def rank(
	queries: Union[str, Sequence[str]],
	candidates: Sequence[str],
	limit: int | None = SUGGESTION_LIMIT,
) -> List[str]:
	"""Return candidate names ordered by best score.

	A single query shorter than two characters is not scored; every known
	candidate is returned in its original order instead.
	"""
	if isinstance(queries, str) and len(queries.strip()) < MIN_QUERY_LENGTH:
		return list(dict.fromkeys(candidates))
	return [match.candidate_name for match in rank_scored(queries, candidates, limit)]


def suggest_diseases(query: str, candidates: Sequence[str] = COMMON_DISEASES) -> List[str]:
	"""Autocomplete disease names for the search box."""
	return rank(query or "", candidates, SUGGESTION_LIMIT)

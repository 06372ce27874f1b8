"""Async Data Access Layer for the three knowledge stores.

Provides TreatmentDAL with read queries over PRODUCT, BIOLOGICAL_METHOD and
CULTURAL_PRACTICE, compatible with `utils.database_init.AsyncDatabaseInitializer`.
Only verified rows are ever returned.
"""

from __future__ import annotations

import json
from typing import List, Sequence, Tuple

from models.treatment_records import BiologicalMethod, ChemicalProduct, CulturalPractice
from services.diagnosis.knowledge_matcher import normalize_text
from utils.database_init import AsyncDatabaseInitializer

CANDIDATE_LIMIT = 50
CULTURAL_LIMIT = 10

_PRIORITY_ORDER = "CASE priority WHEN 'High' THEN 1 WHEN 'Medium' THEN 2 WHEN 'Low' THEN 3 ELSE 4 END"


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _any_element_matches(column: str, terms: Sequence[str]) -> Tuple[str, List[str]]:
    """Build an EXISTS clause matching any JSON array element against any term.

    Each term matches either its lowercase form against the lowercased
    element, or its accent-folded form against the folded element.
    """
    conditions: List[str] = []
    params: List[str] = []
    for term in terms:
        raw = term.strip().lower()
        if not raw:
            continue
        conditions.append("lower_text(value) LIKE ? ESCAPE '\\'")
        params.append(_like_pattern(raw))
        conditions.append("fold_text(value) LIKE ? ESCAPE '\\'")
        params.append(_like_pattern(normalize_text(raw)))
    if not conditions:
        return "", []
    clause = f"EXISTS (SELECT 1 FROM json_each({column}) WHERE {' OR '.join(conditions)})"
    return clause, params


class TreatmentDAL:
    """Data access layer for remediation knowledge.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection` with `lower_text`/`fold_text` registered).
    """

    _PRODUCT_COLUMNS = (
        "id, name, active_ingredient, manufacturer, target_diseases, target_crops, dosage, usage, "
        "source, verified, price, image_url, frequency, isolation_period, precautions"
    )
    _BIOLOGICAL_COLUMNS = "id, name, target_diseases, materials, steps, timeframe, effectiveness, source, verified"
    _CULTURAL_COLUMNS = "id, category, action, description, priority, applicable_to, source, verified"

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def find_products(
        self,
        disease_terms: Sequence[str],
        crop_terms: Sequence[str] = (),
        limit: int = CANDIDATE_LIMIT,
    ) -> List[ChemicalProduct]:
        """Return verified products targeting any disease term.

        Args:
            disease_terms: Keywords or phrases; at least one must match a target disease.
            crop_terms: Optional crop keywords; when given one must match a target crop.
            limit: Maximum number of candidate rows.
        """
        disease_clause, params = _any_element_matches("target_diseases", disease_terms)
        if not disease_clause:
            return []
        where = ["verified = 1", disease_clause]
        crop_clause, crop_params = _any_element_matches("target_crops", crop_terms)
        if crop_clause:
            where.append(crop_clause)
            params.extend(crop_params)

        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._PRODUCT_COLUMNS} FROM PRODUCT WHERE {' AND '.join(where)} ORDER BY id LIMIT ?",
                (*params, limit),
            )
            rows = await cur.fetchall()
            return [self._row_to_product(r) for r in rows]

    async def find_biological_methods(
        self,
        disease_terms: Sequence[str],
        limit: int = CANDIDATE_LIMIT,
    ) -> List[BiologicalMethod]:
        """Return verified biological methods targeting any disease term."""
        disease_clause, params = _any_element_matches("target_diseases", disease_terms)
        if not disease_clause:
            return []

        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._BIOLOGICAL_COLUMNS} FROM BIOLOGICAL_METHOD "
                f"WHERE verified = 1 AND {disease_clause} ORDER BY id LIMIT ?",
                (*params, limit),
            )
            rows = await cur.fetchall()
            return [self._row_to_biological(r) for r in rows]

    async def find_cultural_practices(
        self,
        plant_terms: Sequence[str] = (),
        limit: int = CULTURAL_LIMIT,
    ) -> List[CulturalPractice]:
        """Return verified practices for a plant, highest priority first.

        With no plant terms every verified practice is eligible.
        """
        where = ["verified = 1"]
        plant_clause, params = _any_element_matches("applicable_to", plant_terms)
        if plant_clause:
            where.append(plant_clause)

        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._CULTURAL_COLUMNS} FROM CULTURAL_PRACTICE WHERE {' AND '.join(where)} "
                f"ORDER BY {_PRIORITY_ORDER}, id LIMIT ?",
                (*params, limit),
            )
            rows = await cur.fetchall()
            return [self._row_to_cultural(r) for r in rows]

    @staticmethod
    def _row_to_product(row: Sequence[object]) -> ChemicalProduct:
        """Convert a DB row tuple into a ChemicalProduct."""
        return ChemicalProduct(
            id=row[0],
            name=row[1],
            active_ingredient=row[2],
            manufacturer=row[3],
            target_diseases=json.loads(row[4] or "[]"),
            target_crops=json.loads(row[5] or "[]"),
            dosage=row[6],
            usage=row[7],
            source=row[8],
            verified=bool(row[9]),
            price=row[10],
            image_url=row[11],
            frequency=row[12],
            isolation_period=row[13],
            precautions=json.loads(row[14] or "[]"),
        )

    @staticmethod
    def _row_to_biological(row: Sequence[object]) -> BiologicalMethod:
        """Convert a DB row tuple into a BiologicalMethod."""
        return BiologicalMethod(
            id=row[0],
            name=row[1],
            target_diseases=json.loads(row[2] or "[]"),
            materials=row[3],
            steps=row[4],
            timeframe=row[5],
            effectiveness=row[6],
            source=row[7],
            verified=bool(row[8]),
        )

    @staticmethod
    def _row_to_cultural(row: Sequence[object]) -> CulturalPractice:
        """Convert a DB row tuple into a CulturalPractice."""
        return CulturalPractice(
            id=row[0],
            category=row[1],
            action=row[2],
            description=row[3],
            priority=row[4],
            applicable_to=json.loads(row[5] or "[]"),
            source=row[6],
            verified=bool(row[7]),
        )

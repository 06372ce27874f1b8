"""Load verified remediation knowledge from a JSON seed file."""

import json
from pathlib import Path
from typing import Any, Dict, List

import aiosqlite

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SEED_PATH = BASE_DIR / "data" / "knowledge_seed.json"


def _json_list(values: Any) -> str:
    return json.dumps(list(values or []), ensure_ascii=False)


def load_seed(seed_path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """Read the seed file and return its `products`, `biological_methods` and `cultural_practices` lists."""
    with open(seed_path, "r", encoding="utf-8") as seed_file:
        data = json.load(seed_file)
    if not isinstance(data, dict):
        raise ValueError(f"Seed file {seed_path} must contain a JSON object.")
    return {
        "products": data.get("products") or [],
        "biological_methods": data.get("biological_methods") or [],
        "cultural_practices": data.get("cultural_practices") or [],
    }


async def seed_knowledge(db: aiosqlite.Connection, seed_path: Path) -> int:
    """Insert every seed record and return how many rows were written."""
    seed = load_seed(seed_path)

    for product in seed["products"]:
        await db.execute(
            "INSERT INTO PRODUCT (name, active_ingredient, manufacturer, target_diseases, target_crops, "
            "dosage, usage, source, verified, price, image_url, frequency, isolation_period, precautions) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                product["name"],
                product["activeIngredient"],
                product["manufacturer"],
                _json_list(product.get("targetDiseases")),
                _json_list(product.get("targetCrops")),
                product["dosage"],
                product["usage"],
                product["source"],
                int(bool(product.get("verified"))),
                product.get("price"),
                product.get("imageUrl"),
                product.get("frequency"),
                product.get("isolationPeriod"),
                _json_list(product.get("precautions")),
            ),
        )

    for method in seed["biological_methods"]:
        await db.execute(
            "INSERT INTO BIOLOGICAL_METHOD (name, target_diseases, materials, steps, timeframe, "
            "effectiveness, source, verified) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                method["name"],
                _json_list(method.get("targetDiseases")),
                method["materials"],
                method["steps"],
                method["timeframe"],
                method["effectiveness"],
                method["source"],
                int(bool(method.get("verified"))),
            ),
        )

    for practice in seed["cultural_practices"]:
        await db.execute(
            "INSERT INTO CULTURAL_PRACTICE (category, action, description, priority, applicable_to, "
            "source, verified) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                practice["category"],
                practice["action"],
                practice["description"],
                practice.get("priority") or "Medium",
                _json_list(practice.get("applicableTo")),
                practice["source"],
                int(bool(practice.get("verified"))),
            ),
        )

    await db.commit()
    return len(seed["products"]) + len(seed["biological_methods"]) + len(seed["cultural_practices"])

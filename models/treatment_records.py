from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ChemicalProduct:
    """In-memory representation of a row in the PRODUCT table.

    Attributes:
        id: Primary key (None for new records).
        name: Commercial product name.
        active_ingredient: Active ingredient and concentration.
        manufacturer: Producer or distributor.
        target_diseases: Disease names the product is registered against.
        target_crops: Crops the product may be applied to.
        dosage: Mixing ratio, e.g. "0.5-0.8 ml/lít nước".
        usage: Application instructions.
        source: Citation for the record.
        verified: Only verified rows are served to the pipeline.
    """

    id: Optional[int]
    name: str
    active_ingredient: str
    manufacturer: str
    target_diseases: List[str] = field(default_factory=list)
    target_crops: List[str] = field(default_factory=list)
    dosage: str = ""
    usage: str = ""
    source: str = ""
    verified: bool = False
    price: Optional[str] = None
    image_url: Optional[str] = None
    frequency: Optional[str] = None
    isolation_period: Optional[str] = None
    precautions: List[str] = field(default_factory=list)

    def to_item(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "activeIngredient": self.active_ingredient,
            "manufacturer": self.manufacturer,
            "targetDiseases": list(self.target_diseases),
            "targetCrops": list(self.target_crops),
            "dosage": self.dosage,
            "usage": self.usage,
            "imageUrl": self.image_url,
            "frequency": self.frequency,
            "isolationPeriod": self.isolation_period,
            "precautions": list(self.precautions),
            "price": self.price,
            "source": self.source,
        }


@dataclass
class BiologicalMethod:
    """In-memory representation of a row in the BIOLOGICAL_METHOD table."""

    id: Optional[int]
    name: str
    target_diseases: List[str] = field(default_factory=list)
    materials: str = ""
    steps: str = ""
    timeframe: str = ""
    effectiveness: str = ""
    source: str = ""
    verified: bool = False

    def to_item(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.steps,
            "materials": self.materials,
            "timeframe": self.timeframe,
            "effectiveness": self.effectiveness,
            "steps": self.steps,
            "source": self.source,
        }


@dataclass
class CulturalPractice:
    """In-memory representation of a row in the CULTURAL_PRACTICE table.

    `category` is one of soil, water, fertilizer, light, spacing and
    `priority` one of High, Medium, Low.
    """

    id: Optional[int]
    category: str
    action: str
    description: str
    priority: str = "Medium"
    applicable_to: List[str] = field(default_factory=list)
    source: str = ""
    verified: bool = False

    def to_item(self) -> Dict[str, Any]:
        return {
            "name": self.action,
            "description": self.description,
            "priority": self.priority,
            "category": self.category,
            "source": self.source,
        }

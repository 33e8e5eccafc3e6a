"""Virtual-pet economy: weighted lottery catalog and evolution stages.

Evolution points are a separate currency. They come only from feeding
drawn food items, and nothing here converts them (or inventory) into XP.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class WheelItem:
    name: str
    type: str  # FOOD | DECORATION
    rarity: str  # COMMON | RARE | EPIC | LEGENDARY
    evolution_points: int
    weight: int

    @property
    def is_food(self) -> bool:
        return self.type == "FOOD"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "rarity": self.rarity,
            "evolution_points": self.evolution_points,
        }


WHEEL_ITEMS: tuple[WheelItem, ...] = (
    WheelItem("Rice Ball", "FOOD", "COMMON", 10, 30),
    WheelItem("Sushi", "FOOD", "COMMON", 15, 25),
    WheelItem("Ramen", "FOOD", "RARE", 25, 15),
    WheelItem("Golden Apple", "FOOD", "EPIC", 50, 8),
    WheelItem("Dragon Fruit", "FOOD", "LEGENDARY", 100, 2),
    WheelItem("Bonsai Tree", "DECORATION", "COMMON", 0, 20),
    WheelItem("Lucky Cat", "DECORATION", "RARE", 0, 10),
    WheelItem("Golden Trophy", "DECORATION", "EPIC", 0, 5),
    WheelItem("Crystal Orb", "DECORATION", "LEGENDARY", 0, 2),
)

ITEMS_BY_NAME = {item.name: item for item in WHEEL_ITEMS}

# (stage, evolution points required), ascending
EVOLUTION_STAGES: tuple[tuple[str, int], ...] = (
    ("egg", 0),
    ("baby", 50),
    ("teen", 150),
    ("adult", 400),
    ("master", 1000),
)
STAGE_ORDER = [name for name, _ in EVOLUTION_STAGES]


def draw(items: Iterable[WheelItem] = WHEEL_ITEMS, rng: Optional[random.Random] = None) -> WheelItem:
    """Weighted draw: roll in [0, total weight) and walk the catalog in order."""
    pool = list(items)
    total = sum(i.weight for i in pool)
    if total <= 0:
        raise ValueError("Lottery catalog has no weight.")
    roll = (rng or random).random() * total
    for item in pool:
        roll -= item.weight
        if roll < 0:
            return item
    return pool[-1]


def stage_for(evolution_points: int) -> str:
    stage = EVOLUTION_STAGES[0][0]
    for name, threshold in EVOLUTION_STAGES:
        if evolution_points >= threshold:
            stage = name
    return stage


def advance_stage(current_stage: str, evolution_points: int) -> str:
    """Stage for the new point total, never moving backwards."""
    candidate = stage_for(evolution_points)
    current_rank = STAGE_ORDER.index(current_stage) if current_stage in STAGE_ORDER else 0
    if STAGE_ORDER.index(candidate) > current_rank:
        return candidate
    return STAGE_ORDER[current_rank]


def next_stage(stage: str) -> Optional[tuple[str, int]]:
    idx = STAGE_ORDER.index(stage) if stage in STAGE_ORDER else 0
    if idx + 1 < len(EVOLUTION_STAGES):
        return EVOLUTION_STAGES[idx + 1]
    return None

"""The fixed tarot deck."""

import json
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from importlib import resources
from typing import Any

IMAGE_DIR = "images"


class Orientation(str, Enum):
    """Which way up a card was drawn."""

    UPRIGHT = "upright"
    REVERSED = "reversed"


@dataclass(frozen=True)
class CardRecord:
    """Immutable entry of the deck."""

    short_name: str
    full_name: str
    upright_meaning: str
    reversed_meaning: str
    image_ref: str

    def to_dict(self) -> dict[str, str]:
        return {
            "shortName": self.short_name,
            "name": self.full_name,
            "meaningUp": self.upright_meaning,
            "meaningRev": self.reversed_meaning,
            "image": self.image_ref,
        }


@dataclass(frozen=True)
class DrawnCard:
    """A card as it came out of one draw."""

    card: CardRecord
    orientation: Orientation
    position: str | None = None

    @property
    def meaning(self) -> str:
        if self.orientation is Orientation.REVERSED:
            return self.card.reversed_meaning
        return self.card.upright_meaning

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "card": self.card.to_dict(),
            "orientation": self.orientation.value,
            "meaning": self.meaning,
            "image": self.card.image_ref,
        }


def _record_from_raw(raw: dict[str, str]) -> CardRecord:
    short_name = raw["name_short"]
    return CardRecord(
        short_name=short_name,
        full_name=raw["name"],
        upright_meaning=raw["meaning_up"],
        reversed_meaning=raw["meaning_rev"],
        image_ref=f"{IMAGE_DIR}/{short_name}.jpeg",
    )


@lru_cache(maxsize=1)
def load_deck() -> tuple[CardRecord, ...]:
    """Load the bundled card table once; the result is shared and never mutated."""
    text = resources.files("tarot_oracle").joinpath("data/cards.json").read_text(encoding="utf-8")
    deck = tuple(_record_from_raw(raw) for raw in json.loads(text)["cards"])

    short_names = [card.short_name for card in deck]
    if len(set(short_names)) != len(short_names):
        raise ValueError("Card table contains duplicate short names")
    return deck


def find_card(name: str, deck: tuple[CardRecord, ...] | None = None) -> CardRecord | None:
    """Look a card up by short name or full name, case-insensitively."""
    wanted = name.strip().lower()
    for card in deck if deck is not None else load_deck():
        if card.short_name == wanted or card.full_name.lower() == wanted:
            return card
    return None

"""Spread templates and the random draw engine.

Draws are sampled without replacement: the eligible pool is shuffled and a
prefix of the required length is taken. Every card gets an independent fair
coin flip for its orientation. Asking for more cards than the pool holds is
clamped to the pool size.
"""

import random
from dataclasses import dataclass

from .cards import CardRecord, DrawnCard, Orientation, find_card, load_deck
from .exceptions import SpreadError

DEFAULT_SPREAD_COUNT = 3


@dataclass(frozen=True)
class SpreadTemplate:
    """Fixed position layout for a named spread."""

    kind: str
    title: str
    positions: tuple[str, ...]
    variable_count: bool = False
    accepts_extras: bool = False
    significator_anchored: bool = False


CELTIC_CROSS_POSITIONS = (
    "1: Present",
    "2: Immediate Challenge (crossing)",
    "3: Distant Past",
    "4: Recent Past",
    "5: Best Outcome / Conscious",
    "6: Immediate Future / Subconscious",
    "7: Self / Attitude",
    "8: Environment / Others",
    "9: Hopes and Fears",
    "10: Outcome",
)

_TEMPLATES = (
    SpreadTemplate("one", "Single Card", ("focus",)),
    SpreadTemplate("three", "Past, Present & Future", ("past", "present", "future")),
    SpreadTemplate(
        "past-present-future", "Past, Present & Future", ("past", "present", "future")
    ),
    SpreadTemplate(
        "five",
        "Five Card Spread",
        ("situation", "challenge", "conscious", "subconscious", "outcome"),
    ),
    SpreadTemplate("spread", "Generic Spread", (), variable_count=True),
    SpreadTemplate("celtic-cross", "Celtic Cross", CELTIC_CROSS_POSITIONS),
    SpreadTemplate(
        "release-retain", "Release & Retain", ("1: RELEASE", "2: RETAIN"), accepts_extras=True
    ),
    SpreadTemplate(
        "asset-hindrance",
        "Asset & Hindrance",
        ("1: ASSET", "2: HINDRANCE"),
        accepts_extras=True,
    ),
    SpreadTemplate(
        "advice-universe",
        "Advice from the Universe",
        ("1: WHAT YOU NEED TO KNOW", "2: A NEW PERSPECTIVE", "3: ACTION TO TAKE"),
    ),
    SpreadTemplate("mind-body-spirit", "Mind, Body & Spirit", ("1: MIND", "2: BODY", "3: SPIRIT")),
    SpreadTemplate(
        "existing-relationship",
        "Your Existing Relationship",
        ("1: ME", "2: THEM", "3: THE BRIDGE", "4: HIGHEST POTENTIAL", "5: LOWEST POTENTIAL"),
    ),
    SpreadTemplate(
        "potential-relationship",
        "Your Potential Relationship",
        (
            "1: ME",
            "2: WHAT LOVE ASKS OF ME",
            "3: MESSAGE FROM THE UNIVERSE",
            "4: ACTION TO TAKE",
            "5: WHAT TO RELEASE",
        ),
    ),
    SpreadTemplate(
        "law-of-attraction",
        "Law of Attraction",
        (
            "SIGNIFICATOR",
            "2: YOUR CURRENT ENERGY",
            "3: THE ENERGY YOU NEED",
            "4: HOW TO GET INTO ALIGNMENT",
            "5: LETTING GO OF THE HOW",
        ),
        significator_anchored=True,
    ),
    SpreadTemplate(
        "making-decision",
        "Making a Decision",
        (
            "1: OPTION 1",
            "2: OPTION 2",
            "3: OPTION 1 ENERGY",
            "4: OPTION 2 ENERGY",
            "5: FEARS",
            "6: BLESSINGS",
        ),
    ),
)

SPREADS: dict[str, SpreadTemplate] = {template.kind: template for template in _TEMPLATES}


def get_spread(kind: str) -> SpreadTemplate:
    """Return the template for a spread kind.

    Raises:
        SpreadError: If the kind is not registered (rendered as 404).
    """
    try:
        return SPREADS[kind]
    except KeyError:
        raise SpreadError(
            f"Unknown spread type: {kind}. Valid: {', '.join(SPREADS)}", status_code=404
        ) from None


def _orient(card: CardRecord, rng: random.Random, position: str | None = None) -> DrawnCard:
    orientation = Orientation.UPRIGHT if rng.random() < 0.5 else Orientation.REVERSED
    return DrawnCard(card=card, orientation=orientation, position=position)


def pick_unique(
    n: int,
    rng: random.Random,
    exclude: frozenset[str] = frozenset(),
    deck: tuple[CardRecord, ...] | None = None,
) -> list[CardRecord]:
    """Sample ``n`` distinct cards, skipping the excluded short names."""
    if n <= 0:
        return []
    pool = [card for card in deck or load_deck() if card.short_name not in exclude]
    rng.shuffle(pool)
    return pool[: min(n, len(pool))]


def draw(
    spread_kind: str,
    *,
    count: int | None = None,
    significator: str | None = None,
    extra_questions: list[str] | None = None,
    rng: random.Random | None = None,
    deck: tuple[CardRecord, ...] | None = None,
) -> list[DrawnCard]:
    """Draw the cards for one spread.

    Args:
        spread_kind: Registered spread name, e.g. ``"three"`` or ``"celtic-cross"``.
        count: Number of cards for the generic ``"spread"`` layout.
        significator: Short or full card name pinned to the first position of a
            significator-anchored spread.
        extra_questions: One extra card per question for spreads that take extras.
        rng: Random source; a fresh ``random.Random()`` when omitted.
        deck: Card table override, mostly for tests.

    Returns:
        Ordered list of drawn cards, one per position.

    """
    template = get_spread(spread_kind)
    rng = rng or random.Random()  # noqa: S311 - not a security context
    deck = deck or load_deck()

    if template.variable_count:
        n = DEFAULT_SPREAD_COUNT if count is None else count
        if n < 1:
            raise SpreadError(f"Card count must be at least 1, got {n}")
        cards = pick_unique(n, rng, deck=deck)
        return [_orient(card, rng, f"pos{i + 1}") for i, card in enumerate(cards)]

    if template.significator_anchored and significator:
        anchor = find_card(significator, deck)
        if anchor is None:
            raise SpreadError(f"Unknown significator card: {significator}")
        rest = pick_unique(
            len(template.positions) - 1, rng, exclude=frozenset({anchor.short_name}), deck=deck
        )
        drawn = [_orient(anchor, rng, template.positions[0])]
        drawn.extend(
            _orient(card, rng, position)
            for card, position in zip(rest, template.positions[1:], strict=False)
        )
        return drawn

    positions = list(template.positions)
    if template.accepts_extras and extra_questions:
        positions.extend(f"extra: {question}" for question in extra_questions)

    cards = pick_unique(len(positions), rng, deck=deck)
    return [_orient(card, rng, position) for card, position in zip(cards, positions, strict=False)]

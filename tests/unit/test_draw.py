"""Unit tests for the deck and the draw engine."""

import random

import pytest

from tarot_oracle.cards import DrawnCard, Orientation, find_card, load_deck
from tarot_oracle.draw import SPREADS, draw, get_spread, pick_unique
from tarot_oracle.exceptions import SpreadError


def test_deck_has_78_unique_cards():
    deck = load_deck()

    assert len(deck) == 78
    assert len({card.short_name for card in deck}) == 78
    assert deck[0].short_name == "ar00"
    assert deck[0].image_ref == "images/ar00.jpeg"


def test_find_card_by_short_or_full_name():
    fool = find_card("ar00")

    assert fool is not None
    assert find_card(fool.full_name.upper()) == fool
    assert find_card("no-such-card") is None


def test_drawn_card_meaning_follows_orientation():
    card = load_deck()[0]

    upright = DrawnCard(card, Orientation.UPRIGHT, "focus")
    reversed_ = DrawnCard(card, Orientation.REVERSED, "focus")

    assert upright.meaning == card.upright_meaning
    assert reversed_.meaning == card.reversed_meaning
    assert reversed_.to_dict()["orientation"] == "reversed"
    assert upright.to_dict()["card"]["shortName"] == card.short_name


@pytest.mark.parametrize("kind", sorted(SPREADS))
def test_every_spread_draws_unique_cards(kind):
    cards = draw(kind, rng=random.Random(7))

    names = [drawn.card.short_name for drawn in cards]
    assert len(names) == len(set(names))
    assert len(cards) >= 1


@pytest.mark.parametrize("kind,expected", [("one", 1), ("three", 3), ("five", 5), ("celtic-cross", 10)])
def test_fixed_spread_sizes(kind, expected):
    cards = draw(kind, rng=random.Random(1))

    assert len(cards) == expected
    assert [drawn.position for drawn in cards] == list(get_spread(kind).positions)


def test_generic_spread_defaults_to_three():
    cards = draw("spread", rng=random.Random(1))

    assert [drawn.position for drawn in cards] == ["pos1", "pos2", "pos3"]


def test_generic_spread_count_is_clamped_to_deck():
    assert len(draw("spread", count=100, rng=random.Random(1))) == 78


def test_generic_spread_rejects_zero():
    with pytest.raises(SpreadError):
        draw("spread", count=0)


def test_significator_is_first_and_not_repeated():
    for seed in range(20):
        cards = draw("law-of-attraction", significator="ar00", rng=random.Random(seed))

        assert cards[0].card.short_name == "ar00"
        assert cards[0].position == "SIGNIFICATOR"
        assert all(drawn.card.short_name != "ar00" for drawn in cards[1:])
        assert len(cards) == 5


def test_unknown_significator():
    with pytest.raises(SpreadError, match="significator"):
        draw("law-of-attraction", significator="not-a-card")


def test_extra_questions_add_positions():
    cards = draw("release-retain", extra_questions=["work", "love"], rng=random.Random(3))

    assert [drawn.position for drawn in cards] == [
        "1: RELEASE",
        "2: RETAIN",
        "extra: work",
        "extra: love",
    ]


def test_unknown_spread_is_not_found():
    with pytest.raises(SpreadError) as exc_info:
        draw("seven-card-horseshoe")

    assert exc_info.value.status_code == 404


def test_same_seed_same_draw():
    first = draw("celtic-cross", rng=random.Random(42))
    second = draw("celtic-cross", rng=random.Random(42))

    assert first == second


def test_orientations_are_mixed():
    orientations = {drawn.orientation for drawn in draw("spread", count=78, rng=random.Random(5))}

    assert orientations == {Orientation.UPRIGHT, Orientation.REVERSED}


def test_pick_unique_respects_exclusions():
    deck = load_deck()
    exclude = frozenset(card.short_name for card in deck[:70])

    picked = pick_unique(20, random.Random(0), exclude=exclude, deck=deck)

    assert len(picked) == 8
    assert not exclude & {card.short_name for card in picked}
    assert pick_unique(0, random.Random(0)) == []

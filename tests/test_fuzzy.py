import pytest

from hactl.fuzzy import (
    ALIAS_SCORE,
    PLURAL_SCORE,
    TYPO_SCORE,
    TYPO_STEP,
    MatchKind,
    Matcher,
    match,
    normalize,
    singularize,
)

from .conftest import entry

ENTRIES = [
    entry("light.kitchen_main", "Kitchen Light"),
    entry("light.kitchen_lamp", "Kitchen Lamp"),
    entry("light.hallway", "Hallway Light"),
    entry("fan.ceiling", "Ceiling Fan"),
    entry("media_player.living_room_tv", "Living Room TV", aliases=["Telly"]),
    entry("lock.front_door", "Front Door"),
]


def test_normalize():
    assert normalize("  Kitchen_Light!! ") == "kitchen light"
    assert normalize("living-room.tv") == "living room tv"


@pytest.mark.parametrize(
    "word,singular",
    [("lights", "light"), ("batteries", "battery"), ("switches", "switch"), ("glass", "glass"), ("tvs", "tvs")],
)
def test_singularize(word, singular):
    assert singularize(word) == singular


def test_identifier_exact_short_circuits_domain_filter():
    result = match("light.kitchen_main", ENTRIES, domains={"media_player"})
    assert result.kind is MatchKind.EXACT
    assert result.entry_id == "light.kitchen_main"
    assert result.score == 1.0


def test_name_exact():
    result = match("kitchen light", ENTRIES)
    assert result.kind is MatchKind.EXACT
    assert result.entry_id == "light.kitchen_main"


def test_object_id_exact():
    result = match("kitchen main", ENTRIES)
    assert result.kind is MatchKind.EXACT
    assert result.entry_id == "light.kitchen_main"


def test_alias():
    result = match("telly", ENTRIES)
    assert result.kind is MatchKind.ALIAS
    assert result.score == ALIAS_SCORE


def test_plural_is_fuzzy_not_exact():
    result = match("kitchen lights", ENTRIES)
    assert result.kind is MatchKind.FUZZY
    assert result.entry_id == "light.kitchen_main"
    assert result.score == PLURAL_SCORE


def test_token_typo():
    result = match("kitchn light", ENTRIES)
    assert result.kind is MatchKind.FUZZY
    assert result.entry_id == "light.kitchen_main"
    assert result.score > 0.85


def test_character_typo():
    result = match("kitchen ligth", ENTRIES)
    assert result.kind is MatchKind.FUZZY
    assert result.entry_id == "light.kitchen_main"


@pytest.mark.parametrize("typed", ["pocrh", "porhc", "prch"])
def test_short_name_typo(typed):
    entries = [
        entry("light.porch", "Porch"),
        entry("fan.ceiling", "Ceiling Fan"),
        entry("light.sofa_lamp", "Sofa Lamp"),
    ]
    result = match(typed, entries)
    assert result.kind is MatchKind.FUZZY
    assert result.entry_id == "light.porch"
    assert 0.6 <= result.score < PLURAL_SCORE


def test_typo_score_drops_with_distance():
    one_edit = match("fam", [entry("fan.attic", "Fan")]).score
    two_edits = match("pocrh", [entry("light.porch", "Porch")]).score
    assert one_edit == pytest.approx(TYPO_SCORE)
    assert two_edits == pytest.approx(TYPO_SCORE - TYPO_STEP)


def test_short_forms_do_not_absorb_typos():
    result = match("on", [entry("media_player.tv", "TV")])
    assert result.kind is MatchKind.NONE


def test_partial_phrase_ties_are_ambiguous():
    result = match("kitchen", ENTRIES)
    assert result.kind is MatchKind.AMBIGUOUS
    assert result.entry_id is None
    assert {c.id for c in result.candidates} == {"light.kitchen_main", "light.kitchen_lamp"}


def test_duplicate_exact_names_are_ambiguous():
    duplicated = ENTRIES + [entry("switch.kitchen_light", "Kitchen Light")]
    result = match("kitchen light", duplicated)
    assert result.kind is MatchKind.AMBIGUOUS
    assert len(result.candidates) == 2


def test_domain_filter():
    result = match("kitchen", ENTRIES, domains={"fan"})
    assert result.kind is MatchKind.NONE
    assert "below threshold" in result.reason


def test_no_candidates_in_domain():
    result = match("anything", ENTRIES, domains={"vacuum"})
    assert result.kind is MatchKind.NONE
    assert result.reason == "no candidates in vacuum"
    assert result.candidates == ()


def test_below_threshold_returns_suggestions():
    result = Matcher(suggestion_limit=2).match("office light", ENTRIES, domains={"light"})
    assert result.kind is MatchKind.NONE
    assert not result.matched
    assert 0 < len(result.candidates) <= 2
    assert result.candidates[0].id == "light.kitchen_main"
    assert all(c.score < 0.6 for c in result.candidates)


def test_exact_only_rejects_fuzzy():
    result = match("kitchen lights", ENTRIES, exact_only=True)
    assert result.kind is MatchKind.NONE
    assert result.reason == "no exact match"


def test_exact_only_still_accepts_identifier():
    result = match("lock.front_door", ENTRIES, exact_only=True)
    assert result.kind is MatchKind.EXACT


def test_threshold_is_configurable():
    strict = Matcher(threshold=0.95)
    assert strict.match("kitchen ligth", ENTRIES).kind is MatchKind.NONE
    assert Matcher(threshold=0.5).match("kitchen ligth", ENTRIES).matched


def test_empty_phrase():
    result = match("  ", ENTRIES)
    assert result.kind is MatchKind.NONE


def test_match_is_deterministic():
    first = match("kitchen", ENTRIES)
    second = match("kitchen", list(reversed(ENTRIES)))
    assert [c.id for c in first.candidates] == [c.id for c in second.candidates]

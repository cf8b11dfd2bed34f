import pytest

from hactl.actions import Action
from hactl.dispatch import Dispatcher
from hactl.errors import (
    AmbiguousMatchError,
    CacheUnavailableError,
    DispatchError,
    NoContextError,
    NoMatchError,
    UtteranceSyntaxError,
)
from hactl.fuzzy import Matcher
from hactl.parser import parse
from hactl.resolver import CommandResolver, choice_utterance, is_all_phrase, split_targets


@pytest.fixture
def live(cache, context, history, transport):
    """Resolver that dispatches through the fake transport."""
    return CommandResolver(cache, context, history, matcher=Matcher(), dispatcher=Dispatcher(transport, cache))


def test_exact_target(resolver, history, context):
    plan = resolver.resolve("turn on kitchen light")
    assert plan.entity_ids == ["light.kitchen_main"]
    assert plan.match_kind == "exact"
    assert plan.outcome == "resolved"
    assert context.get().entity_ids == ["light.kitchen_main"]
    assert len(history.entries()) == 1


def test_partial_name_is_ambiguous(resolver, history, context):
    with pytest.raises(AmbiguousMatchError) as info:
        resolver.resolve("turn on kitchen")
    ids = {c["id"] for c in info.value.candidates}
    assert ids == {"light.kitchen_main", "light.kitchen_lamp"}
    assert info.value.intent.action is Action.ON
    entry = history.last()
    assert entry["outcome"] == "failed"
    assert entry["match_kind"] == "ambiguous"
    assert context.get() is None


def test_unknown_target_suggests(resolver, history):
    with pytest.raises(NoMatchError) as info:
        resolver.resolve("dim office light to 50%")
    assert info.value.phrase == "office light"
    assert "light.kitchen_main" in [s["id"] for s in info.value.suggestions]
    assert history.last()["error_kind"] == "no_match"
    assert history.last()["match_kind"] == "none"


def test_follow_up_uses_context(resolver, history):
    resolver.resolve("turn on kitchen light")
    plan = resolver.resolve("brighter")
    assert plan.from_context
    assert plan.entity_ids == ["light.kitchen_main"]
    assert plan.steps[0].parameter == 10
    assert plan.match_kind == "context"
    assert [e["match_kind"] for e in history.entries()] == ["context", "exact"]


def test_follow_up_without_context(resolver, history):
    with pytest.raises(NoContextError) as info:
        resolver.resolve("turn it off")
    assert info.value.exit_code == 3
    assert history.last()["error_kind"] == "no_context"


def test_follow_up_after_expiry(resolver, clock):
    resolver.resolve("turn on kitchen light")
    clock.advance(301)
    with pytest.raises(NoContextError):
        resolver.resolve("turn it off")


def test_follow_up_with_incompatible_target(resolver):
    resolver.resolve("turn on the ceiling fan")
    with pytest.raises(NoContextError) as info:
        resolver.resolve("dimmer")
    assert "fan.ceiling" in info.value.message


def test_cache_unavailable(tmp_path, context, history, clock):
    from hactl.cache import RegistryCache

    offline = RegistryCache(directory=tmp_path / "empty", clock=clock)
    resolver = CommandResolver(offline, context, history)
    with pytest.raises(CacheUnavailableError):
        resolver.resolve("turn on kitchen light")
    assert history.last()["error_kind"] == "cache_unavailable"


def test_syntax_error_is_logged(resolver, history):
    with pytest.raises(UtteranceSyntaxError):
        resolver.resolve("frobnicate the lamp")
    entry = history.last()
    assert entry["error_kind"] == "syntax_error"
    assert entry["action"] is None


def test_multiple_targets(resolver):
    plan = resolver.resolve("turn off kitchen light, hallway light and porch switch")
    assert plan.entity_ids == ["light.kitchen_main", "light.hallway", "switch.porch"]
    assert not plan.bulk


def test_one_bad_target_fails_whole_command(resolver, context):
    with pytest.raises(NoMatchError) as info:
        resolver.resolve("turn off kitchen light and office lamp")
    assert info.value.phrase == "office lamp"
    assert context.get() is None


def test_all_of_a_domain(resolver):
    plan = resolver.resolve("turn off all lights")
    assert plan.bulk
    assert plan.entity_ids == [
        "light.hallway",
        "light.kitchen_lamp",
        "light.kitchen_main",
        "light.living_room_floor",
    ]
    assert plan.match_kind == "exact"


def test_all_lights_in_area_uses_device_area(resolver):
    plan = resolver.resolve("turn off all lights in the kitchen")
    assert plan.entity_ids == ["light.kitchen_lamp", "light.kitchen_main"]


def test_everything_in_area(resolver):
    plan = resolver.resolve("turn off everything in living room")
    assert plan.entity_ids == ["light.living_room_floor", "media_player.living_room_tv"]


def test_everything_with_label(resolver):
    plan = resolver.resolve("turn off everything outdoor")
    assert plan.entity_ids == ["switch.porch"]


def test_unqualified_all_is_a_syntax_error(resolver):
    with pytest.raises(UtteranceSyntaxError) as info:
        resolver.resolve("turn off everything")
    assert info.value.token == "everything"


def test_all_with_incompatible_domain(resolver):
    with pytest.raises(NoMatchError):
        resolver.resolve("dim all fans")


def test_lock_uses_lock_domain(live, transport):
    plan = live.resolve("lock the front door")
    assert plan.outcome == "ok"
    assert transport.calls == [
        {"domain": "lock", "service": "lock", "data": {"entity_id": "lock.front_door"}}
    ]


def test_alias_target(live, transport):
    plan = live.resolve("mute the telly")
    assert plan.match_kind == "alias"
    assert transport.calls[0]["service"] == "volume_mute"


def test_dispatch_with_default_step(live, transport):
    live.resolve("dim kitchen light")
    assert transport.calls[0]["data"] == {"entity_id": "light.kitchen_main", "brightness_step_pct": -10}


def test_dry_run_does_not_dispatch_or_touch_context(live, transport, context, history):
    plan = live.resolve("turn on kitchen light", dry_run=True)
    assert plan.outcome == "dry_run"
    assert transport.calls == []
    assert context.get() is None
    assert history.last()["outcome"] == "dry_run"


def test_dispatch_failure(live, transport, context, history):
    transport.fail_services = True
    with pytest.raises(DispatchError) as info:
        live.resolve("turn on kitchen light")
    assert info.value.failures[0]["entity_id"] == "light.kitchen_main"
    assert context.get() is None
    entry = history.last()
    assert entry["outcome"] == "failed"
    assert entry["error_kind"] == "dispatch_error"
    assert len(history.entries()) == 1


def test_bulk_confirmation_declined(cache, context, history, transport):
    asked = []

    def decline(plan):
        asked.append(plan)
        return False

    resolver = CommandResolver(
        cache, context, history, dispatcher=Dispatcher(transport, cache), confirm=decline
    )
    plan = resolver.resolve("turn off all lights")
    assert plan.outcome == "cancelled"
    assert len(asked) == 1
    assert transport.calls == []
    assert context.get() is None


def test_small_plan_skips_confirmation(cache, context, history, transport):
    resolver = CommandResolver(
        cache, context, history, dispatcher=Dispatcher(transport, cache), confirm=lambda plan: False
    )
    assert resolver.resolve("turn on kitchen light").outcome == "ok"


def test_history_entry_mirrors_plan(resolver, history):
    plan = resolver.resolve("turn on kitchen ligth")
    entry = history.last()
    assert entry["utterance"] == plan.utterance
    assert entry["targets"] == plan.entity_ids
    assert entry["match_kind"] == plan.match_kind == "fuzzy"
    assert entry["outcome"] == plan.outcome
    assert entry["score"] == round(plan.score, 3)


def test_exact_only(resolver):
    with pytest.raises(NoMatchError):
        resolver.resolve("turn on kitchen lights", exact_only=True)
    assert resolver.resolve("turn on light.kitchen_lamp", exact_only=True).entity_ids == ["light.kitchen_lamp"]


def test_choice_utterance_resolves_exactly(resolver):
    intent = parse("dim kitchen to 30%")
    rebuilt = choice_utterance(intent, "kitchen", "light.kitchen_lamp")
    assert rebuilt == "dim light.kitchen_lamp 30%"
    plan = resolver.resolve(rebuilt, exact_only=True)
    assert plan.entity_ids == ["light.kitchen_lamp"]
    assert plan.steps[0].parameter == 30


def test_split_targets():
    assert split_targets("kitchen light, hallway and porch") == ["kitchen light", "hallway", "porch"]
    assert is_all_phrase("all lights")
    assert not is_all_phrase("hallway")


def test_follow_ups_slide_the_context_window(resolver, clock):
    resolver.resolve("turn on kitchen light")
    clock.advance(200)
    resolver.resolve("brighter")
    clock.advance(200)
    plan = resolver.resolve("brighter")
    assert plan.from_context
    assert plan.entity_ids == ["light.kitchen_main"]


def test_narrowed_follow_up_keeps_full_context(resolver, context):
    resolver.resolve("turn on kitchen light and ceiling fan")
    plan = resolver.resolve("dimmer")
    assert plan.entity_ids == ["light.kitchen_main"]
    assert context.get().entity_ids == ["light.kitchen_main", "fan.ceiling"]
    assert resolver.resolve("turn it off").entity_ids == ["light.kitchen_main", "fan.ceiling"]


def test_short_name_typo_resolves(resolver):
    plan = resolver.resolve("turn on pocrh")
    assert plan.entity_ids == ["switch.porch"]
    assert plan.match_kind == "fuzzy"


def test_dim_with_color(live, transport):
    plan = live.resolve("dim kitchen light red")
    assert plan.entity_ids == ["light.kitchen_main"]
    assert plan.match_kind == "exact"
    assert transport.calls[0]["data"] == {
        "entity_id": "light.kitchen_main",
        "brightness_step_pct": -10,
        "color_name": "red",
    }


def test_choice_keeps_other_phrases_fuzzy(resolver):
    with pytest.raises(AmbiguousMatchError) as info:
        resolver.resolve("turn on kitchen and hallway lights")
    rebuilt = choice_utterance(info.value.intent, info.value.phrase, "light.kitchen_main")
    assert rebuilt == "on light.kitchen_main and hallway lights"
    plan = resolver.resolve(rebuilt)
    assert plan.entity_ids == ["light.kitchen_main", "light.hallway"]

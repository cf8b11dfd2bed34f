from hactl.history import HistoryLog


def _add(history, utterance, outcome="ok", match_kind="exact", targets=None, **extra):
    entry = {
        "utterance": utterance,
        "action": "on",
        "targets": targets or [],
        "match_kind": match_kind,
        "outcome": outcome,
    }
    entry.update(extra)
    return history.append(entry)


def test_append_stamps_kind_and_time(history):
    written = _add(history, "turn on kitchen light", targets=["light.kitchen_main"])
    assert written["kind"] == "command"
    assert "ts" in written
    assert history.last()["utterance"] == "turn on kitchen light"


def test_entries_newest_first(history):
    for i in range(5):
        _add(history, f"command {i}")
    assert [e["utterance"] for e in history.entries(limit=2)] == ["command 4", "command 3"]


def test_filters(history):
    _add(history, "turn on kitchen light", targets=["light.kitchen_main"])
    _add(history, "turn on office", outcome="failed", match_kind="none", error_kind="no_match")
    _add(history, "dim hallway", match_kind="fuzzy", targets=["light.hallway"])
    assert [e["utterance"] for e in history.entries(outcome="failed")] == ["turn on office"]
    assert [e["utterance"] for e in history.entries(match_kind="fuzzy")] == ["dim hallway"]
    assert [e["utterance"] for e in history.entries(search="KITCHEN_MAIN")] == ["turn on kitchen light"]


def test_undecodable_lines_are_skipped(history):
    _add(history, "first")
    with open(history.path, "a", encoding="utf-8") as f:
        f.write("{truncated\n")
    _add(history, "second")
    assert [e["utterance"] for e in history.entries()] == ["second", "first"]


def test_compact_keeps_newest(tmp_path):
    history = HistoryLog(tmp_path / "history.jsonl", max_entries=3)
    for i in range(5):
        _add(history, f"command {i}")
    assert history.compact() == 2
    assert [e["utterance"] for e in history.entries()] == ["command 4", "command 3", "command 2"]
    assert history.compact() == 0
    assert history.compact(max_entries=1) == 2


def test_stats(history):
    _add(history, "turn on kitchen light", targets=["light.kitchen_main"])
    _add(history, "kitchen light off", targets=["light.kitchen_main"])
    _add(history, "dim hallway", outcome="dry_run", match_kind="fuzzy", targets=["light.hallway"])
    _add(history, "turn on office", outcome="failed", match_kind="none", error_kind="no_match")
    stats = history.stats()
    assert stats["total"] == 4
    assert stats["successes"] == 3
    assert stats["failures"] == 1
    assert stats["success_rate"] == 0.75
    assert stats["by_match_kind"] == {"exact": 2, "fuzzy": 1, "none": 1}
    assert stats["by_error"] == {"no_match": 1}
    assert stats["top_targets"][0] == {"id": "light.kitchen_main", "count": 2}


def test_empty_history(history):
    assert history.entries() == []
    assert history.last() is None
    assert history.stats()["total"] == 0
    assert history.clear() is False

# tests/test_tracker.py
from modules.job_monitor.lib.tracker import NoveltyTracker


def test_unknown_site_behaves_as_empty():
    t = NoveltyTracker()
    assert t.is_new("Nowhere", "Engineer") is True
    assert t.baseline("Nowhere") == frozenset()


def test_is_new_against_loaded_baseline():
    t = NoveltyTracker({"S": ["Engineer"]})
    assert t.is_new("S", "Engineer") is False
    assert t.is_new("S", "Manager") is True
    # sets are per site
    assert t.is_new("Other", "Engineer") is True


def test_record_observed_replaces_not_merges():
    t = NoveltyTracker({"S": {"A", "B"}})
    observed = t.record_observed("S", ["A", "C"])
    assert observed == frozenset({"A", "C"})
    assert t.baseline("S") == {"A", "C"}
    assert t.is_new("S", "B") is True


def test_load_overwrites_and_sites_lists_known():
    t = NoveltyTracker()
    t.load("S", ["A"])
    t.load("T", [])
    t.load("S", ["B"])
    assert t.baseline("S") == {"B"}
    assert t.sites() == ["S", "T"]

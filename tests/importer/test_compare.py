from __future__ import annotations

import pytest

from tcprefs_app.importer.pipeline.compare import (
    ComparisonEngine,
    RowStatus,
    build_comparison,
    classify,
    readable_refresh_error,
    snapshot_from_store,
)
from tcprefs_app.importer.pipeline.reconcile import FetchFailed, ImportAlreadyRunning, LoginFailed, import_all
from tcprefs_app.models import as_utc


@pytest.fixture
def seed(fake_adapter, make_entry, clock):
    """Import ``{name: (values, category)}`` into a connection."""

    def _seed(connection, preferences):
        entries = [make_entry(name, values, category=category) for name, (values, category) in preferences.items()]
        import_all(connection, adapter=fake_adapter(entries), clock=clock)
        return connection

    return _seed


@pytest.mark.parametrize(
    "primary, secondary, expected",
    [
        (None, None, RowStatus.SAME),
        (None, ["y"], RowStatus.ONLY_SECONDARY),
        (["x"], None, RowStatus.ONLY_PRIMARY),
        (["a", "b"], ["a", "b"], RowStatus.SAME),
        (["a", "b"], ["b", "a"], RowStatus.DIFFERENT),
        ([], [], RowStatus.SAME),
        ([], [""], RowStatus.DIFFERENT),
    ],
)
def test_classify(primary, secondary, expected):
    assert classify(primary, secondary) is expected


@pytest.mark.parametrize(
    "error, expected",
    [
        (LoginFailed("Login failed: connection refused"), "Login failed"),
        (FetchFailed("Fetch data failed: Teamcenter session unauthorized (HTTP 401)."), "Login failed"),
        (RuntimeError("Authentication expired"), "Login failed"),
        (FetchFailed("Fetch data failed: HTTP 500"), "Fetch data failed"),
        (RuntimeError("boom"), "Fetch data failed"),
        (ImportAlreadyRunning("An import for connection x is already running."), "Import already running"),
    ],
)
def test_readable_refresh_error(error, expected):
    assert readable_refresh_error(error) == expected


def test_names_missing_on_one_side(connection_factory, seed):
    primary = seed(connection_factory(name="Primary"), {"A": (["x"], "X")})
    secondary = seed(connection_factory(name="Secondary"), {"B": (["y"], "Y")})

    engine = build_comparison(primary.id, [secondary.id], ["A", "B"])

    rows = {row.name: row for row in engine.rows()}
    assert rows["A"].statuses == (RowStatus.ONLY_PRIMARY,)
    assert rows["A"].primary_values == ("x",)
    assert rows["A"].secondary_values == (None,)
    assert rows["B"].statuses == (RowStatus.ONLY_SECONDARY,)
    assert rows["B"].primary_values is None
    assert engine.row_has_any_diff("A")
    assert engine.row_has_any_diff("B")
    assert [row.name for row in engine.rows(only_differences=True)] == ["A", "B"]


def test_value_order_matters_and_difference_filter(connection_factory, seed):
    primary = seed(
        connection_factory(name="Primary"),
        {"SAME": (["1", "2"], "G"), "SWAPPED": (["1", "2"], "G")},
    )
    first = seed(connection_factory(name="First"), {"SAME": (["1", "2"], "G"), "SWAPPED": (["1", "2"], "G")})
    second = seed(connection_factory(name="Second"), {"SAME": (["1", "2"], "G"), "SWAPPED": (["2", "1"], "G")})

    engine = build_comparison(primary.id, [first.id, second.id], ["SAME", "SWAPPED"])

    assert engine.row_statuses("SAME") == (RowStatus.SAME, RowStatus.SAME)
    assert engine.row_statuses("SWAPPED") == (RowStatus.SAME, RowStatus.DIFFERENT)
    assert not engine.row_has_any_diff("SAME")
    assert [row.name for row in engine.rows(only_differences=True)] == ["SWAPPED"]
    assert [row.name for row in engine.rows()] == ["SAME", "SWAPPED"]


def test_category_prefers_primary_then_secondaries_in_order(connection_factory, seed):
    primary = seed(connection_factory(name="Primary"), {"A": (["x"], "Primary cat")})
    first = seed(connection_factory(name="First"), {"A": (["x"], "First cat"), "C": (["z"], "First cat")})
    second = seed(connection_factory(name="Second"), {"B": (["y"], "Second cat"), "C": (["z"], "Second cat")})

    engine = build_comparison(primary.id, [first.id, second.id], ["A", "B", "C", "D"])

    assert engine.category_for("A") == "Primary cat"
    assert engine.category_for("B") == "Second cat"
    assert engine.category_for("C") == "First cat"
    assert engine.category_for("D") == ""


def test_search_matches_name_category_and_values(connection_factory, seed):
    primary = seed(connection_factory(name="Primary"), {"TC_Alpha": (["north"], "Workflow")})
    secondary = seed(connection_factory(name="Secondary"), {"TC_Alpha": (["south"], "Workflow")})

    engine = build_comparison(primary.id, [secondary.id], ["TC_Alpha"])

    assert engine.matches_search("TC_Alpha", "alpha workflow")
    assert engine.matches_search("TC_Alpha", "SOUTH")
    assert engine.matches_search("TC_Alpha", "  ")
    assert not engine.matches_search("TC_Alpha", "alpha east")
    assert engine.rows(search="east") == []


def test_unknown_connection_is_rejected(connection_factory):
    primary = connection_factory(name="Primary")
    with pytest.raises(ValueError):
        build_comparison(primary.id, ["does-not-exist"], ["A"])


def test_snapshot_time_uses_newest_import_or_last_run(connection_factory, seed):
    primary = seed(connection_factory(name="Primary"), {"A": (["x"], "G")})
    secondary = seed(connection_factory(name="Secondary"), {"B": (["y"], "G")})

    engine = ComparisonEngine(primary.id, [secondary.id], ["A"]).load()

    assert engine.primary.snapshot_at is not None
    assert engine.primary.fresh is False
    assert engine.secondaries[0].snapshot == {}
    assert engine.secondaries[0].snapshot_at == as_utc(secondary.last_import_completed_at)


def _refresh_fixture(connection_factory, seed, fake_adapter, make_entry):
    primary = seed(connection_factory(name="Primary"), {"A": (["1"], "G")})
    broken = seed(connection_factory(name="Broken"), {"A": (["1"], "G")})
    healthy = seed(connection_factory(name="Healthy"), {"A": (["1"], "G")})
    adapters = {
        primary.id: fake_adapter([make_entry("A", ["primary"], category="G")]),
        broken.id: fake_adapter(login_error="HTTP 401 unauthorized"),
        healthy.id: fake_adapter([make_entry("A", ["1", "2"], category="G")]),
    }
    return primary, broken, healthy, adapters


@pytest.mark.parametrize("max_workers", [1, 2])
def test_secondary_refresh_failures_are_isolated(connection_factory, seed, fake_adapter, make_entry, max_workers):
    primary, broken, healthy, adapters = _refresh_fixture(connection_factory, seed, fake_adapter, make_entry)

    engine = build_comparison(
        primary.id,
        [broken.id, healthy.id],
        ["A"],
        refresh_secondaries=True,
        adapter_factory=lambda connection: adapters[connection.id],
        max_workers=max_workers,
    )

    broken_column, healthy_column = engine.secondaries
    assert broken_column.fresh is False
    assert broken_column.error == "Login failed"
    assert broken_column.snapshot == {"A": ["1"]}
    assert healthy_column.fresh is True
    assert healthy_column.error is None
    assert healthy_column.snapshot == {"A": ["1", "2"]}
    assert engine.primary.fresh is False
    assert adapters[primary.id].logins == []
    assert engine.row_statuses("A") == (RowStatus.SAME, RowStatus.DIFFERENT)
    assert snapshot_from_store(healthy.id, ["A"]) == {"A": ["1", "2"]}


def test_refresh_primary_leaves_secondaries_untouched(connection_factory, seed, fake_adapter, make_entry):
    primary, broken, healthy, adapters = _refresh_fixture(connection_factory, seed, fake_adapter, make_entry)

    engine = build_comparison(
        primary.id,
        [healthy.id],
        ["A"],
        refresh_primary=True,
        adapter_factory=lambda connection: adapters[connection.id],
    )

    assert engine.primary.fresh is True
    assert engine.primary.snapshot == {"A": ["primary"]}
    assert engine.secondaries[0].fresh is False
    assert engine.secondaries[0].snapshot == {"A": ["1"]}
    assert adapters[healthy.id].logins == []
    assert engine.row_statuses("A") == (RowStatus.DIFFERENT,)


def test_refresh_selected_secondary_by_index(connection_factory, seed, fake_adapter, make_entry):
    primary, broken, healthy, adapters = _refresh_fixture(connection_factory, seed, fake_adapter, make_entry)
    engine = ComparisonEngine(
        primary.id,
        [broken.id, healthy.id],
        ["A"],
        adapter_factory=lambda connection: adapters[connection.id],
    ).load()

    column = engine.refresh_secondary(1)

    assert column is engine.secondaries[1]
    assert column.fresh is True
    assert engine.secondaries[0].fresh is False
    assert engine.secondaries[0].error is None
    assert adapters[broken.id].logins == []
    with pytest.raises(IndexError):
        engine.refresh_secondary(2)


def test_failed_refresh_of_primary_is_reported_on_the_column(connection_factory, seed, fake_adapter, make_entry):
    primary = seed(connection_factory(name="Primary"), {"A": (["1"], "G")})
    secondary = seed(connection_factory(name="Secondary"), {"A": (["1"], "G")})
    failing = fake_adapter(fetch_error="HTTP 500 from server")

    engine = build_comparison(
        primary.id,
        [secondary.id],
        ["A"],
        refresh_primary=True,
        adapter_factory=lambda connection: failing,
    )

    assert engine.primary.fresh is False
    assert engine.primary.error == "Fetch data failed"
    assert engine.row_statuses("A") == (RowStatus.SAME,)


@pytest.mark.parametrize("max_workers", [1, 2])
def test_repeated_secondary_is_imported_once(connection_factory, seed, fake_adapter, make_entry, max_workers):
    primary, broken, healthy, adapters = _refresh_fixture(connection_factory, seed, fake_adapter, make_entry)

    engine = build_comparison(
        primary.id,
        [healthy.id, broken.id, healthy.id],
        ["A"],
        refresh_secondaries=True,
        adapter_factory=lambda connection: adapters[connection.id],
        max_workers=max_workers,
    )

    first, broken_column, second = engine.secondaries
    assert len(adapters[healthy.id].logins) == 1
    for column in (first, second):
        assert column.fresh is True
        assert column.error is None
        assert column.snapshot == {"A": ["1", "2"]}
    assert first.snapshot is not second.snapshot
    assert broken_column.error == "Login failed"

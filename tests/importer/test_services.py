from __future__ import annotations

import pytest
from sqlalchemy import func, select

from tcprefs_app.importer import services
from tcprefs_app.importer.pipeline.reconcile import import_all
from tcprefs_app.models import Connection, Preference, PreferenceRevision, db


@pytest.fixture
def catalog(connection, fake_adapter, make_entry, clock):
    adapter = fake_adapter(
        [
            make_entry("TC_display_mode", ["compact"], category="Display", protection_scope="User"),
            make_entry("TC_display_units", ["mm"], category="Display", description="Length units"),
            make_entry("WRKFLW_auto_release", ["true"], category="Workflow"),
            make_entry("WRKFLW_queue", ["PLM.default", "PLM.backup"], category="Workflow"),
        ]
    )
    import_all(connection, adapter=adapter, clock=clock)
    return adapter


def test_create_connection_requires_url():
    with pytest.raises(ValueError):
        services.create_connection(name="Empty", url="   ")


def test_connection_lookup_by_id_name_or_url():
    connection = services.create_connection(name="Production", url="https://plm.example.com/tc ")

    assert connection.url == "https://plm.example.com/tc"
    assert services.get_connection(connection.id) is connection
    assert services.get_connection("production") is connection
    assert services.get_connection("https://plm.example.com/tc") is connection
    with pytest.raises(services.ConnectionNotFound):
        services.get_connection("staging")


def test_connection_title_falls_back_to_url():
    unnamed = services.create_connection(url="https://qa.example.com")

    assert unnamed.title == "https://qa.example.com"
    assert services.connection_title(unnamed) == "https://qa.example.com"
    assert services.connection_title(None) == "Primary"


def test_update_connection_rejects_unknown_fields(connection):
    services.update_connection(connection, description="Main site", username=None)
    assert db.session.get(Connection, connection.id).description == "Main site"
    assert connection.username == "infodba"

    with pytest.raises(ValueError):
        services.update_connection(connection, colour="blue")


def test_list_connections_sorted_by_title(connection_factory):
    connection_factory(name="beta")
    connection_factory(name="Alpha")
    connection_factory(name="", url="https://zulu.example.com")

    assert [connection.title for connection in services.list_connections()] == [
        "Alpha",
        "beta",
        "https://zulu.example.com",
    ]


def test_list_preferences_filters_and_pages(connection, catalog):
    names = [preference.name for preference in services.list_preferences(connection)]
    assert names == ["TC_display_mode", "TC_display_units", "WRKFLW_auto_release", "WRKFLW_queue"]

    workflow = services.list_preferences(connection, category="Workflow")
    assert [preference.name for preference in workflow] == ["WRKFLW_auto_release", "WRKFLW_queue"]
    assert len(services.list_preferences(connection, category="All")) == 4
    assert [p.name for p in services.list_preferences(connection, scope="User")] == ["TC_display_mode"]
    assert [p.name for p in services.list_preferences(connection, offset=1, limit=2)] == [
        "TC_display_units",
        "WRKFLW_auto_release",
    ]


def test_list_preferences_search_covers_values_description_and_comment(connection, catalog):
    queue = services.get_preference(connection, "WRKFLW_queue")
    services.update_comment(queue, "Ask the release board")

    assert [p.name for p in services.list_preferences(connection, search="plm.backup")] == ["WRKFLW_queue"]
    assert [p.name for p in services.list_preferences(connection, search="length")] == ["TC_display_units"]
    assert [p.name for p in services.list_preferences(connection, search="release board")] == ["WRKFLW_queue"]
    assert [p.name for p in services.list_preferences(connection, search="display", offset=1)] == [
        "TC_display_units"
    ]


def test_find_preferences_by_exact_name_or_substring(connection, catalog):
    found = services.find_preferences(connection, ["WRKFLW_queue", "DISPLAY"])
    assert [preference.name for preference in found] == ["TC_display_mode", "TC_display_units", "WRKFLW_queue"]

    exact = services.find_preferences(connection, ["PLM.default"])
    assert exact == []


def test_history_is_newest_first(connection, catalog, make_entry, clock):
    catalog.entries[3] = make_entry("WRKFLW_queue", ["PLM.default"], category="Workflow")
    import_all(connection, adapter=catalog, clock=clock)
    queue = services.get_preference(connection, "WRKFLW_queue")

    history = services.preference_history(queue)

    assert [revision.values for revision in history] == [["PLM.default"], ["PLM.default", "PLM.backup"]]
    assert services.history_count(queue) == 2
    assert services.has_history(queue)
    assert not services.has_history(services.get_preference(connection, "TC_display_mode"))


def test_categories_and_scopes(connection, catalog):
    assert services.categories(connection) == ["Display", "Workflow"]
    assert services.protection_scopes(connection) == ["Site", "User"]


def test_preferences_by_name(connection, catalog):
    found = services.preferences_by_name(connection, ["WRKFLW_queue", "missing"])
    assert [preference.name for preference in found] == ["WRKFLW_queue"]
    assert services.preferences_by_name(connection, []) == []


def test_delete_connection_cascades_to_history(connection, catalog):
    services.delete_connection(connection)

    assert db.session.scalar(select(func.count(Connection.id))) == 0
    assert db.session.scalar(select(func.count(PreferenceRevision.id))) == 0


@pytest.mark.parametrize("model", [Preference, PreferenceRevision])
def test_type_column_keeps_builtin_type_visible(model):
    # Inherited annotations such as ``ClassVar[type[Query]]`` are evaluated in the model namespace.
    assert "type" not in vars(model)
    assert model.__table__.c.type.name == "type"
    assert model.type_code.property.columns[0] is model.__table__.c.type


def test_type_code_round_trips_through_the_type_column(connection, catalog):
    preference = services.get_preference(connection, "TC_display_mode")
    assert preference.type_code == 0
    assert db.session.scalar(select(Preference.__table__.c.type).where(Preference.id == preference.id)) == 0
    assert preference.revisions[0].type_code == 0

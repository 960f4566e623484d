import pytest

from conftest import make_observation
from errors import ConflictError, ConfigError, NotFoundError, ValidationError, DatabaseError
from models import CityInfo, PreferencesUpdate
from storage import WeatherAlertDatabase, database_path_from_url


def test_create_user_creates_default_preferences(database):
    user = database.create_user("ana@example.com", "Cluj-Napoca", "ro")

    assert user.country == "RO"
    prefs = database.get_preferences(user.id)
    assert prefs is not None
    assert prefs.user_id == user.id
    assert prefs.min_temp is None and prefs.max_temp is None
    assert not (prefs.alert_on_rain or prefs.alert_on_snow or prefs.alert_on_storm)

    with database.get_connection() as conn:
        count = conn.execute(
            "SELECT COUNT(*) FROM user_preferences WHERE user_id = ?", (user.id,)
        ).fetchone()[0]
    assert count == 1


def test_duplicate_email_in_any_case_is_conflict(database):
    database.create_user("Bob@Example.com", "Paris", "FR")

    with pytest.raises(ConflictError):
        database.create_user("bob@example.com", "Lyon", "FR")
    with pytest.raises(ConflictError):
        database.create_user("BOB@EXAMPLE.COM", "Nice", "FR")

    assert len(database.list_users()) == 1


def test_failed_user_insert_leaves_no_preferences(database):
    database.create_user("first@example.com", "Oslo", "NO")
    with pytest.raises(ConflictError):
        database.create_user("FIRST@example.com", "Oslo", "NO")

    with database.get_connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM user_preferences").fetchone()[0] == 1


@pytest.mark.parametrize("email,city,country", [
    ("not-an-email", "Paris", "FR"),
    ("a@example.com", "", "FR"),
    ("a@example.com", "x" * 101, "FR"),
    ("a@example.com", "Paris", "FRA"),
    ("a@example.com", "Paris", "F1"),
    (None, "Paris", "FR"),
])
def test_create_user_validation(database, email, city, country):
    with pytest.raises(ValidationError):
        database.create_user(email, city, country)


def test_email_lookup_is_case_insensitive(database):
    user = database.create_user("carol@example.com", "Madrid", "ES")

    assert database.get_user_by_email("CAROL@example.COM").id == user.id
    assert database.get_user_by_email("nobody@example.com") is None


def test_get_user_by_id(database):
    user = database.create_user("dan@example.com", "Rome", "IT")

    assert database.get_user_by_id(user.id) == user
    assert database.get_user_by_id("00000000-0000-0000-0000-000000000000") is None
    assert database.get_user_by_id("not-a-uuid") is None


def test_list_users_newest_first(database):
    first = database.create_user("one@example.com", "Rome", "IT")
    second = database.create_user("two@example.com", "Rome", "IT")
    third = database.create_user("three@example.com", "Milan", "IT")

    assert [u.id for u in database.list_users()] == [third.id, second.id, first.id]


def test_list_users_in_city_is_case_insensitive(database):
    a = database.create_user("a@example.com", "London", "GB")
    b = database.create_user("b@example.com", "london", "GB")
    database.create_user("c@example.com", "Leeds", "GB")
    d = database.create_user("d@example.com", "London", "CA")

    assert {u.id for u in database.list_users_in_city("LONDON")} == {a.id, b.id, d.id}
    assert {u.id for u in database.list_users_in_city("London", "gb")} == {a.id, b.id}


def test_distinct_cities_sorted_without_duplicates(database):
    database.create_user("a@example.com", "Zurich", "CH")
    database.create_user("b@example.com", "Berlin", "DE")
    database.create_user("c@example.com", "Berlin", "DE")
    database.create_user("d@example.com", "berlin", "DE")
    database.create_user("e@example.com", "Amsterdam", "NL")

    cities = database.list_distinct_user_cities()

    assert [c.city.lower() for c in cities] == ["amsterdam", "berlin", "zurich"]
    assert cities[0] == CityInfo(city="Amsterdam", country="NL")


def test_non_ascii_email_duplicate_is_conflict(database):
    database.create_user("josé@example.com", "Madrid", "ES")

    with pytest.raises(ConflictError):
        database.create_user("JOSÉ@example.com", "Madrid", "ES")

    assert database.get_user_by_email("JOSÉ@EXAMPLE.COM") is not None


def test_non_ascii_city_lookup_ignores_case(database):
    user = database.create_user("k@example.com", "Kraków", "PL")

    assert [u.id for u in database.list_users_in_city("KRAKÓW")] == [user.id]
    assert [u.id for u in database.list_users_in_city("kraków", "PL")] == [user.id]


def test_non_ascii_city_variants_collapse_in_fan_out(database):
    database.create_user("a@example.com", "München", "DE")
    database.create_user("b@example.com", "MÜNCHEN", "DE")
    database.create_user("c@example.com", "Łódź", "PL")

    cities = database.list_distinct_user_cities()

    assert [c.city.casefold() for c in cities] == ["münchen", "łódź"]


def test_non_ascii_observation_lookup_ignores_case(database):
    database.store_observation(make_observation(city="Zürich", country="CH", temperature=7.0))

    latest = database.get_latest_observation("ZÜRICH")

    assert latest is not None
    assert latest.city == "Zürich"
    assert [o.city for o in database.get_observation_history("zürich")] == ["Zürich"]


def test_partial_preferences_update_keeps_other_fields(database):
    user = database.create_user("eve@example.com", "Vienna", "AT")
    database.update_preferences(user.id, PreferencesUpdate(min_temp=5, max_temp=30, alert_on_rain=True))

    prefs = database.update_preferences(user.id, PreferencesUpdate(alert_on_snow=True))

    assert prefs.min_temp == 5
    assert prefs.max_temp == 30
    assert prefs.alert_on_rain is True
    assert prefs.alert_on_snow is True
    assert prefs.alert_on_storm is False
    assert prefs.updated_at >= prefs.created_at


def test_update_preferences_can_switch_flags_off(database):
    user = database.create_user("frank@example.com", "Vienna", "AT")
    database.update_preferences(user.id, PreferencesUpdate(alert_on_rain=True))

    prefs = database.update_preferences(user.id, PreferencesUpdate(alert_on_rain=False))

    assert prefs.alert_on_rain is False


def test_update_preferences_unknown_user(database):
    with pytest.raises(NotFoundError):
        database.update_preferences("00000000-0000-0000-0000-000000000000", PreferencesUpdate(min_temp=1))
    with pytest.raises(NotFoundError):
        database.update_preferences("garbage", PreferencesUpdate(min_temp=1))


def test_observation_case_preserved_and_lookup_case_insensitive(database):
    database.store_observation(make_observation(city="São Paulo", country="BR", temperature=25.0))
    database.store_observation(make_observation(city="New York", country="US", temperature=10.0))

    latest = database.get_latest_observation("new york")

    assert latest.city == "New York"
    assert latest.country == "US"
    assert latest.temperature == 10.0
    assert database.get_latest_observation("Boston") is None


def test_observation_history_newest_first_with_limit(database):
    for temp in (1.0, 2.0, 3.0):
        database.store_observation(make_observation(city="Oslo", country="NO", temperature=temp))

    history = database.get_observation_history("OSLO", limit=2)

    assert [o.temperature for o in history] == [3.0, 2.0]
    assert database.get_latest_observation("oslo").temperature == 3.0


def test_alert_log_queries(database):
    alice = database.create_user("alice@example.com", "Oslo", "NO")
    bob = database.create_user("bob@example.com", "Oslo", "NO")
    database.log_alert(alice.id, "temperature", "first")
    database.log_alert(bob.id, "temperature", "second")
    database.log_alert(alice.id, "temperature", "third")

    assert [a.message for a in database.get_user_alerts(alice.id, 50)] == ["third", "first"]
    assert [a.message for a in database.get_all_alerts(2)] == ["third", "second"]
    assert database.get_user_alerts("not-a-uuid") == []


def test_delete_user_cascades(database):
    user = database.create_user("gone@example.com", "Oslo", "NO")
    database.log_alert(user.id, "temperature", "bye")

    assert database.delete_user(user.id) is True

    assert database.get_preferences(user.id) is None
    assert database.get_all_alerts(10) == []
    assert database.delete_user(user.id) is False


def test_init_database_is_idempotent(database):
    database.create_user("keep@example.com", "Oslo", "NO")
    database.init_database()
    assert len(database.list_users()) == 1


def test_sqlite_errors_surface_as_database_error(tmp_path):
    db = WeatherAlertDatabase(f"sqlite:///{tmp_path / 'empty.db'}")
    # schema was never created
    with pytest.raises(DatabaseError):
        db.list_users()


@pytest.mark.parametrize("url,expected", [
    ("sqlite:///weather.db", "weather.db"),
    ("sqlite:////var/lib/weather.db", "/var/lib/weather.db"),
    ("/tmp/weather.db", "/tmp/weather.db"),
])
def test_database_path_from_url(url, expected):
    assert database_path_from_url(url) == expected


@pytest.mark.parametrize("url", ["", "postgres://user@localhost/db", "sqlite:///:memory:"])
def test_database_path_from_url_rejects(url):
    with pytest.raises(ConfigError):
        database_path_from_url(url)

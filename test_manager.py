from concurrent.futures import ThreadPoolExecutor
import datetime as dt
import sqlite3

import pytest

from exceptions import Conflict, EventServiceError, Forbidden, Internal, NotFound, ValidationError


@pytest.fixture
def alice(db):
    return db.add_user("Alice", "alice@example.com", "hashed", "user")


@pytest.fixture
def bob(db):
    return db.add_user("Bob", "bob@example.com", "hashed", "user")


@pytest.fixture
def admin(db):
    return db.add_user("Admin", "admin@example.com", "hashed", "admin")


def registered_events(db, user_id):
    return db.get_user(user_id)["registered_events"]


def block_user_updates(db):
    """Make every later write to the users collection fail."""
    conn = sqlite3.connect(db.db_name)
    conn.execute(
        "CREATE TRIGGER block_user_updates BEFORE UPDATE ON users "
        "BEGIN SELECT RAISE(ABORT, 'users collection unavailable'); END"
    )
    conn.commit()
    conn.close()


def test_create_event_sets_organizer_and_empty_registrants(manager, alice, event_fields):
    event = manager.create_event(event_fields, alice)
    assert event.organizer == alice
    assert event.registered_users == []
    assert event.created_at is not None
    assert event.date == dt.date(2025, 5, 1)
    assert event.image == ""


def test_create_event_ignores_client_supplied_ownership(manager, alice, bob, event_fields):
    fields = {**event_fields, "organizer": bob, "registeredUsers": [bob], "id": "custom"}
    event = manager.create_event(fields, alice)
    assert event.organizer == alice
    assert event.registered_users == []
    assert event.id != "custom"


def test_create_event_accepts_datetime_strings(manager, alice, event_fields):
    event = manager.create_event({**event_fields, "date": "2025-05-01T18:30:00"}, alice)
    assert event.date == dt.date(2025, 5, 1)


@pytest.mark.parametrize("override", [
    {"capacity": 0},
    {"price": -1},
    {"category": "Party"},
    {"title": "   "},
    {"date": "next tuesday"},
])
def test_create_event_rejects_invalid_fields(manager, alice, event_fields, override):
    with pytest.raises(ValidationError):
        manager.create_event({**event_fields, **override}, alice)


def test_create_event_requires_all_fields(manager, alice, event_fields):
    del event_fields["location"]
    with pytest.raises(ValidationError) as exc:
        manager.create_event(event_fields, alice)
    assert "location" in exc.value.message


def test_list_events_sorted_by_date_with_organizer(manager, alice, event_fields):
    manager.create_event({**event_fields, "title": "Later", "date": "2025-07-01"}, alice)
    manager.create_event({**event_fields, "title": "Sooner", "date": "2025-03-01"}, alice)
    events = manager.list_events()
    assert [e["title"] for e in events] == ["Sooner", "Later"]
    assert events[0]["organizer"] == {"id": alice, "name": "Alice", "email": "alice@example.com"}


def test_get_event_resolves_registrants(manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    manager.register(event.id, bob)
    data = manager.get_event(event.id)
    assert data["organizer"]["name"] == "Alice"
    assert data["registeredUsers"] == [{"id": bob, "name": "Bob", "email": "bob@example.com"}]


def test_get_event_not_found(manager):
    with pytest.raises(NotFound):
        manager.get_event("missing")


def test_update_event_replaces_only_given_fields(manager, alice, event_fields):
    event = manager.create_event(event_fields, alice)
    updated = manager.update_event(event.id, {"title": "Advanced Workshop", "price": 0}, alice, "user")
    assert updated.title == "Advanced Workshop"
    assert updated.price == 0
    assert updated.location == event.location
    assert updated.organizer == alice


def test_update_event_by_admin(manager, alice, admin, event_fields):
    event = manager.create_event(event_fields, alice)
    updated = manager.update_event(event.id, {"category": "Seminar"}, admin, "admin")
    assert updated.category == "Seminar"


def test_update_event_forbidden_leaves_event_unchanged(manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    with pytest.raises(Forbidden):
        manager.update_event(event.id, {"title": "Hijacked"}, bob, "user")
    assert manager.require_event(event.id).title == "Python Workshop"


def test_update_event_not_found(manager, alice):
    with pytest.raises(NotFound):
        manager.update_event("missing", {"title": "x"}, alice, "user")


def test_update_event_validates_result(manager, alice, event_fields):
    event = manager.create_event(event_fields, alice)
    with pytest.raises(ValidationError):
        manager.update_event(event.id, {"capacity": 0}, alice, "user")
    with pytest.raises(ValidationError):
        manager.update_event(event.id, {"title": None}, alice, "user")
    assert manager.require_event(event.id).capacity == 2


def test_update_event_rejects_immutable_fields(manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    with pytest.raises(ValidationError):
        manager.update_event(event.id, {"organizer": bob}, alice, "user")


def test_update_capacity_below_registrants(manager, alice, bob, admin, event_fields):
    event = manager.create_event(event_fields, alice)
    manager.register(event.id, bob)
    manager.register(event.id, admin)
    with pytest.raises(ValidationError):
        manager.update_event(event.id, {"capacity": 1}, alice, "user")
    assert manager.require_event(event.id).capacity == 2


def test_delete_event_forbidden(manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    with pytest.raises(Forbidden):
        manager.delete_event(event.id, bob, "user")
    assert manager.require_event(event.id).id == event.id


def test_delete_event_cleans_registrant_lists(db, manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    other = manager.create_event({**event_fields, "title": "Other"}, alice)
    manager.register(event.id, bob)
    manager.register(other.id, bob)
    manager.delete_event(event.id, alice, "user")
    with pytest.raises(NotFound):
        manager.get_event(event.id)
    assert registered_events(db, bob) == [other.id]


def test_delete_event_not_found(manager, alice):
    with pytest.raises(NotFound):
        manager.delete_event("missing", alice, "admin")


def test_register_then_unregister_restores_both_sides(db, manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    before = registered_events(db, bob)
    registered = manager.register(event.id, bob)
    assert registered.registered_users == [bob]
    assert registered_events(db, bob) == [event.id]
    unregistered = manager.unregister(event.id, bob)
    assert unregistered.registered_users == []
    assert registered_events(db, bob) == before


def test_double_registration_conflicts_without_duplicates(db, manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    manager.register(event.id, bob)
    with pytest.raises(Conflict) as exc:
        manager.register(event.id, bob)
    assert exc.value.message == "Already registered for this event"
    assert manager.require_event(event.id).registered_users == [bob]
    assert registered_events(db, bob) == [event.id]


def test_register_full_event_leaves_state_unchanged(db, manager, alice, bob, admin, event_fields):
    event = manager.create_event({**event_fields, "capacity": 1}, alice)
    manager.register(event.id, bob)
    with pytest.raises(Conflict) as exc:
        manager.register(event.id, admin)
    assert exc.value.message == "Event is full"
    assert manager.require_event(event.id).registered_users == [bob]
    assert registered_events(db, admin) == []


def test_capacity_one_scenario(manager, alice, bob, admin, event_fields):
    event = manager.create_event({**event_fields, "capacity": 1}, alice)
    assert manager.register(event.id, bob).registered_users == [bob]
    with pytest.raises(Conflict):
        manager.register(event.id, admin)
    assert manager.unregister(event.id, bob).registered_users == []
    assert manager.register(event.id, admin).registered_users == [admin]


def test_unregister_when_not_registered(manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    with pytest.raises(Conflict) as exc:
        manager.unregister(event.id, bob)
    assert exc.value.message == "Not registered for this event"


def test_register_unknown_event(manager, bob):
    with pytest.raises(NotFound):
        manager.register("missing", bob)
    with pytest.raises(NotFound):
        manager.unregister("missing", bob)


def test_registrant_order_is_preserved(manager, alice, bob, admin, event_fields):
    event = manager.create_event({**event_fields, "capacity": 5}, alice)
    manager.register(event.id, admin)
    manager.register(event.id, bob)
    manager.register(event.id, alice)
    manager.unregister(event.id, bob)
    assert manager.require_event(event.id).registered_users == [admin, alice]


def test_concurrent_registrations_never_exceed_capacity(db, manager, alice, event_fields):
    event = manager.create_event({**event_fields, "capacity": 3}, alice)
    users = [db.add_user(f"User {i}", f"user{i}@example.com", "hashed") for i in range(10)]

    def attempt(user_id):
        try:
            manager.register(event.id, user_id)
            return True
        except EventServiceError:
            return False

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(attempt, users))

    registrants = manager.require_event(event.id).registered_users
    assert results.count(True) == 3
    assert len(registrants) == 3
    for user_id in users:
        assert (event.id in registered_events(db, user_id)) == (user_id in registrants)


def test_list_registrants_requires_ownership(manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    manager.register(event.id, bob)
    assert manager.list_registrants(event.id, alice, "user") == [
        {"id": bob, "name": "Bob", "email": "bob@example.com"}
    ]
    with pytest.raises(Forbidden):
        manager.list_registrants(event.id, bob, "user")


def test_register_rolls_back_event_when_user_write_fails(db, manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    block_user_updates(db)
    with pytest.raises(Internal):
        manager.register(event.id, bob)
    assert manager.require_event(event.id).registered_users == []
    assert registered_events(db, bob) == []


def test_unregister_rolls_back_event_when_user_write_fails(db, manager, alice, bob, event_fields):
    event = manager.create_event(event_fields, alice)
    manager.register(event.id, bob)
    block_user_updates(db)
    with pytest.raises(Internal):
        manager.unregister(event.id, bob)
    assert manager.require_event(event.id).registered_users == [bob]
    assert registered_events(db, bob) == [event.id]


def test_get_event_with_missing_organizer_keeps_organizer_shape(manager, event_fields):
    event = manager.create_event(event_fields, "deleted-user")
    data = manager.get_event(event.id)
    assert data["organizer"] == {"id": "deleted-user", "name": None, "email": None}


def test_only_title_is_trimmed(manager, alice, event_fields):
    fields = {**event_fields, "title": "  Python Workshop  ", "description": "  indented  ", "time": " 10:00 "}
    event = manager.create_event(fields, alice)
    assert event.title == "Python Workshop"
    assert event.description == "  indented  "
    assert event.time == " 10:00 "


@pytest.mark.parametrize("field", ["description", "time", "location"])
def test_blank_required_text_is_rejected(manager, alice, event_fields, field):
    with pytest.raises(ValidationError) as exc:
        manager.create_event({**event_fields, field: "   "}, alice)
    assert field in exc.value.message


def test_add_user_rejects_unknown_role(db):
    with pytest.raises(ValueError):
        db.add_user("Mallory", "mallory@example.com", "hashed", "superuser")
    assert db.get_user_by_email("mallory@example.com") is None


def test_add_user_duplicate_email_returns_none(db, alice):
    assert db.add_user("Alice Again", "alice@example.com", "hashed") is None

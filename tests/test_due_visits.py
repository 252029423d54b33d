from datetime import datetime

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker

from vetcare import due_visits
from vetcare.config import settings
from vetcare.db import Base, init_db
from vetcare.models import Owner, Pet, Tenant, Visit

NOW = datetime(2024, 5, 20, 12, 0)


def make_session(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test_due_visits.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)()


def seed(db):
    ids = {}
    for label, tz in (("a", "UTC"), ("b", "UTC")):
        tenant = Tenant(name=f"Clinic {label.upper()}", timezone=tz)
        db.add(tenant)
        db.flush()
        owner = Owner(tenant_id=tenant.id, first_name="Owner", last_name=label.upper(), phone="0770000000")
        db.add(owner)
        db.flush()
        pet = Pet(owner_id=owner.id, name=f"Rex {label}")
        db.add(pet)
        db.flush()
        ids[label] = (tenant.id, pet.id)

    a_pet = ids["a"][1]
    b_pet = ids["b"][1]
    rows = {
        "today_enabled": Visit(pet_id=a_pet, next_reminder_date=datetime(2024, 5, 20, 10, 0), is_reminder_enabled=True),
        "today_disabled": Visit(pet_id=a_pet, next_reminder_date=datetime(2024, 5, 20, 18, 0), is_reminder_enabled=False),
        "vaccination": Visit(
            pet_id=a_pet,
            visit_type="vaccination",
            next_reminder_date=datetime(2024, 5, 25, 9, 0),
            is_reminder_enabled=True,
        ),
        "yesterday": Visit(pet_id=a_pet, next_reminder_date=datetime(2024, 5, 19, 10, 0), is_reminder_enabled=True),
        "far_future": Visit(pet_id=a_pet, next_reminder_date=datetime(2024, 7, 1, 10, 0), is_reminder_enabled=True),
        "other_clinic": Visit(pet_id=b_pet, next_reminder_date=datetime(2024, 5, 20, 9, 0), is_reminder_enabled=True),
    }
    db.add_all(rows.values())
    db.commit()
    return ids["a"][0], ids["b"][0], {k: v.id for k, v in rows.items()}


def _ids(db, criteria):
    return {v.id for v in due_visits.list_visits(db, criteria)}


def test_due_today_scoped_to_clinic(tmp_path):
    db = make_session(tmp_path)
    tenant_a, _, visits = seed(db)

    criteria = due_visits.due_today(tenant_a, "UTC", now=NOW)
    assert _ids(db, criteria) == {visits["today_enabled"]}


def test_due_today_without_scope_covers_all_clinics(tmp_path):
    db = make_session(tmp_path)
    _, _, visits = seed(db)

    criteria = due_visits.due_today(None, "UTC", now=NOW)
    assert _ids(db, criteria) == {visits["today_enabled"], visits["other_clinic"]}


def test_count_matches_listing_for_same_parameters(tmp_path):
    db = make_session(tmp_path)
    tenant_a, _, _ = seed(db)

    for build in (
        lambda: due_visits.due_today(tenant_a, "UTC", now=NOW),
        lambda: due_visits.upcoming(tenant_a, 30, "UTC", now=NOW),
        lambda: due_visits.upcoming(tenant_a, 30, "UTC", visit_type="vaccination", now=NOW),
    ):
        dashboard_count = due_visits.count_visits(db, build())
        listed = due_visits.list_visits(db, build())
        assert dashboard_count == len(listed)


def test_upcoming_reminder_flag_is_three_valued(tmp_path):
    db = make_session(tmp_path)
    tenant_a, _, visits = seed(db)

    unset = _ids(db, due_visits.upcoming(tenant_a, 30, "UTC", now=NOW))
    enabled = _ids(db, due_visits.upcoming(tenant_a, 30, "UTC", reminder_enabled=True, now=NOW))
    disabled = _ids(db, due_visits.upcoming(tenant_a, 30, "UTC", reminder_enabled=False, now=NOW))

    assert unset == {visits["today_enabled"], visits["today_disabled"], visits["vaccination"]}
    assert enabled == {visits["today_enabled"], visits["vaccination"]}
    assert disabled == {visits["today_disabled"]}
    assert enabled | disabled == unset


def test_upcoming_filters_by_visit_type(tmp_path):
    db = make_session(tmp_path)
    tenant_a, _, visits = seed(db)

    criteria = due_visits.upcoming(tenant_a, 30, "UTC", visit_type="vaccination", now=NOW)
    assert _ids(db, criteria) == {visits["vaccination"]}


def test_list_visits_paginates_in_due_order(tmp_path):
    db = make_session(tmp_path)
    tenant_a, _, visits = seed(db)

    criteria = due_visits.upcoming(tenant_a, 30, "UTC", now=NOW)
    first = due_visits.list_visits(db, criteria, offset=0, limit=2)
    second = due_visits.list_visits(db, criteria, offset=2, limit=2)
    assert [v.id for v in first] == [visits["today_enabled"], visits["today_disabled"]]
    assert [v.id for v in second] == [visits["vaccination"]]


def test_init_db_creates_reminder_tables(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'init.db'}")
    previous = settings.DB_AUTO_CREATE_ALL
    try:
        settings.DB_AUTO_CREATE_ALL = True
        assert init_db(bind=engine) is True
    finally:
        settings.DB_AUTO_CREATE_ALL = previous
    tables = set(inspect(engine).get_table_names())
    assert {"clinics", "owners", "pets", "visits"} <= tables

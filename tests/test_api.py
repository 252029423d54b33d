from datetime import datetime, time, timedelta

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vetcare.api import router
from vetcare.config import settings
from vetcare.db import Base, get_db
from vetcare.models import Owner, Pet, Tenant, Visit, utc_now_naive


def make_app(tmp_path):
    db_path = tmp_path / "test_vetcare.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)

    app = FastAPI()
    app.include_router(router)
    app.state.session_local = TestingSessionLocal

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app), TestingSessionLocal


def seed_clinic(SessionLocal, name="Happy Paws"):
    today = utc_now_naive().date()
    with SessionLocal() as db:
        tenant = Tenant(name=name, timezone="UTC", reminder_monthly_limit=10, reminder_sent_this_cycle=3)
        db.add(tenant)
        db.flush()
        owner = Owner(tenant_id=tenant.id, first_name="Sara", last_name="Karim", phone="07701234567")
        db.add(owner)
        db.flush()
        pet = Pet(owner_id=owner.id, name="Milo")
        db.add(pet)
        db.flush()
        db.add_all(
            [
                Visit(pet_id=pet.id, visit_type="checkup", next_reminder_date=datetime.combine(today, time(12, 0))),
                Visit(
                    pet_id=pet.id,
                    visit_type="vaccination",
                    next_reminder_date=datetime.combine(today + timedelta(days=3), time(9, 0)),
                ),
                Visit(
                    pet_id=pet.id,
                    visit_type="vaccination",
                    next_reminder_date=datetime.combine(today + timedelta(days=5), time(9, 0)),
                    is_reminder_enabled=False,
                ),
            ]
        )
        db.commit()
        return tenant.id


def test_dashboard_counts_match_listings(tmp_path):
    client, SessionLocal = make_app(tmp_path)
    clinic_id = seed_clinic(SessionLocal)
    headers = {"X-Clinic-Id": str(clinic_id)}

    stats = client.get("/api/dashboard/stats", headers=headers)
    assert stats.status_code == 200
    body = stats.json()
    assert body["owner_count"] == 1
    assert body["pet_count"] == 1
    assert body["due_today_count"] == 1
    assert body["upcoming_vaccination_count"] == 2
    assert body["is_admin_view"] is False

    due = client.get("/api/visits/due-today", headers=headers)
    assert due.status_code == 200
    assert due.json()["total"] == body["due_today_count"]
    assert len(due.json()["items"]) == body["due_today_count"]
    item = due.json()["items"][0]
    assert item["pet_name"] == "Milo"
    assert item["owner_name"] == "Sara Karim"
    assert item["reminder_outcome"] == "pending"

    vaccinations = client.get("/api/visits/upcoming", headers=headers, params={"visit_type": "vaccination"})
    assert vaccinations.json()["total"] == body["upcoming_vaccination_count"]


def test_dashboard_without_clinic_is_admin_view(tmp_path):
    client, SessionLocal = make_app(tmp_path)
    seed_clinic(SessionLocal, name="A")
    seed_clinic(SessionLocal, name="B")

    res = client.get("/api/dashboard/stats")
    assert res.status_code == 200
    assert res.json()["is_admin_view"] is True
    assert res.json()["owner_count"] == 2
    assert res.json()["due_today_count"] is None


def test_upcoming_reminder_enabled_filter(tmp_path):
    client, SessionLocal = make_app(tmp_path)
    clinic_id = seed_clinic(SessionLocal)
    headers = {"X-Clinic-Id": str(clinic_id)}

    unset = client.get("/api/visits/upcoming", headers=headers).json()
    enabled = client.get("/api/visits/upcoming", headers=headers, params={"reminder_enabled": "true"}).json()
    disabled = client.get("/api/visits/upcoming", headers=headers, params={"reminder_enabled": "false"}).json()

    assert unset["total"] == 3
    assert enabled["total"] == 2
    assert disabled["total"] == 1


def test_visit_listing_requires_known_clinic(tmp_path):
    client, _ = make_app(tmp_path)
    assert client.get("/api/visits/due-today").status_code == 400
    assert client.get("/api/visits/due-today", headers={"X-Clinic-Id": "999"}).status_code == 404


def test_clinic_settings_start_a_new_cycle(tmp_path):
    client, SessionLocal = make_app(tmp_path)
    clinic_id = seed_clinic(SessionLocal)
    previous_key = settings.ADMIN_API_KEY
    try:
        settings.ADMIN_API_KEY = "admin-secret"
        denied = client.patch(f"/api/clinics/{clinic_id}/settings", json={"reminder_monthly_limit": 50})
        assert denied.status_code == 401

        res = client.patch(
            f"/api/clinics/{clinic_id}/settings",
            headers={"X-Admin-Key": "admin-secret"},
            json={
                "subscription_start_date": "2024-03-01T00:00:00Z",
                "subscription_end_date": "2025-03-01T00:00:00Z",
                "reminder_monthly_limit": 50,
                "can_send_reminders": True,
            },
        )
        assert res.status_code == 200
        body = res.json()
        assert body["reminder_monthly_limit"] == 50
        assert body["reminder_sent_this_cycle"] == 0
        assert body["current_cycle_start_date"].startswith("2024-03-01T00:00:00")
        assert body["can_send_reminders"] is True

        bad_tz = client.patch(
            f"/api/clinics/{clinic_id}/settings",
            headers={"X-Admin-Key": "admin-secret"},
            json={"timezone": "Mars/Olympus_Mons"},
        )
        assert bad_tz.status_code == 400

        bad_limit = client.patch(
            f"/api/clinics/{clinic_id}/settings",
            headers={"X-Admin-Key": "admin-secret"},
            json={"reminder_monthly_limit": -5},
        )
        assert bad_limit.status_code == 422

        missing = client.patch(
            "/api/clinics/999/settings",
            headers={"X-Admin-Key": "admin-secret"},
            json={"name": "Nobody"},
        )
        assert missing.status_code == 404
    finally:
        settings.ADMIN_API_KEY = previous_key


def test_admin_can_trigger_quota_reset(tmp_path):
    client, SessionLocal = make_app(tmp_path)
    previous_key = settings.ADMIN_API_KEY
    try:
        settings.ADMIN_API_KEY = "admin-secret"
        assert client.post("/api/admin/jobs/quota_reset/run").status_code == 401

        res = client.post("/api/admin/jobs/quota_reset/run", headers={"X-Admin-Key": "admin-secret"})
        assert res.status_code == 200
        body = res.json()
        assert body["job"] == "quota_reset"
        assert body["status"] == "ok"
        assert body["report"]["failed"] == 0

        unknown = client.post("/api/admin/jobs/nope/run", headers={"X-Admin-Key": "admin-secret"})
        assert unknown.status_code == 404
    finally:
        settings.ADMIN_API_KEY = previous_key


def test_clinic_settings_reject_null_for_required_fields(tmp_path):
    client, SessionLocal = make_app(tmp_path)
    clinic_id = seed_clinic(SessionLocal)
    previous_key = settings.ADMIN_API_KEY
    try:
        settings.ADMIN_API_KEY = "admin-secret"
        headers = {"X-Admin-Key": "admin-secret"}
        for field in ("reminder_monthly_limit", "name", "is_active", "timezone", "locale", "can_send_reminders"):
            res = client.patch(f"/api/clinics/{clinic_id}/settings", headers=headers, json={field: None})
            assert res.status_code == 400, field
            assert field in res.json()["detail"]

        cleared = client.patch(f"/api/clinics/{clinic_id}/settings", headers=headers, json={"phone": None})
        assert cleared.status_code == 200
        assert cleared.json()["phone"] is None
        assert cleared.json()["name"] == "Happy Paws"
        assert cleared.json()["reminder_monthly_limit"] == 10
    finally:
        settings.ADMIN_API_KEY = previous_key

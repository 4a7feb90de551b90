from datetime import date, timedelta

from app.portal.db import session_scope
from app.portal.modules.onboarding.models import TreatmentSchedule

from conftest import intake_payload


def _onboard(api, name: str) -> int:
    intake_id = api.post(
        "/api/intake", json=intake_payload(first_name=name, email=f"{name.lower()}@example.com")
    ).json["data"]["id"]
    r = api.post("/api/onboarding", json={"intake_form_id": intake_id})
    assert r.status_code == 201, r.json
    return r.json["data"]["id"]


def _assign(api, onboarding_id: int, day: date):
    return api.put(f"/api/onboarding/{onboarding_id}/treatment-date", json={"treatment_date": day.isoformat()})


def _used(app, day: date) -> int:
    with session_scope(app) as s:
        row = s.query(TreatmentSchedule).filter(TreatmentSchedule.treatment_date == day).one_or_none()
        return row.capacity_used if row else 0


def test_daily_capacity_is_enforced(app, api):
    app.config["TREATMENT_DAILY_CAPACITY"] = 2
    api.login("manager@clinic.test")
    ids = [_onboard(api, name) for name in ("Ana", "Ben", "Cara")]
    day = date.today() + timedelta(days=10)

    assert _assign(api, ids[0], day).status_code == 200
    assert _assign(api, ids[1], day).status_code == 200
    r = _assign(api, ids[2], day)
    assert r.status_code == 400
    assert r.json["error"] == "Date is at full capacity (2 patients). Please select another date."
    assert _used(app, day) == 2

    # re-assigning the same date is a no-op
    assert _assign(api, ids[0], day).status_code == 200
    assert _used(app, day) == 2


def test_reassignment_frees_the_old_date(app, api):
    api.login("manager@clinic.test")
    onboarding_id = _onboard(api, "Ana")
    first = date.today() + timedelta(days=5)
    second = date.today() + timedelta(days=6)

    _assign(api, onboarding_id, first)
    r = _assign(api, onboarding_id, second)
    assert r.status_code == 200
    assert r.json["data"]["treatment_date"] == second.isoformat()
    assert _used(app, first) == 0
    assert _used(app, second) == 1

    api.delete(f"/api/onboarding/{onboarding_id}")
    assert _used(app, second) == 0


def test_past_date_is_rejected(api):
    api.login("manager@clinic.test")
    onboarding_id = _onboard(api, "Ana")
    r = _assign(api, onboarding_id, date.today() - timedelta(days=1))
    assert r.status_code == 400
    assert r.json["error"] == "Treatment date cannot be in the past"


def test_calendar_and_next_available(app, api):
    app.config["TREATMENT_DAILY_CAPACITY"] = 1
    api.login("manager@clinic.test")
    onboarding_id = _onboard(api, "Ana")
    today = date.today()
    _assign(api, onboarding_id, today)

    r = api.get(f"/api/treatment-schedule?start={today.isoformat()}&end={(today + timedelta(days=3)).isoformat()}")
    assert r.status_code == 200
    booked = [d for d in r.json["data"] if d["treatment_date"] == today.isoformat()]
    assert booked and booked[0]["capacity_used"] == 1

    r = api.get("/api/treatment-schedule/next-available")
    assert r.json["data"] == (today + timedelta(days=1)).isoformat()

    assert api.get("/api/treatment-schedule?start=tomorrow").status_code == 400

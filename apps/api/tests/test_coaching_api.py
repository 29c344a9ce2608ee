"""Coach assignments, notes, macro changes, notifications and profile visibility over HTTP."""
import sys
from pathlib import Path
from uuid import uuid4

sys.path.insert(0, str(Path(__file__).resolve().parent))

from conftest import auth_headers
from models import CoachAthlete, MacroChangeLog, Notification


def _assign(db, coach, athlete):
    db.add(CoachAthlete(coach_id=coach.id, athlete_id=athlete.id, assigned_by=coach.id))
    db.commit()


MACROS = {"calories": 2400, "protein": 180, "carbs": 260, "fat": 70}


def test_requires_authentication(client):
    assert client.get("/v1/coach/assignments").status_code == 401
    resp = client.get("/v1/notifications", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_coach_assigns_athlete(client, coach, athlete, db_session):
    resp = client.post(
        "/v1/coach/assignments",
        json={"athlete_id": str(athlete.id), "notes": "Spring cut"},
        headers=auth_headers(coach),
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["coach_id"] == str(coach.id)
    assert body["assigned_by"] == str(coach.id)
    assert db_session.query(CoachAthlete).count() == 1


def test_duplicate_assignment_conflicts(client, coach, athlete, db_session):
    _assign(db_session, coach, athlete)

    resp = client.post("/v1/coach/assignments", json={"athlete_id": str(athlete.id)}, headers=auth_headers(coach))

    assert resp.status_code == 409
    assert resp.json()["error_code"] == "CONFLICT"


def test_athlete_cannot_assign(client, athlete, make_profile):
    other = make_profile("athlete")
    resp = client.post("/v1/coach/assignments", json={"athlete_id": str(other.id)}, headers=auth_headers(athlete))
    assert resp.status_code == 403


def test_owner_assigns_for_another_coach(client, owner, coach, athlete):
    resp = client.post(
        "/v1/coach/assignments",
        json={"athlete_id": str(athlete.id), "coach_id": str(coach.id)},
        headers=auth_headers(owner),
    )
    assert resp.status_code == 201
    assert resp.json()["coach_id"] == str(coach.id)
    assert resp.json()["assigned_by"] == str(owner.id)


def test_coach_assigns_for_another_coach(client, coach, athlete, make_profile):
    other_coach = make_profile("coach")
    resp = client.post(
        "/v1/coach/assignments",
        json={"athlete_id": str(athlete.id), "coach_id": str(other_coach.id)},
        headers=auth_headers(coach),
    )
    assert resp.status_code == 201
    assert resp.json()["coach_id"] == str(other_coach.id)
    assert resp.json()["assigned_by"] == str(coach.id)


def test_assignee_must_be_a_coach(client, coach, athlete, make_profile):
    other_athlete = make_profile("athlete")
    resp = client.post(
        "/v1/coach/assignments",
        json={"athlete_id": str(athlete.id), "coach_id": str(other_athlete.id)},
        headers=auth_headers(coach),
    )
    assert resp.status_code == 422


def test_only_own_coach_or_owner_unassigns(client, coach, athlete, owner, make_profile, db_session):
    other_coach = make_profile("coach")
    _assign(db_session, coach, athlete)
    assignment_id = db_session.query(CoachAthlete).one().id

    assert client.delete(f"/v1/coach/assignments/{assignment_id}", headers=auth_headers(other_coach)).status_code == 403
    assert client.delete(f"/v1/coach/assignments/{assignment_id}", headers=auth_headers(owner)).status_code == 204
    assert db_session.query(CoachAthlete).count() == 0


def test_notes_are_private_to_author_and_owner(client, coach, athlete, owner, make_profile):
    other_coach = make_profile("coach")
    resp = client.post(
        "/v1/coach/notes",
        json={"athlete_id": str(athlete.id), "note": "Energy low on refeed days", "category": "checkin_review"},
        headers=auth_headers(coach),
    )
    assert resp.status_code == 201
    note_id = resp.json()["id"]

    assert len(client.get("/v1/coach/notes", headers=auth_headers(coach)).json()) == 1
    assert len(client.get("/v1/coach/notes", headers=auth_headers(owner)).json()) == 1
    assert client.get("/v1/coach/notes", headers=auth_headers(other_coach)).json() == []

    resp = client.patch(f"/v1/coach/notes/{note_id}", json={"note": "edited"}, headers=auth_headers(other_coach))
    assert resp.status_code == 403

    resp = client.patch(f"/v1/coach/notes/{note_id}", json={"note": "edited", "category": "body_comp"}, headers=auth_headers(coach))
    assert resp.status_code == 200
    assert resp.json()["note"] == "edited"
    assert resp.json()["category"] == "body_comp"


def test_athlete_cannot_write_notes(client, athlete):
    resp = client.post("/v1/coach/notes", json={"athlete_id": str(athlete.id), "note": "x"}, headers=auth_headers(athlete))
    assert resp.status_code == 403


def test_invalid_note_category_rejected(client, coach, athlete):
    resp = client.post(
        "/v1/coach/notes",
        json={"athlete_id": str(athlete.id), "note": "x", "category": "gossip"},
        headers=auth_headers(coach),
    )
    assert resp.status_code == 422


def test_macro_change_flow(client, coach, athlete, db_session):
    _assign(db_session, coach, athlete)

    resp = client.post(
        "/v1/macros/changes",
        json={
            "athlete_id": str(athlete.id),
            "phase": 2,
            "year": 2026,
            "new": MACROS,
            "previous": {"calories": 2600, "protein": 180, "carbs": 300, "fat": 75},
            "coach_note": "Dropping carbs for the cut",
        },
        headers=auth_headers(coach),
    )
    assert resp.status_code == 201
    change = resp.json()
    assert change["new_calories"] == 2400
    assert change["prev_carbs"] == 300
    assert change["changed_by"] == str(coach.id)
    assert change["seen_by_athlete"] is False

    # The athlete is notified.
    notes = client.get("/v1/notifications", headers=auth_headers(athlete)).json()
    assert len(notes) == 1
    assert notes[0]["type"] == "macro_update"
    assert notes[0]["reference_id"] == change["id"]

    # Athlete reads their own history (default athlete_id) and the coach can too.
    assert len(client.get("/v1/macros/changes", headers=auth_headers(athlete)).json()) == 1
    resp = client.get(f"/v1/macros/changes?athlete_id={athlete.id}", headers=auth_headers(coach))
    assert len(resp.json()) == 1

    # Only the athlete acknowledges.
    assert client.post(f"/v1/macros/changes/{change['id']}/seen", headers=auth_headers(coach)).status_code == 403
    resp = client.post(f"/v1/macros/changes/{change['id']}/seen", headers=auth_headers(athlete))
    assert resp.status_code == 200
    assert resp.json()["seen_by_athlete"] is True
    assert resp.json()["seen_at"] is not None


def test_unassigned_coach_cannot_log_macros(client, coach, athlete, db_session):
    resp = client.post(
        "/v1/macros/changes",
        json={"athlete_id": str(athlete.id), "phase": 1, "year": 2026, "new": MACROS},
        headers=auth_headers(coach),
    )
    assert resp.status_code == 403
    assert db_session.query(MacroChangeLog).count() == 0

    resp = client.get(f"/v1/macros/changes?athlete_id={athlete.id}", headers=auth_headers(coach))
    assert resp.status_code == 403


def test_owner_logs_macros_without_assignment(client, owner, athlete):
    resp = client.post(
        "/v1/macros/changes",
        json={"athlete_id": str(athlete.id), "phase": 1, "year": 2026, "new": MACROS},
        headers=auth_headers(owner),
    )
    assert resp.status_code == 201
    assert resp.json()["prev_calories"] is None


def test_owner_targeting_missing_profile_gets_404(client, owner, db_session):
    missing = str(uuid4())

    resp = client.post(
        "/v1/macros/changes",
        json={"athlete_id": missing, "phase": 1, "year": 2026, "new": MACROS},
        headers=auth_headers(owner),
    )
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "NOT_FOUND"

    payload = {"user_id": missing, "type": "system", "title": "Hello"}
    resp = client.post("/v1/notifications", json=payload, headers=auth_headers(owner))
    assert resp.status_code == 404

    assert db_session.query(MacroChangeLog).count() == 0
    assert db_session.query(Notification).count() == 0


def test_notifications(client, coach, athlete, make_profile, db_session):
    stranger = make_profile("coach")
    _assign(db_session, coach, athlete)

    payload = {"user_id": str(athlete.id), "type": "phase_reminder", "title": "Phase 3 starts Monday"}
    assert client.post("/v1/notifications", json=payload, headers=auth_headers(stranger)).status_code == 403
    resp = client.post("/v1/notifications", json=payload, headers=auth_headers(coach))
    assert resp.status_code == 201
    notification_id = resp.json()["id"]

    # Self-notification is allowed.
    self_payload = {"user_id": str(athlete.id), "type": "system", "title": "Reminder"}
    assert client.post("/v1/notifications", json=self_payload, headers=auth_headers(athlete)).status_code == 201

    assert client.post(f"/v1/notifications/{notification_id}/read", headers=auth_headers(coach)).status_code == 403
    resp = client.post(f"/v1/notifications/{notification_id}/read", headers=auth_headers(athlete))
    assert resp.status_code == 200
    assert resp.json()["read"] is True

    unread = client.get("/v1/notifications?unread_only=true", headers=auth_headers(athlete)).json()
    assert [n["title"] for n in unread] == ["Reminder"]
    assert db_session.query(Notification).count() == 2


def test_unknown_notification_type_rejected(client, athlete):
    payload = {"user_id": str(athlete.id), "type": "promo", "title": "Sale"}
    assert client.post("/v1/notifications", json=payload, headers=auth_headers(athlete)).status_code == 422


def test_profile_visibility(client, coach, athlete, owner, make_profile, db_session):
    other = make_profile("athlete")
    _assign(db_session, coach, athlete)

    assert client.get(f"/v1/profiles/{athlete.id}", headers=auth_headers(coach)).status_code == 200
    assert client.get(f"/v1/profiles/{other.id}", headers=auth_headers(coach)).status_code == 403
    assert client.get(f"/v1/profiles/{other.id}", headers=auth_headers(owner)).status_code == 200

    coach_view = client.get("/v1/profiles", headers=auth_headers(coach)).json()
    assert [p["id"] for p in coach_view] == [str(athlete.id)]
    assert len(client.get("/v1/profiles", headers=auth_headers(owner)).json()) == 4
    assert [p["id"] for p in client.get("/v1/profiles", headers=auth_headers(other)).json()] == [str(other.id)]

    me = client.get("/v1/profiles/me", headers=auth_headers(athlete)).json()
    assert me["role"] == "athlete"

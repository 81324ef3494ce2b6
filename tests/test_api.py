from datetime import timedelta

from data_models.base import utcnow
from data_models.dbo_growth import Deal, DealStage
from data_models.dbo_memory import FounderWeekReview
from data_utils.db_factory import get_session

HEADERS = {"X-Actor-User-Id": "founder-1"}


def _seed(*rows):
    session = get_session()
    try:
        session.add_all(rows)
        session.commit()
        return [r.id for r in rows]
    finally:
        session.close()


def _seed_overdue_deal():
    [deal_id] = _seed(Deal(
        owner_user_id="founder-1",
        prospect_name="Acme",
        stage=DealStage.CONTACTED,
        next_follow_up_at=utcnow() - timedelta(days=2),
    ))
    return deal_id


def _growth_action(client):
    client.post("/run-next-actions", params={"entityType": "founder_growth"}, headers=HEADERS)
    [item] = client.get("/next-actions", params={"entityType": "founder_growth"}).json()
    return item


def test_ping(client):
    assert client.get("/ping").json() == {"status": "ok"}


def test_run_rejects_unknown_scope(client):
    response = client.post("/run-next-actions", params={"entityType": "billing"})

    assert response.status_code == 400
    assert response.json()["detail"]["errorCode"] == "unknown_scope"


def test_run_and_list_growth_actions(client):
    deal_id = _seed_overdue_deal()

    response = client.post("/run-next-actions", params={"entityType": "founder_growth"}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["created"] == 1
    assert body["candidateCount"] == 1
    assert body["runKey"].startswith("nba:founder-1:founder_growth:founder_growth:")

    [item] = client.get("/next-actions", params={"entityType": "founder_growth"}).json()
    assert item["createdByRule"] == "growth_overdue_followups"
    assert item["dedupeKey"] == "nba:growth_overdue_followups:founder_growth"
    assert item["status"] == "queued"
    assert item["priority"] == "medium"
    assert item["payloadJson"]["dealId"] == deal_id
    assert item["explanationJson"]["ruleKey"] == "growth_overdue_followups"


def test_run_twice_updates(client):
    _seed_overdue_deal()
    client.post("/run-next-actions", params={"entityType": "founder_growth"}, headers=HEADERS)

    body = client.post("/run-next-actions", params={"entityType": "founder_growth"}, headers=HEADERS).json()

    assert (body["created"], body["updated"]) == (0, 1)


def test_template_lists_legal_actions(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    response = client.get(f"/next-actions/{item['id']}/template")

    assert response.status_code == 200
    body = response.json()
    assert body["ruleKey"] == "growth_overdue_followups"
    keys = [s["actionKey"] for s in body["suggestedActions"]]
    assert "growth_schedule_followup_3d" in keys and "mark_done" in keys
    assert "run_next_actions" not in keys
    schedule = next(s for s in body["suggestedActions"] if s["actionKey"] == "growth_schedule_followup_3d")
    assert schedule["confirmText"]
    assert client.get("/next-actions/nope/template").status_code == 404


def test_execute_requires_action_key(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    response = client.post(f"/next-actions/{item['id']}/execute", json={})

    assert response.status_code == 400


def test_execute_validation_errors(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    unknown = client.post(f"/next-actions/{item['id']}/execute", json={"actionKey": "launch_rocket"})
    missing = client.post("/next-actions/nope/execute", json={"actionKey": "mark_done"})

    assert unknown.status_code == 400
    assert unknown.json()["detail"]["errorCode"] == "unknown_action"
    assert missing.status_code == 404


def test_execute_growth_followup(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    response = client.post(
        f"/next-actions/{item['id']}/execute",
        json={"actionKey": "growth_schedule_followup_3d", "payload": {"idempotencyToken": "tok-1"}},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["executionId"]
    assert body["resultSummary"].startswith("Follow-up scheduled for")

    executed = client.get("/next-actions", params={"entityType": "founder_growth", "status": "executed"}).json()
    assert [i["id"] for i in executed] == [item["id"]]


def test_execute_with_attribution(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    client.post(
        f"/next-actions/{item['id']}/execute",
        json={
            "actionKey": "mark_done",
            "attribution": {
                "before": {"score": {"band": "warning", "score": 60}},
                "after": {"score": {"band": "critical", "score": 35}},
            },
        },
        headers=HEADERS,
    )

    weight = client.get("/learned-weights/founder-1/rule/growth_overdue_followups").json()
    assert weight["weight"] == -1.0


def test_dismiss_feeds_memory(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    response = client.post(f"/next-actions/{item['id']}/dismiss", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "dismissed"
    assert response.json()["preferenceId"] is None

    weight = client.get("/learned-weights/founder-1/rule/growth_overdue_followups").json()
    assert weight["weight"] == -0.5
    assert weight["statsJson"]["total"] == 1

    again = client.post(f"/next-actions/{item['id']}/dismiss", headers=HEADERS)
    assert again.status_code == 409
    blocked = client.post(f"/next-actions/{item['id']}/execute", json={"actionKey": "mark_done"})
    assert blocked.status_code == 409


def test_dismiss_with_suppression(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    response = client.post(f"/next-actions/{item['id']}/dismiss", json={"suppressDays": 30}, headers=HEADERS)
    assert response.json()["preferenceId"]

    body = client.post("/run-next-actions", params={"entityType": "founder_growth"}, headers=HEADERS).json()
    assert body["suppressedCount"] == 1
    assert body["updated"] == 0


def test_snooze_hides_action(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    response = client.post(f"/next-actions/{item['id']}/snooze", json={"days": 2}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "snoozed"
    assert response.json()["snoozedUntil"]
    assert client.get("/next-actions", params={"entityType": "founder_growth"}).json() == []

    weight = client.get("/learned-weights/founder-1/action/snooze_1d").json()
    assert weight["weight"] == -0.25


def test_snooze_rejects_bad_days(client):
    _seed_overdue_deal()
    item = _growth_action(client)

    assert client.post(f"/next-actions/{item['id']}/snooze", json={"days": 0}).status_code == 422
    assert client.post("/next-actions/nope/snooze").status_code == 404


def test_learned_weights_endpoints(client):
    assert client.get("/learned-weights/founder-1/rule/retention_overdue").status_code == 404
    assert client.get("/learned-weights/founder-1").json() == []
    assert client.get("/learned-weights/founder-1/vibes/x").status_code == 422


def test_memory_summary(client):
    _seed_overdue_deal()
    item = _growth_action(client)
    client.post(f"/next-actions/{item['id']}/dismiss", headers=HEADERS)

    response = client.get("/internal/memory/summary", params={"days": 7}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["actorUserId"] == "founder-1"
    assert body["windowDays"] == 7
    assert body["current"]["by_rule_key"]["growth_overdue_followups"]["dismiss"] == 1
    assert body["suggestions"] == []


def test_founder_review_ingest(client):
    assert client.post("/internal/memory/founder-review/2026-W10", headers=HEADERS).status_code == 404

    _seed(FounderWeekReview(week_id="2026-W10", misses_json=[{"ruleKey": "retention_overdue"}]))
    response = client.post("/internal/memory/founder-review/2026-W10", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"weekId": "2026-W10", "status": "queued"}
    weight = client.get("/learned-weights/founder-1/rule/retention_overdue").json()
    assert weight["weight"] == -0.25

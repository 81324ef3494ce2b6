from datetime import datetime, timezone

from sqlalchemy import func, select

from data_models.dbo_memory import OperatorLearnedWeight, WeightKind
from operator_memory.weights import WEIGHT_MAX, WEIGHT_MIN, LearnedWeightStore, clamp_weight

SEEN_AT = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def test_clamp_weight():
    assert clamp_weight(12.5) == WEIGHT_MAX
    assert clamp_weight(-11) == WEIGHT_MIN
    assert clamp_weight(3.25) == 3.25


def test_first_delta_creates_row(db_session):
    store = LearnedWeightStore(db_session)

    view = store.apply_delta("op-1", WeightKind.RULE, "retention_overdue", 1.0, success=True, seen_at=SEEN_AT)

    assert view.weight == 1.0
    assert view.stats_json == {"total": 1, "successCount": 1, "lastSeenAt": SEEN_AT.isoformat()}


def test_weights_stay_in_bounds(db_session):
    store = LearnedWeightStore(db_session)
    for _ in range(25):
        store.apply_delta("op-1", WeightKind.ACTION, "dismiss", -0.5)

    view = store.get_weight("op-1", WeightKind.ACTION, "dismiss")
    assert view.weight == -10.0
    assert view.stats_json["total"] == 25


def test_success_count_never_exceeds_total(db_session):
    store = LearnedWeightStore(db_session)
    for i in range(10):
        view = store.apply_delta("op-1", WeightKind.RULE, "flywheel_stage_stall", 1.0, success=i % 3 == 0)
        assert view.stats_json["successCount"] <= view.stats_json["total"]

    assert view.stats_json == {
        "total": 10,
        "successCount": 4,
        "lastSeenAt": view.stats_json["lastSeenAt"],
    }


def test_weights_are_per_actor_kind_and_key(db_session):
    store = LearnedWeightStore(db_session)
    store.apply_delta("op-1", WeightKind.RULE, "mark_done", 1.0)
    store.apply_delta("op-1", WeightKind.ACTION, "mark_done", -1.0)
    store.apply_delta("op-2", WeightKind.RULE, "mark_done", 0.5)
    db_session.commit()

    assert store.get_weight("op-1", WeightKind.RULE, "mark_done").weight == 1.0
    assert store.get_weight("op-1", WeightKind.ACTION, "mark_done").weight == -1.0
    assert store.get_weight("op-2", WeightKind.RULE, "mark_done").weight == 0.5
    assert store.get_weight("op-3", WeightKind.RULE, "mark_done") is None
    assert [v.kind for v in store.list_weights("op-1")] == [WeightKind.ACTION, WeightKind.RULE]
    assert len(store.list_weights("op-1", kind=WeightKind.RULE)) == 1


def test_load_learned_weights_splits_kinds(db_session):
    store = LearnedWeightStore(db_session)
    store.apply_delta("op-1", WeightKind.RULE, "retention_overdue", -2.0)
    store.apply_delta("op-1", WeightKind.ACTION, "mark_done", 3.0)

    weights = store.load_learned_weights("op-1")

    assert dict(weights.rule_weights) == {"retention_overdue": -2.0}
    assert dict(weights.action_weights) == {"mark_done": 3.0}


def test_insert_race_uses_existing_row(db_session):
    store = LearnedWeightStore(db_session)
    store.apply_delta("op-1", WeightKind.RULE, "retention_overdue", 1.0)
    db_session.commit()

    real_row = store._row
    calls = []

    def racing_row(actor_user_id, kind, key):
        # Miss once, as if another worker inserted the row meanwhile
        calls.append(key)
        if len(calls) == 1:
            return None
        return real_row(actor_user_id, kind, key)

    store._row = racing_row
    view = store.apply_delta("op-1", WeightKind.RULE, "retention_overdue", 1.0)
    db_session.commit()

    assert view.weight == 2.0
    assert view.stats_json["total"] == 2
    count = db_session.scalar(select(func.count()).select_from(OperatorLearnedWeight))
    assert count == 1

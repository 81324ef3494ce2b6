import unittest

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import class_mapper

# Import the Base and the models to trigger registry
from data_models.base import Base
from data_models.dbo_growth import Deal, FollowUpSchedule, OutreachEvent
from data_models.dbo_memory import CopilotActionLog, FounderWeekReview, OperatorLearnedWeight, OperatorMemoryEvent
from data_models.dbo_next_action import NextActionExecution, NextActionPreference, NextActionRun, NextBestAction

# In-memory SQLite is enough for structural checks.
# JSONB falls back to JSON and enums are stored as plain strings.

ALL_MODELS = (
    NextBestAction,
    NextActionExecution,
    NextActionRun,
    NextActionPreference,
    OperatorMemoryEvent,
    OperatorLearnedWeight,
    CopilotActionLog,
    FounderWeekReview,
    Deal,
    FollowUpSchedule,
    OutreachEvent,
)


class TestSchemaDefinitions(unittest.TestCase):
    def test_mappers_configure(self):
        """Every declarative mapping resolves without errors."""
        try:
            for model in ALL_MODELS:
                class_mapper(model)
        except Exception as e:
            self.fail(f"Mapping configuration failed: {e}")

    def test_schema_creates_on_sqlite(self):
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)

        tables = set(inspect(engine).get_table_names())
        for model in ALL_MODELS:
            self.assertIn(model.__tablename__, tables)

    def test_dedupe_key_is_unique(self):
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)

        uniques = inspect(engine).get_unique_constraints("next_best_action")
        self.assertIn(["dedupe_key"], [u["column_names"] for u in uniques])

    def test_learned_weight_unique_per_actor_kind_key(self):
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)

        uniques = inspect(engine).get_unique_constraints("operator_learned_weight")
        self.assertIn(["actor_user_id", "kind", "key"], [u["column_names"] for u in uniques])


if __name__ == '__main__':
    unittest.main()

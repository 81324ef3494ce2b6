from .base import Base
from .dbo_next_action import (
    NextBestAction, NextActionExecution, NextActionRun, NextActionPreference,
    NextActionPriority, NextActionStatus, ExecutionStatus, SourceType, PreferenceStatus,
)
from .dbo_memory import (
    OperatorMemoryEvent, OperatorLearnedWeight, CopilotActionLog, FounderWeekReview,
    MemorySourceType, MemoryOutcome, WeightKind, ImmutableRowError,
)
from .dbo_growth import Deal, FollowUpSchedule, OutreachEvent, DealStage, ScheduleStatus, OutreachEventType

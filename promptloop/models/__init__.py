from promptloop.models.base import Base
from promptloop.models.job import ChannelType, Job, PromptVersion
from promptloop.models.run_history import (
    DeliveryAttempt,
    DeliveryAttemptStatus,
    RunHistory,
    RunStatus,
)
from promptloop.models.user import User

__all__ = [
    "Base",
    "User",
    "Job",
    "PromptVersion",
    "ChannelType",
    "RunHistory",
    "RunStatus",
    "DeliveryAttempt",
    "DeliveryAttemptStatus",
]

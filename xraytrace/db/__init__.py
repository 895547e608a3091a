from .job_db import ReasoningJobDB
from .models import ReasoningJobRecord

__all__ = [
    "ReasoningJobDB",
    "ReasoningJobRecord",
]

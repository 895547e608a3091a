"""xraytrace: execution tracing with asynchronous step reasoning."""

from .config import (
    DEFAULT_REASONING_CONFIG,
    ReasoningConfig,
    XRayConfig,
    create_reasoning_config,
    load_config,
)
from .errors import (
    DuplicateStepError,
    ExecutionNotFoundError,
    GenerationTimeoutError,
    NotFoundError,
    StepNotFoundError,
    XRayError,
)
from .models import Execution, JobStatus, QueueStats, ReasoningJob, Step
from .persistence import (
    InMemoryStorage,
    JobStore,
    SQLiteStorage,
    StorageProvider,
    get_storage,
)
from .reasoning import (
    ReasoningGenerator,
    ReasoningQueue,
    create_agent_generator,
    create_simple_generator,
)
from .tracker import XRay

__version__ = "0.1.0"
__all__ = [
    "XRay",
    "Execution",
    "Step",
    "ReasoningJob",
    "JobStatus",
    "QueueStats",
    "ReasoningQueue",
    "ReasoningGenerator",
    "create_agent_generator",
    "create_simple_generator",
    "ReasoningConfig",
    "XRayConfig",
    "DEFAULT_REASONING_CONFIG",
    "create_reasoning_config",
    "load_config",
    "StorageProvider",
    "JobStore",
    "InMemoryStorage",
    "SQLiteStorage",
    "get_storage",
    "XRayError",
    "NotFoundError",
    "ExecutionNotFoundError",
    "StepNotFoundError",
    "DuplicateStepError",
    "GenerationTimeoutError",
]

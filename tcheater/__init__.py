"""tcheater: checkpoint-based personal time tracking."""

__version__ = "0.3.0"

# Branded types for type-safe IDs
from tcheater.types import CheckpointId, LocalId, ProjectId, TaskId

__all__ = [
    "__version__",
    "CheckpointId",
    "LocalId",
    "ProjectId",
    "TaskId",
]

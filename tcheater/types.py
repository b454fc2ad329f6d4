"""Branded identifier types for tcheater.

NewType wrappers keep the different string/int identifiers apart for the
type checker while costing nothing at runtime.
"""

from typing import NewType

# Server-assigned document id (remote store merge key)
CheckpointId = NewType("CheckpointId", str)

# Store-assigned id, stable for the lifetime of the process
LocalId = NewType("LocalId", int)

# References into externally supplied project/task definitions
ProjectId = NewType("ProjectId", str)
TaskId = NewType("TaskId", str)

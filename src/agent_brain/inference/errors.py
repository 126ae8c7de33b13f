"""
Error types raised by the inference brain.

Compatibility mismatches between a model and the agent interface are not
raised; they are collected into a CompatibilityReport (see validator.py).
"""


class BrainError(Exception):
    """Base class for all inference brain errors"""


class LoadError(BrainError):
    """Model bytes are malformed or in a format the backend does not support"""


class ExecutionError(BrainError):
    """The backend forward pass failed for the current decision step"""


class AllocationExhausted(BrainError):
    """The tensor allocator reached its hard memory budget"""

    def __init__(self, requested_bytes: int, allocated_bytes: int, max_bytes: int):
        self.requested_bytes = requested_bytes
        self.allocated_bytes = allocated_bytes
        self.max_bytes = max_bytes
        super().__init__(
            f"Cannot allocate {requested_bytes} bytes: {allocated_bytes} of "
            f"{max_bytes} bytes already in use"
        )


class StaleTensorError(BrainError):
    """A TensorProxy was read after its allocator was reset"""



"""
Inference brain for multi-agent reinforcement learning.

This module provides the batched decision pipeline that:
- Buffers per-agent decision requests and processes them in one batch
- Marshals observations into the tensors a model declares
- Runs the forward pass on an interchangeable execution backend
- Scatters actions and recurrent state back onto the agents
"""

from .allocator import TensorCachingAllocator
from .applier import TensorApplier
from .backends import ExecutionBackend, GraphEngine, ModelHandle, PortableEngine, create_backend
from .brain import BrainState, InferenceBrain, configure_logging
from .brain_parameters import ActionSpaceType, BrainParameters
from .config import ActionSelection, BackendType, BrainConfig, InferenceDevice
from .errors import (
    AllocationExhausted,
    BrainError,
    ExecutionError,
    LoadError,
    StaleTensorError
)
from .generator import TensorGenerator
from .metrics import BrainMetrics, StepMetrics
from .records import ActionRecord, AgentObservationRecord
from .tensors import ModelSpec, TensorProxy, TensorRole, TensorSpec
from .validator import CompatibilityReport, ModelParameterValidator

__all__ = [
    'ActionRecord',
    'ActionSelection',
    'ActionSpaceType',
    'AgentObservationRecord',
    'AllocationExhausted',
    'BackendType',
    'BrainConfig',
    'BrainError',
    'BrainMetrics',
    'BrainParameters',
    'BrainState',
    'CompatibilityReport',
    'ExecutionBackend',
    'ExecutionError',
    'GraphEngine',
    'InferenceBrain',
    'InferenceDevice',
    'LoadError',
    'ModelHandle',
    'ModelParameterValidator',
    'ModelSpec',
    'PortableEngine',
    'StaleTensorError',
    'StepMetrics',
    'TensorApplier',
    'TensorCachingAllocator',
    'TensorGenerator',
    'TensorProxy',
    'TensorRole',
    'TensorSpec',
    'configure_logging',
    'create_backend',
]

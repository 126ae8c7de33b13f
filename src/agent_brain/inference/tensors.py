"""
Tensor descriptions exchanged between the brain and execution backends.

This module provides:
- TensorRole: semantic role of a named tensor
- TensorSpec: declared name, shape and role of a model input or output
- ModelSpec: everything a backend reads from a model artifact's metadata
- TensorProxy: a named view over an allocator-owned buffer
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .. import tensor_names
from .errors import StaleTensorError

logger = logging.getLogger(__name__)


class TensorRole(Enum):
    """Semantic role of a tensor, derived from its reserved name"""
    OBSERVATION = "observation"
    ACTION_MASK = "action_mask"
    RECURRENT_IN = "recurrent_in"
    PREVIOUS_ACTION = "previous_action"
    EPSILON = "epsilon"
    ACTION = "action"
    RECURRENT_OUT = "recurrent_out"
    VALUE_ESTIMATE = "value_estimate"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> "TensorRole":
        """Get the role of a tensor from its name"""
        if tensor_names.observation_index(name) >= 0:
            return cls.OBSERVATION
        return _ROLES_BY_NAME.get(name, cls.UNKNOWN)


_ROLES_BY_NAME = {
    tensor_names.ACTION_MASK: TensorRole.ACTION_MASK,
    tensor_names.RECURRENT_IN: TensorRole.RECURRENT_IN,
    tensor_names.PREVIOUS_ACTION: TensorRole.PREVIOUS_ACTION,
    tensor_names.EPSILON: TensorRole.EPSILON,
    tensor_names.ACTION: TensorRole.ACTION,
    tensor_names.RECURRENT_OUT: TensorRole.RECURRENT_OUT,
    tensor_names.VALUE_ESTIMATE: TensorRole.VALUE_ESTIMATE,
}


@dataclass(frozen=True)
class TensorSpec:
    """
    Declared tensor of a model.

    The first dimension of `shape` is the batch dimension and is -1 in
    declarations; the remaining dimensions are fixed.
    """
    name: str
    shape: Tuple[int, ...]
    role: TensorRole = TensorRole.UNKNOWN

    @classmethod
    def create(cls, name: str, shape) -> "TensorSpec":
        """Create a spec whose role is derived from `name`"""
        return cls(name=name, shape=tuple(int(d) for d in shape), role=TensorRole.from_name(name))

    @property
    def feature_shape(self) -> Tuple[int, ...]:
        """Non-batch dimensions"""
        return self.shape[1:]

    @property
    def width(self) -> int:
        """Number of values per batch row"""
        return int(np.prod(self.feature_shape)) if self.feature_shape else 1

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'shape': list(self.shape)}


@dataclass
class ModelSpec:
    """Metadata declared by a loaded model"""
    version_number: int
    inputs: List[TensorSpec] = field(default_factory=list)
    outputs: List[TensorSpec] = field(default_factory=list)
    memory_size: int = 0
    is_continuous_control: bool = False
    action_output_shape: List[int] = field(default_factory=list)
    discrete_output: str = "log_probs"  # "log_probs" or "indices"

    def get_input(self, name: str) -> Optional[TensorSpec]:
        for spec in self.inputs:
            if spec.name == name:
                return spec
        return None

    def get_output(self, name: str) -> Optional[TensorSpec]:
        for spec in self.outputs:
            if spec.name == name:
                return spec
        return None

    @property
    def input_names(self) -> List[str]:
        return [spec.name for spec in self.inputs]

    @property
    def output_names(self) -> List[str]:
        return [spec.name for spec in self.outputs]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelSpec":
        """
        Build a ModelSpec from artifact metadata.

        Raises:
            KeyError, TypeError, ValueError: If the metadata is malformed
        """
        return cls(
            version_number=int(data['version_number']),
            inputs=[TensorSpec.create(t['name'], t['shape']) for t in data.get('inputs', [])],
            outputs=[TensorSpec.create(t['name'], t['shape']) for t in data.get('outputs', [])],
            memory_size=int(data.get('memory_size', 0)),
            is_continuous_control=bool(data.get('is_continuous_control', False)),
            action_output_shape=[int(s) for s in data.get('action_output_shape', [])],
            discrete_output=str(data.get('discrete_output', 'log_probs')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version_number': self.version_number,
            'inputs': [spec.to_dict() for spec in self.inputs],
            'outputs': [spec.to_dict() for spec in self.outputs],
            'memory_size': self.memory_size,
            'is_continuous_control': self.is_continuous_control,
            'action_output_shape': list(self.action_output_shape),
            'discrete_output': self.discrete_output,
        }


class TensorProxy:
    """
    Named view over a buffer owned by a TensorCachingAllocator.

    The proxy does not own its buffer. It stays readable only until the
    allocator is next reset; after that, reading `data` raises
    StaleTensorError.
    """

    def __init__(self,
                 name: str,
                 data: np.ndarray,
                 role: Optional[TensorRole] = None,
                 allocator=None):
        self.name = name
        self.role = role if role is not None else TensorRole.from_name(name)
        self._data = data
        self._allocator = allocator
        self._generation = allocator.generation if allocator is not None else None

    @property
    def is_valid(self) -> bool:
        if self._allocator is None:
            return True
        return self._allocator.generation == self._generation

    @property
    def data(self) -> np.ndarray:
        if not self.is_valid:
            raise StaleTensorError(
                f"Tensor '{self.name}' was read after its allocator was reset"
            )
        return self._data

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self._data.shape)

    @property
    def batch_size(self) -> int:
        return self._data.shape[0]

    def __repr__(self) -> str:
        return f"TensorProxy(name={self.name!r}, shape={self.shape}, role={self.role.value})"

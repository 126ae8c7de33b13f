"""
Converts a batch of agent observation records into model input tensors.
"""

import logging
from typing import Callable, Dict, List, Sequence, Set

import numpy as np

from .. import tensor_names
from .allocator import TensorCachingAllocator
from .brain_parameters import BrainParameters
from .records import AgentObservationRecord
from .tensors import TensorProxy, TensorRole, TensorSpec

logger = logging.getLogger(__name__)


class TensorGenerator:
    """
    Fills the input tensors a model declares from agent records.

    Each batch row corresponds to one record, in submission order. Buffers
    come from the allocator and stay valid until its next reset. Random
    inputs are drawn from a generator seeded at construction, so the same
    seed and the same batch order produce bit-identical tensors.
    """

    def __init__(self,
                 brain_parameters: BrainParameters,
                 seed: int = 0,
                 allocator: TensorCachingAllocator = None):
        """
        Initialize tensor generator.

        Args:
            brain_parameters: Declared agent interface
            seed: Seed of the random source used for epsilon inputs
            allocator: Buffer allocator (a private one is created if None)
        """
        self.brain_parameters = brain_parameters
        self.allocator = allocator or TensorCachingAllocator()
        self.seed = seed
        self._rng = np.random.default_rng(seed)

        # Names that already produced a size warning
        self._warned: Set[str] = set()

        self._fillers: Dict[TensorRole, Callable] = {
            TensorRole.OBSERVATION: self._fill_observation,
            TensorRole.ACTION_MASK: self._fill_action_mask,
            TensorRole.RECURRENT_IN: self._fill_recurrent_in,
            TensorRole.PREVIOUS_ACTION: self._fill_previous_action,
            TensorRole.EPSILON: self._fill_epsilon,
        }

    def generate(self,
                 input_specs: Sequence[TensorSpec],
                 records: Sequence[AgentObservationRecord]) -> List[TensorProxy]:
        """
        Generate input tensors for one decision step.

        Args:
            input_specs: Inputs declared by the model, in backend order
            records: Agent records of this step (at least one)

        Returns:
            One TensorProxy per input spec, in the same order
        """
        if not records:
            raise ValueError("Cannot generate tensors for an empty batch")

        batch_size = len(records)
        tensors = []

        for spec in input_specs:
            filler = self._fillers.get(spec.role)
            if filler is None:
                raise ValueError(f"No generator available for model input '{spec.name}'")

            buffer = self.allocator.allocate((batch_size,) + tuple(spec.feature_shape))
            filler(spec, buffer, records)
            tensors.append(TensorProxy(spec.name, buffer, spec.role, self.allocator))

        return tensors

    def _copy_row(self, name: str, row: np.ndarray, values) -> None:
        """Copy `values` into `row`, zero-padding or truncating to fit"""
        values = np.asarray(values, dtype=np.float32).ravel()
        width = row.shape[0]

        if values.shape[0] != width and name not in self._warned:
            self._warned.add(name)
            logger.warning(
                f"Tensor '{name}' expects {width} values per agent but received "
                f"{values.shape[0]}; padding or truncating"
            )

        count = min(width, values.shape[0])
        row[:count] = values[:count]

    def _fill_observation(self, spec: TensorSpec, buffer: np.ndarray,
                          records: Sequence[AgentObservationRecord]):
        index = tensor_names.observation_index(spec.name)
        for row, record in enumerate(records):
            if index < len(record.observations):
                self._copy_row(spec.name, buffer[row], record.observations[index])
            elif spec.name not in self._warned:
                self._warned.add(spec.name)
                logger.warning(
                    f"Agent {record.agent_id} has no observation group {index}; using zeros"
                )

    def _fill_action_mask(self, spec: TensorSpec, buffer: np.ndarray,
                          records: Sequence[AgentObservationRecord]):
        for row, record in enumerate(records):
            if record.action_mask is None:
                continue  # All actions legal
            self._copy_row(spec.name, buffer[row], self._flatten_mask(record.action_mask))

    def _flatten_mask(self, mask) -> np.ndarray:
        """Flatten a per-branch mask into one vector over all branches"""
        branch_sizes = self.brain_parameters.vector_action_size
        is_per_branch = (
            len(mask) == len(branch_sizes) and
            all(isinstance(branch, (list, tuple, np.ndarray)) for branch in mask)
        )
        if not is_per_branch:
            return np.asarray(mask, dtype=bool).astype(np.float32)

        flat = np.zeros(sum(branch_sizes), dtype=np.float32)
        offset = 0
        for size, branch in zip(branch_sizes, mask):
            branch = np.asarray(branch, dtype=bool)[:size]
            flat[offset:offset + branch.shape[0]] = branch
            offset += size
        return flat

    def _fill_recurrent_in(self, spec: TensorSpec, buffer: np.ndarray,
                           records: Sequence[AgentObservationRecord]):
        for row, record in enumerate(records):
            if record.memory is not None:
                self._copy_row(spec.name, buffer[row], record.memory)

    def _fill_previous_action(self, spec: TensorSpec, buffer: np.ndarray,
                              records: Sequence[AgentObservationRecord]):
        for row, record in enumerate(records):
            if record.previous_action is not None:
                self._copy_row(spec.name, buffer[row], record.previous_action)

    def _fill_epsilon(self, spec: TensorSpec, buffer: np.ndarray,
                      records: Sequence[AgentObservationRecord]):
        self._rng.standard_normal(dtype=np.float32, out=buffer)

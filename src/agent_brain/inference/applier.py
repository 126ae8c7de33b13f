"""
Scatters model output tensors back onto the agents of a batch.
"""

import logging
from typing import Dict, List, Mapping, Sequence

import numpy as np

from .. import tensor_names
from .brain_parameters import BrainParameters
from .config import ActionSelection
from .records import ActionRecord, AgentObservationRecord
from .tensors import ModelSpec

logger = logging.getLogger(__name__)


class TensorApplier:
    """
    Turns output tensors into one ActionRecord per agent.

    Row i of every output belongs to record i. Discrete actions are chosen
    per branch from the model's log-probabilities, either greedily or by a
    multinomial draw from a random source seeded at construction.
    """

    def __init__(self,
                 brain_parameters: BrainParameters,
                 seed: int = 0,
                 selection: ActionSelection = ActionSelection.SAMPLE,
                 discrete_output: str = "log_probs"):
        """
        Initialize tensor applier.

        Args:
            brain_parameters: Declared agent interface
            seed: Seed of the random source used for action sampling
            selection: Discrete action selection policy
            discrete_output: Kind of discrete action output the model produces
                ("log_probs" or "indices")
        """
        self.brain_parameters = brain_parameters
        self.selection = ActionSelection(selection)
        self.discrete_output = discrete_output
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    @classmethod
    def for_model(cls,
                  brain_parameters: BrainParameters,
                  model_spec: ModelSpec,
                  seed: int = 0,
                  selection: ActionSelection = ActionSelection.SAMPLE) -> "TensorApplier":
        """Create an applier matching a loaded model's output kind"""
        return cls(brain_parameters, seed=seed, selection=selection,
                   discrete_output=model_spec.discrete_output)

    def apply(self,
              outputs: Mapping[str, np.ndarray],
              records: Sequence[AgentObservationRecord]) -> List[ActionRecord]:
        """
        Apply output tensors to a batch of agents.

        Args:
            outputs: Output tensors by name, batch first
            records: Agent records in submission order

        Returns:
            One ActionRecord per record, in the same order
        """
        batch_size = len(records)
        actions = [ActionRecord(agent_id=record.agent_id) for record in records]

        for name, values in outputs.items():
            if values.shape[0] != batch_size:
                raise ValueError(
                    f"Output '{name}' has batch size {values.shape[0]}, expected {batch_size}"
                )

        if tensor_names.ACTION in outputs:
            action_values = outputs[tensor_names.ACTION].reshape(batch_size, -1)
            if self.brain_parameters.is_continuous:
                self._apply_continuous(action_values, actions)
            else:
                self._apply_discrete(action_values, actions)

        if tensor_names.RECURRENT_OUT in outputs:
            memories = outputs[tensor_names.RECURRENT_OUT].reshape(batch_size, -1)
            for row, (record, action) in enumerate(zip(records, actions)):
                memory = np.array(memories[row], dtype=np.float32)
                action.memory = memory
                record.memory = memory

        if tensor_names.VALUE_ESTIMATE in outputs:
            values = outputs[tensor_names.VALUE_ESTIMATE].reshape(batch_size, -1)
            for row, action in enumerate(actions):
                action.value_estimate = float(values[row, 0])

        return actions

    def _apply_continuous(self, values: np.ndarray, actions: List[ActionRecord]):
        for row, action in enumerate(actions):
            action.continuous_actions = np.array(values[row], dtype=np.float32)

    def _apply_discrete(self, values: np.ndarray, actions: List[ActionRecord]):
        branch_sizes = self.brain_parameters.vector_action_size

        if self.discrete_output == "indices":
            upper = np.asarray(branch_sizes) - 1
            indices = np.clip(np.rint(values), 0, upper).astype(np.int64)
        else:
            indices = np.zeros((values.shape[0], len(branch_sizes)), dtype=np.int64)
            offset = 0
            for branch, size in enumerate(branch_sizes):
                indices[:, branch] = self._select(values[:, offset:offset + size])
                offset += size

        for row, action in enumerate(actions):
            action.discrete_actions = indices[row].copy()

    def _select(self, log_probs: np.ndarray) -> np.ndarray:
        """
        Choose one index per row of a branch's log-probabilities.

        Args:
            log_probs: [batch, branch_size] (unnormalized) log-probabilities

        Returns:
            [batch] selected indices
        """
        if self.selection == ActionSelection.ARGMAX:
            return np.argmax(log_probs, axis=1)

        # Multinomial draw via the cumulative distribution
        log_probs = log_probs.astype(np.float64)
        probs = np.exp(log_probs - log_probs.max(axis=1, keepdims=True))
        cdf = np.cumsum(probs, axis=1)
        draws = self._rng.random(log_probs.shape[0]) * cdf[:, -1]
        indices = (cdf <= draws[:, None]).sum(axis=1)
        return np.minimum(indices, log_probs.shape[1] - 1)

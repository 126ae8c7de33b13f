"""
Unit tests for TensorApplier.

Tests scattering of continuous, discrete, recurrent and value outputs
back onto agents in batch order.
"""

import numpy as np
import pytest

from ...inference import ActionSelection, AgentObservationRecord, TensorApplier
from ..conftest import make_records


def log_probs_for(batch_size: int, choices, branch_sizes) -> np.ndarray:
    """Build log-probabilities that put (almost) all mass on `choices`."""
    values = np.full((batch_size, sum(branch_sizes)), -1.0e8, dtype=np.float32)
    offset = 0
    for branch, size in enumerate(branch_sizes):
        for row in range(batch_size):
            values[row, offset + choices[row][branch]] = 0.0
        offset += size
    return values


class TestTensorApplier:
    """Test suite for TensorApplier class."""

    def test_continuous_copied_through(self, continuous_params):
        applier = TensorApplier(continuous_params)
        records = make_records(continuous_params, 3)
        action = np.arange(9, dtype=np.float32).reshape(3, 3)

        actions = applier.apply({'action': action}, records)

        assert [a.agent_id for a in actions] == [r.agent_id for r in records]
        for row, record in enumerate(actions):
            np.testing.assert_array_equal(record.continuous_actions, action[row])
            assert record.discrete_actions is None
            np.testing.assert_array_equal(record.vector_action, action[row])

    @pytest.mark.parametrize("selection", [ActionSelection.SAMPLE, ActionSelection.ARGMAX])
    def test_discrete_selection_respects_certain_choices(self, discrete_params, selection):
        """Test that both policies pick an action holding all probability mass."""
        applier = TensorApplier(discrete_params, seed=3, selection=selection)
        records = make_records(discrete_params, 3)
        choices = [[0, 1, 0, 3], [2, 0, 1, 0], [1, 1, 1, 2]]

        actions = applier.apply(
            {'action': log_probs_for(3, choices, discrete_params.vector_action_size)}, records
        )

        for row, action in enumerate(actions):
            assert action.discrete_actions.tolist() == choices[row]
            assert action.discrete_actions.dtype == np.int64

    def test_sampled_indices_within_branch_range(self, discrete_params):
        applier = TensorApplier(discrete_params, seed=11)
        records = make_records(discrete_params, 50)
        uniform = np.zeros((50, 11), dtype=np.float32)

        actions = applier.apply({'action': uniform}, records)

        for action in actions:
            assert len(action.discrete_actions) == 4
            for index, size in zip(action.discrete_actions, discrete_params.vector_action_size):
                assert 0 <= index < size

    def test_sampling_is_seeded(self, discrete_params):
        """Test that the same seed reproduces the same sampled actions."""
        records = make_records(discrete_params, 20)
        uniform = np.zeros((20, 11), dtype=np.float32)

        first = TensorApplier(discrete_params, seed=5).apply({'action': uniform}, records)
        second = TensorApplier(discrete_params, seed=5).apply({'action': uniform}, records)

        assert [a.discrete_actions.tolist() for a in first] == [a.discrete_actions.tolist() for a in second]

    def test_sampling_follows_distribution(self, discrete_params):
        """Test that sampling favours the more likely action."""
        applier = TensorApplier(discrete_params, seed=0)
        records = make_records(discrete_params, 2000)
        values = np.zeros((2000, 11), dtype=np.float32)
        values[:, 3] = np.log(0.9)  # Branch 1: index 0 with p=0.9
        values[:, 4] = np.log(0.1)

        actions = applier.apply({'action': values}, records)

        frequency = np.mean([a.discrete_actions[1] == 0 for a in actions])
        assert 0.85 < frequency < 0.95

    def test_index_outputs_clipped(self, discrete_params):
        """Test models that already emit one index per branch."""
        applier = TensorApplier(discrete_params, discrete_output="indices")
        records = make_records(discrete_params, 2)
        indices = np.array([[2, 1, 0, 3], [5, -1, 1.2, 2.7]], dtype=np.float32)

        actions = applier.apply({'action': indices}, records)

        assert actions[0].discrete_actions.tolist() == [2, 1, 0, 3]
        assert actions[1].discrete_actions.tolist() == [2, 0, 1, 3]

    def test_recurrent_and_value_outputs(self, recurrent_params):
        """Test that recurrent state is stored on both action and record."""
        applier = TensorApplier(recurrent_params, selection=ActionSelection.ARGMAX)
        records = [AgentObservationRecord(agent_id=i, observations=[np.zeros(8)]) for i in range(2)]
        memories = np.random.default_rng(0).standard_normal((2, 16)).astype(np.float32)

        actions = applier.apply({
            'action': np.zeros((2, 11), dtype=np.float32),
            'recurrent_out': memories,
            'value_estimate': np.array([[0.5], [-1.5]], dtype=np.float32),
        }, records)

        for row in range(2):
            np.testing.assert_array_equal(actions[row].memory, memories[row])
            np.testing.assert_array_equal(records[row].memory, memories[row])
        assert actions[0].value_estimate == pytest.approx(0.5)
        assert actions[1].value_estimate == pytest.approx(-1.5)

    def test_batch_size_mismatch(self, discrete_params):
        applier = TensorApplier(discrete_params)

        with pytest.raises(ValueError):
            applier.apply({'action': np.zeros((3, 11), dtype=np.float32)},
                          make_records(discrete_params, 2))

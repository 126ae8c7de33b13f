"""
Pytest configuration and shared fixtures for agent brain tests.

This module provides common test fixtures, backend doubles, and utilities
used across the test suite.
"""

import shutil
import tempfile
from typing import Any, Dict, List, Tuple

import numpy as np
import pytest
import torch

# Import components to test
from ..inference import (
    ActionSelection,
    ActionSpaceType,
    AgentObservationRecord,
    BackendType,
    BrainConfig,
    BrainParameters,
    ExecutionBackend,
    InferenceDevice,
    ModelSpec
)
from ..models import PolicyModel, PolicyModelConfig


# --- Test Configuration ---

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture(autouse=True)
def seed_torch():
    """Make model initialization reproducible."""
    torch.manual_seed(1234)


def make_config(**overrides) -> BrainConfig:
    """Create a BrainConfig that ignores the process environment."""
    settings = dict(
        model_path=None,
        backend=BackendType.GRAPH,
        device=InferenceDevice.CPU,
        seed=0,
        action_selection=ActionSelection.SAMPLE,
        cpu_threads=0,
        max_allocator_mb=0,
        agent_state_ttl=0,
        log_interval=1000,
        verbose=False
    )
    settings.update(overrides)
    return BrainConfig(**settings)


@pytest.fixture
def brain_config():
    """Default brain configuration."""
    return make_config()


# --- Agent Interfaces ---

@pytest.fixture
def discrete_params():
    """Discrete interface: one 8-wide observation, branches [3, 2, 2, 4]."""
    return BrainParameters(
        observation_sizes=[8],
        vector_action_space_type=ActionSpaceType.DISCRETE,
        vector_action_size=[3, 2, 2, 4],
        brain_name="SoccerBrain"
    )


@pytest.fixture
def continuous_params():
    """Continuous interface with two observation groups."""
    return BrainParameters(
        observation_sizes=[6, 4],
        vector_action_space_type=ActionSpaceType.CONTINUOUS,
        vector_action_size=[3],
        brain_name="ContinuousBrain"
    )


@pytest.fixture
def recurrent_params():
    """Discrete interface with recurrent state."""
    return BrainParameters(
        observation_sizes=[8],
        vector_action_space_type=ActionSpaceType.DISCRETE,
        vector_action_size=[3, 2, 2, 4],
        memory_size=16,
        brain_name="RecurrentBrain"
    )


# --- Models ---

def model_config_for(params: BrainParameters, **overrides) -> PolicyModelConfig:
    """Create a PolicyModelConfig matching an agent interface."""
    settings = dict(
        observation_sizes=params.stacked_observation_sizes,
        action_sizes=list(params.vector_action_size),
        is_continuous=params.is_continuous,
        memory_size=params.memory_size,
        hidden_size=32,
        num_layers=2
    )
    settings.update(overrides)
    return PolicyModelConfig(**settings)


@pytest.fixture
def discrete_model(discrete_params):
    """Policy model matching the discrete interface."""
    return PolicyModel(model_config_for(discrete_params))


@pytest.fixture
def continuous_model(continuous_params):
    """Policy model matching the continuous interface."""
    return PolicyModel(model_config_for(continuous_params))


@pytest.fixture
def recurrent_model(recurrent_params):
    """Policy model matching the recurrent interface."""
    return PolicyModel(model_config_for(recurrent_params, use_previous_action=True))


@pytest.fixture
def discrete_graph_bytes(discrete_model):
    """TorchScript artifact of the discrete model."""
    return discrete_model.to_graph_bytes()


@pytest.fixture
def discrete_checkpoint_bytes(discrete_model):
    """Checkpoint artifact of the discrete model."""
    return discrete_model.to_checkpoint_bytes()


# --- Agent Records ---

def make_records(params: BrainParameters,
                 num_agents: int,
                 seed: int = 0,
                 id_prefix: str = "agent") -> List[AgentObservationRecord]:
    """Create observation records with random observations."""
    rng = np.random.default_rng(seed)
    records = []
    for i in range(num_agents):
        observations = [
            rng.standard_normal(size).astype(np.float32)
            for size in params.stacked_observation_sizes
        ]
        records.append(AgentObservationRecord(
            agent_id=f"{id_prefix}_{i}",
            observations=observations
        ))
    return records


@pytest.fixture
def record_factory():
    """Factory fixture for observation records."""
    return make_records


# --- Backend Doubles ---

class EchoBackend(ExecutionBackend):
    """
    Backend double that echoes its first observation input as the action.

    Used to check tensor marshaling independently of a real model.
    """

    backend_type = BackendType.GRAPH

    def __init__(self, width: int, device: InferenceDevice = InferenceDevice.CPU, num_threads: int = 0):
        super().__init__(device, num_threads)
        self.width = width
        self.run_count = 0

    def _load_module(self, model_bytes: bytes) -> Tuple[Any, ModelSpec]:
        model_spec = ModelSpec.from_dict({
            'version_number': 2,
            'inputs': [{'name': 'vector_observation', 'shape': [-1, self.width]}],
            'outputs': [{'name': 'action', 'shape': [-1, self.width]}],
            'is_continuous_control': True,
            'action_output_shape': [self.width],
        })
        return self._echo, model_spec

    def _echo(self, feed: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        self.run_count += 1
        return {'action': feed['vector_observation'].clone()}


@pytest.fixture
def echo_params():
    """Continuous interface whose action size equals its observation size."""
    return BrainParameters(
        observation_sizes=[5],
        vector_action_space_type=ActionSpaceType.CONTINUOUS,
        vector_action_size=[5],
        brain_name="EchoBrain"
    )


@pytest.fixture
def echo_backend():
    """Loaded echo backend."""
    backend = EchoBackend(width=5)
    backend.load(b"echo")
    return backend

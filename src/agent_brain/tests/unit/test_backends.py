"""
Unit tests for execution backends.

Tests loading, declared tensors, forward passes and failure handling for
both the graph engine and the portable engine.
"""

import numpy as np
import pytest
import torch

from ...inference import (
    BackendType,
    ExecutionError,
    GraphEngine,
    InferenceDevice,
    LoadError,
    ModelHandle,
    PortableEngine,
    TensorGenerator,
    create_backend
)
from ..conftest import make_records


@pytest.fixture(params=[BackendType.GRAPH, BackendType.PORTABLE])
def loaded_backend(request, discrete_graph_bytes, discrete_checkpoint_bytes):
    """Each backend variant loaded with the discrete model."""
    backend = create_backend(request.param)
    if request.param == BackendType.GRAPH:
        backend.load(discrete_graph_bytes)
    else:
        backend.load(discrete_checkpoint_bytes)
    yield backend
    backend.dispose()


class TestCreateBackend:
    """Test suite for the backend factory."""

    def test_create_by_type(self):
        assert isinstance(create_backend(BackendType.GRAPH), GraphEngine)
        assert isinstance(create_backend(BackendType.PORTABLE), PortableEngine)
        assert isinstance(create_backend("portable", "gpu"), PortableEngine)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            create_backend("tensorflow")

    def test_gpu_falls_back_to_cpu(self):
        """Test device selection when CUDA is not available."""
        backend = PortableEngine(device=InferenceDevice.GPU)
        expected = 'cuda' if torch.cuda.is_available() else 'cpu'
        assert backend.torch_device.type == expected

    def test_graph_engine_runs_on_cpu(self):
        assert GraphEngine(device=InferenceDevice.GPU).torch_device.type == 'cpu'


class TestExecutionBackends:
    """Behaviour shared by both backend variants."""

    def test_declared_tensors(self, loaded_backend):
        assert loaded_backend.is_loaded
        assert [s.name for s in loaded_backend.declared_inputs()] == ['vector_observation', 'action_masks']
        assert [s.name for s in loaded_backend.declared_outputs()] == ['action', 'value_estimate']
        assert loaded_backend.model_spec.action_output_shape == [3, 2, 2, 4]

    def test_run_returns_declared_outputs(self, loaded_backend, discrete_params):
        generator = TensorGenerator(discrete_params)
        inputs = generator.generate(loaded_backend.declared_inputs(), make_records(discrete_params, 5))

        outputs = loaded_backend.run(inputs)

        assert set(outputs) == {'action', 'value_estimate'}
        assert outputs['action'].shape == (5, 11)
        assert outputs['action'].dtype == np.float32
        assert outputs['value_estimate'].shape == (5, 1)

        # Each branch holds normalized log-probabilities
        offset = 0
        for size in discrete_params.vector_action_size:
            probs = np.exp(outputs['action'][:, offset:offset + size]).sum(axis=1)
            np.testing.assert_allclose(probs, 1.0, rtol=1e-5)
            offset += size

    def test_run_before_load(self):
        with pytest.raises(ExecutionError):
            GraphEngine().run([])

    def test_run_with_missing_input(self, loaded_backend, discrete_params):
        """Test that a failing forward pass surfaces as ExecutionError."""
        generator = TensorGenerator(discrete_params)
        inputs = generator.generate(loaded_backend.declared_inputs()[:1], make_records(discrete_params, 2))

        with pytest.raises(ExecutionError):
            loaded_backend.run(inputs)

    def test_concurrent_run_rejected(self, loaded_backend):
        """Test that a backend refuses a second run while one is in progress."""
        loaded_backend._run_lock.acquire()
        try:
            with pytest.raises(ExecutionError):
                loaded_backend.run([])
        finally:
            loaded_backend._run_lock.release()

    def test_backend_usable_after_execution_error(self, loaded_backend, discrete_params):
        generator = TensorGenerator(discrete_params)
        records = make_records(discrete_params, 2)

        with pytest.raises(ExecutionError):
            loaded_backend.run(generator.generate(loaded_backend.declared_inputs()[:1], records))

        outputs = loaded_backend.run(generator.generate(loaded_backend.declared_inputs(), records))
        assert outputs['action'].shape == (2, 11)

    def test_warmup(self, loaded_backend):
        stats = loaded_backend.warmup(warmup_steps=3)

        assert set(stats) == {'avg_ms', 'std_ms', 'min_ms', 'max_ms'}
        assert stats['min_ms'] <= stats['avg_ms'] <= stats['max_ms']

    def test_model_info(self, loaded_backend):
        info = loaded_backend.get_model_info()

        assert info['loaded'] is True
        assert info['parameters'] > 0
        assert info['model_spec']['action_output_shape'] == [3, 2, 2, 4]

    def test_dispose(self, loaded_backend):
        loaded_backend.dispose()

        assert not loaded_backend.is_loaded
        assert loaded_backend.declared_inputs() == []
        assert loaded_backend.get_model_info()['loaded'] is False


class TestLoadErrors:
    """Test suite for malformed model bytes."""

    @pytest.mark.parametrize("backend_type", [BackendType.GRAPH, BackendType.PORTABLE])
    @pytest.mark.parametrize("model_bytes", [b"", b"not a model at all"])
    def test_malformed_bytes(self, backend_type, model_bytes):
        backend = create_backend(backend_type)

        with pytest.raises(LoadError):
            backend.load(model_bytes)
        assert not backend.is_loaded

    def test_graph_engine_rejects_checkpoint(self, discrete_checkpoint_bytes):
        with pytest.raises(LoadError):
            GraphEngine().load(discrete_checkpoint_bytes)

    def test_portable_engine_rejects_graph(self, discrete_graph_bytes):
        with pytest.raises(LoadError):
            PortableEngine().load(discrete_graph_bytes)


class TestModelHandle:
    """Test suite for ModelHandle."""

    def test_release_disposes_backend(self, discrete_graph_bytes):
        backend = GraphEngine()
        model_spec = backend.load(discrete_graph_bytes)
        handle = ModelHandle(backend=backend, model_spec=model_spec,
                             backend_type=BackendType.GRAPH, device=InferenceDevice.CPU)

        handle.release()

        assert not backend.is_loaded

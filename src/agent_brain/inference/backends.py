"""
Execution backends that run the forward pass of a loaded model.

Two interchangeable variants are provided:
- GraphEngine: runs a serialized TorchScript graph on CPU
- PortableEngine: rebuilds the policy network from a torch checkpoint and
  runs it on the selected device (CPU or GPU)

Both accept input TensorProxies by name and return output arrays by name,
so swapping them does not change the brain's behaviour.
"""

import io
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch

from .. import tensor_names
from ..models import PolicyModel
from .config import BackendType, InferenceDevice
from .errors import BrainError, ExecutionError, LoadError
from .tensors import ModelSpec, TensorProxy, TensorSpec

logger = logging.getLogger(__name__)


class ExecutionBackend(ABC):
    """
    Base class for neural-network execution backends.

    A backend holds at most one loaded model. `run` is not safe to call
    concurrently on the same instance.
    """

    backend_type: BackendType

    def __init__(self, device: InferenceDevice = InferenceDevice.CPU, num_threads: int = 0):
        """
        Initialize backend.

        Args:
            device: Requested execution device
            num_threads: Number of CPU threads for torch (0 keeps the torch default)
        """
        self.device = InferenceDevice(device)
        self.num_threads = num_threads
        self.model_spec: Optional[ModelSpec] = None
        self._module = None
        self._run_lock = threading.Lock()

    @property
    def torch_device(self) -> torch.device:
        return torch.device('cpu')

    @property
    def is_loaded(self) -> bool:
        return self._module is not None

    def load(self, model_bytes: bytes) -> ModelSpec:
        """
        Load a model artifact.

        Args:
            model_bytes: Serialized model in this backend's format

        Returns:
            Metadata declared by the model

        Raises:
            LoadError: If the bytes are malformed or unsupported
        """
        if not model_bytes:
            raise LoadError("Model bytes are empty")

        if self.num_threads > 0:
            torch.set_num_threads(self.num_threads)
            logger.info(f"Set CPU threads to {self.num_threads}")

        try:
            module, model_spec = self._load_module(bytes(model_bytes))
        except LoadError:
            raise
        except Exception as e:
            logger.error(f"Failed to load model with {self.backend_type.value} backend: {e}")
            raise LoadError(f"Failed to load model: {e}") from e

        self._module = module
        self.model_spec = model_spec

        logger.info(
            f"Model loaded with {self.backend_type.value} backend on {self.torch_device} "
            f"(inputs: {model_spec.input_names}, outputs: {model_spec.output_names})"
        )
        return model_spec

    @abstractmethod
    def _load_module(self, model_bytes: bytes) -> Tuple[Any, ModelSpec]:
        """Deserialize the callable module and its metadata"""

    def declared_inputs(self) -> List[TensorSpec]:
        return list(self.model_spec.inputs) if self.model_spec else []

    def declared_outputs(self) -> List[TensorSpec]:
        return list(self.model_spec.outputs) if self.model_spec else []

    def run(self, inputs: Sequence[TensorProxy]) -> Dict[str, np.ndarray]:
        """
        Run one forward pass.

        Args:
            inputs: Input tensors, named as the model declares them

        Returns:
            Declared output tensors by name, as float32 arrays

        Raises:
            ExecutionError: If no model is loaded or the forward pass fails
        """
        if self._module is None:
            raise ExecutionError("No model is loaded in the execution backend")

        if not self._run_lock.acquire(blocking=False):
            raise ExecutionError(
                f"Concurrent run on the same {self.backend_type.value} backend is not supported"
            )

        try:
            feed = {
                proxy.name: torch.from_numpy(proxy.data).to(self.torch_device)
                for proxy in inputs
            }
            with torch.no_grad():
                result = self._module(feed)

            declared = set(self.model_spec.output_names)
            return {
                name: tensor.detach().to(torch.float32).cpu().numpy()
                for name, tensor in result.items()
                if name in declared
            }
        except BrainError:
            raise
        except Exception as e:
            logger.error(f"Forward pass failed: {e}")
            raise ExecutionError(f"Forward pass failed: {e}") from e
        finally:
            self._run_lock.release()

    def warmup(self, warmup_steps: int = 10) -> Dict[str, float]:
        """
        Warmup the model with zero inputs of batch size 1.

        Args:
            warmup_steps: Number of warmup iterations

        Returns:
            Warmup statistics
        """
        logger.info(f"Warming up model with {warmup_steps} steps")

        dummy_inputs = [
            TensorProxy(spec.name, np.zeros((1,) + tuple(spec.feature_shape), dtype=np.float32))
            for spec in self.declared_inputs()
        ]

        warmup_times = []
        for i in range(warmup_steps):
            start_time = time.time()
            self.run(dummy_inputs)
            elapsed = time.time() - start_time
            warmup_times.append(elapsed)

            if i == 0:
                logger.debug(f"First warmup step: {elapsed*1000:.2f}ms")

        if not warmup_times:
            return {'avg_ms': 0.0, 'std_ms': 0.0, 'min_ms': 0.0, 'max_ms': 0.0}

        stats = {
            'avg_ms': float(np.mean(warmup_times)) * 1000,
            'std_ms': float(np.std(warmup_times)) * 1000,
            'min_ms': float(np.min(warmup_times)) * 1000,
            'max_ms': float(np.max(warmup_times)) * 1000
        }

        logger.info(f"Warmup complete. Avg inference: {stats['avg_ms']:.2f}ms")

        return stats

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the loaded model"""
        if self._module is None:
            return {'backend': self.backend_type.value, 'loaded': False}

        parameters = list(self._module.parameters())
        return {
            'backend': self.backend_type.value,
            'loaded': True,
            'device': str(self.torch_device),
            'model_spec': self.model_spec.to_dict(),
            'parameters': sum(p.numel() for p in parameters),
        }

    def dispose(self):
        """Release the loaded model"""
        if self._module is not None:
            logger.debug(f"Disposing {self.backend_type.value} backend")
        self._module = None
        self.model_spec = None


class GraphEngine(ExecutionBackend):
    """
    Native graph engine running a TorchScript archive.

    The archive carries the model metadata as an extra file. Loading is
    expensive; running is cheap. Always executes on CPU.
    """

    backend_type = BackendType.GRAPH

    def __init__(self, device: InferenceDevice = InferenceDevice.CPU, num_threads: int = 0):
        super().__init__(device, num_threads)
        if self.device == InferenceDevice.GPU:
            logger.warning("Graph engine requested on GPU but it runs on CPU only")

    def _load_module(self, model_bytes: bytes) -> Tuple[Any, ModelSpec]:
        extra_files = {tensor_names.MODEL_SPEC_FILE: ""}
        module = torch.jit.load(io.BytesIO(model_bytes), map_location='cpu', _extra_files=extra_files)

        metadata = extra_files[tensor_names.MODEL_SPEC_FILE]
        if not metadata:
            raise LoadError(
                f"TorchScript archive does not contain {tensor_names.MODEL_SPEC_FILE}"
            )

        model_spec = ModelSpec.from_dict(json.loads(metadata))
        module.eval()
        return module, model_spec


class PortableEngine(ExecutionBackend):
    """
    Portable runtime engine running a torch checkpoint.

    The checkpoint holds the network configuration, weights and metadata;
    the network is rebuilt, frozen and moved to the selected device.
    """

    backend_type = BackendType.PORTABLE

    @property
    def torch_device(self) -> torch.device:
        if self.device == InferenceDevice.GPU:
            if torch.cuda.is_available():
                return torch.device('cuda')
            if not getattr(self, '_warned_no_cuda', False):
                self._warned_no_cuda = True
                logger.warning("GPU requested but CUDA is not available, using CPU")
        return torch.device('cpu')

    def _load_module(self, model_bytes: bytes) -> Tuple[Any, ModelSpec]:
        checkpoint = torch.load(io.BytesIO(model_bytes), map_location=self.torch_device,
                                weights_only=True)

        if not isinstance(checkpoint, dict) or 'model_spec' not in checkpoint:
            raise LoadError("Checkpoint does not contain model metadata")

        model_spec = ModelSpec.from_dict(checkpoint['model_spec'])
        model = PolicyModel.from_checkpoint(checkpoint, device=self.torch_device)

        # Optimize for inference
        model.eval()
        for param in model.parameters():
            param.requires_grad = False

        return model, model_spec


_BACKENDS = {
    BackendType.GRAPH: GraphEngine,
    BackendType.PORTABLE: PortableEngine,
}


def create_backend(backend_type: BackendType = BackendType.GRAPH,
                   device: InferenceDevice = InferenceDevice.CPU,
                   num_threads: int = 0) -> ExecutionBackend:
    """
    Create an execution backend by type.

    Args:
        backend_type: Backend variant
        device: Requested execution device
        num_threads: Number of CPU threads for torch (0 keeps the torch default)

    Returns:
        Unloaded backend instance
    """
    return _BACKENDS[BackendType(backend_type)](device=device, num_threads=num_threads)


@dataclass
class ModelHandle:
    """Loaded model together with the backend executing it"""
    backend: ExecutionBackend
    model_spec: ModelSpec
    backend_type: BackendType
    device: InferenceDevice

    def release(self):
        self.backend.dispose()

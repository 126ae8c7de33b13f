"""
Configuration for the inference brain.

This module provides configuration management for the brain, with
defaults taken from environment variables so that a host process can
configure it without code changes.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class InferenceDevice(Enum):
    """Device the portable runtime executes on"""
    CPU = "cpu"
    GPU = "gpu"


class BackendType(Enum):
    """Execution backend variants"""
    GRAPH = "graph"        # TorchScript graph engine
    PORTABLE = "portable"  # Checkpoint-based portable runtime


class ActionSelection(Enum):
    """How discrete actions are chosen from model log-probabilities"""
    SAMPLE = "sample"  # Multinomial draw from the seeded random source
    ARGMAX = "argmax"  # Greedy


@dataclass
class BrainConfig:
    """Configuration for the inference brain"""

    # Model settings
    model_path: Optional[str] = field(default_factory=lambda: os.getenv('BRAIN_MODEL_PATH') or None)
    backend: BackendType = field(default_factory=lambda: os.getenv('BRAIN_BACKEND', 'graph'))
    device: InferenceDevice = field(default_factory=lambda: os.getenv('BRAIN_DEVICE', 'cpu'))

    # Inference settings
    seed: int = field(default_factory=lambda: int(os.getenv('BRAIN_SEED', '0')))
    action_selection: ActionSelection = field(
        default_factory=lambda: os.getenv('ACTION_SELECTION', 'sample'))

    # Performance settings
    cpu_threads: int = field(default_factory=lambda: int(os.getenv('CPU_THREADS', '0')))  # 0 = torch default
    max_allocator_mb: float = field(default_factory=lambda: float(os.getenv('MAX_ALLOCATOR_MB', '0')))  # 0 = unlimited

    # Agent state settings
    agent_state_ttl: int = field(default_factory=lambda: int(os.getenv('AGENT_STATE_TTL', '0')))  # 0 = keep until done

    # Monitoring settings
    log_interval: int = field(default_factory=lambda: int(os.getenv('LOG_INTERVAL', '1000')))
    verbose: bool = field(default_factory=lambda: os.getenv('VERBOSE', 'false').lower() == 'true')

    @property
    def max_allocator_bytes(self) -> Optional[int]:
        """Allocator budget in bytes (None for unlimited)"""
        if self.max_allocator_mb <= 0:
            return None
        return int(self.max_allocator_mb * 1024 * 1024)

    def validate(self):
        """Validate configuration"""
        try:
            self.backend = BackendType(self.backend)
        except ValueError:
            raise ValueError(
                f"Backend must be one of {[b.value for b in BackendType]}, got {self.backend}"
            )

        try:
            self.device = InferenceDevice(self.device)
        except ValueError:
            raise ValueError(
                f"Device must be one of {[d.value for d in InferenceDevice]}, got {self.device}"
            )

        try:
            self.action_selection = ActionSelection(self.action_selection)
        except ValueError:
            raise ValueError(
                f"Action selection must be one of {[a.value for a in ActionSelection]}, "
                f"got {self.action_selection}"
            )

        if self.model_path is not None and not os.path.exists(self.model_path):
            raise ValueError(f"Model path does not exist: {self.model_path}")

        if self.cpu_threads < 0:
            raise ValueError(f"CPU threads must be >= 0, got {self.cpu_threads}")

        if self.agent_state_ttl < 0:
            raise ValueError(f"Agent state TTL must be >= 0, got {self.agent_state_ttl}")

        if self.log_interval < 1:
            raise ValueError(f"Log interval must be >= 1, got {self.log_interval}")

        if self.backend == BackendType.GRAPH and self.device == InferenceDevice.GPU:
            logger.warning("The graph engine runs on CPU only; ignoring the GPU device setting")

    def __post_init__(self):
        """Post-initialization validation"""
        self.validate()

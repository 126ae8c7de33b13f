"""Agent Brain - batched neural-network inference for multi-agent simulations"""

__version__ = "0.1.0"

from .inference.brain import InferenceBrain
from .inference.brain_parameters import BrainParameters, ActionSpaceType
from .inference.config import BrainConfig
from .inference.records import AgentObservationRecord, ActionRecord
from .models import PolicyModel, PolicyModelConfig

__all__ = [
    "InferenceBrain",
    "BrainParameters",
    "ActionSpaceType",
    "BrainConfig",
    "AgentObservationRecord",
    "ActionRecord",
    "PolicyModel",
    "PolicyModelConfig",
]

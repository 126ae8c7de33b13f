"""
Agent interface declaration consumed by the validator and tensor generator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class ActionSpaceType(Enum):
    """Type of the vector action space"""
    DISCRETE = "discrete"
    CONTINUOUS = "continuous"


@dataclass
class BrainParameters:
    """
    Static description of the agents a brain decides for.

    For discrete control `vector_action_size` holds one size per branch;
    for continuous control it holds a single element, the action size.
    """
    observation_sizes: List[int] = field(default_factory=lambda: [8])
    vector_action_space_type: ActionSpaceType = ActionSpaceType.DISCRETE
    vector_action_size: List[int] = field(default_factory=lambda: [2])
    memory_size: int = 0
    num_stacked_vector_observations: int = 1
    brain_name: str = "LearningBrain"

    def __post_init__(self):
        if isinstance(self.vector_action_space_type, str):
            self.vector_action_space_type = ActionSpaceType(self.vector_action_space_type)
        self.observation_sizes = [int(s) for s in self.observation_sizes]
        self.vector_action_size = [int(s) for s in self.vector_action_size]
        self.validate()

    def validate(self):
        """Validate the declaration"""
        if not self.observation_sizes:
            raise ValueError("At least one observation group is required")
        if any(size < 1 for size in self.observation_sizes):
            raise ValueError(f"Observation sizes must be >= 1, got {self.observation_sizes}")
        if not self.vector_action_size or any(size < 1 for size in self.vector_action_size):
            raise ValueError(f"Action sizes must be >= 1, got {self.vector_action_size}")
        if self.is_continuous and len(self.vector_action_size) != 1:
            raise ValueError(
                f"Continuous control expects a single action size, got {self.vector_action_size}"
            )
        if self.memory_size < 0:
            raise ValueError(f"Memory size must be >= 0, got {self.memory_size}")
        if self.num_stacked_vector_observations < 1:
            raise ValueError(
                f"Stacked observations must be >= 1, got {self.num_stacked_vector_observations}"
            )

    @property
    def is_continuous(self) -> bool:
        return self.vector_action_space_type == ActionSpaceType.CONTINUOUS

    @property
    def num_branches(self) -> int:
        """Number of discrete action branches (0 for continuous control)"""
        return 0 if self.is_continuous else len(self.vector_action_size)

    @property
    def total_discrete_actions(self) -> int:
        """Sum of all discrete branch sizes (0 for continuous control)"""
        return 0 if self.is_continuous else sum(self.vector_action_size)

    @property
    def continuous_size(self) -> int:
        """Continuous action size (0 for discrete control)"""
        return self.vector_action_size[0] if self.is_continuous else 0

    @property
    def stacked_observation_sizes(self) -> List[int]:
        """Observation group sizes including stacking"""
        return [size * self.num_stacked_vector_observations for size in self.observation_sizes]

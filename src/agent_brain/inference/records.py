"""
Per-agent records exchanged with the external agent-control code.
"""

from dataclasses import dataclass, field
from typing import Hashable, List, Optional, Sequence, Union

import numpy as np

ActionMask = Union[Sequence[bool], Sequence[Sequence[bool]]]


@dataclass
class AgentObservationRecord:
    """
    Observations of one agent for one decision step.

    `observations` holds one vector per observation group, in the order the
    groups are declared in BrainParameters. `action_mask` marks illegal
    discrete actions (True = illegal), either per branch or as one flat
    vector over all branches. `reward`, `done` and `max_step_reached` are
    carried for the collaborator and not used by inference, except that a
    done agent's recurrent state is forgotten after the step.
    """
    agent_id: Hashable
    observations: List[Sequence[float]] = field(default_factory=list)
    previous_action: Optional[Sequence[int]] = None
    action_mask: Optional[ActionMask] = None
    memory: Optional[Sequence[float]] = None
    reward: float = 0.0
    done: bool = False
    max_step_reached: bool = False


@dataclass
class ActionRecord:
    """Action decided for one agent in one decision step"""
    agent_id: Hashable
    continuous_actions: Optional[np.ndarray] = None
    discrete_actions: Optional[np.ndarray] = None
    memory: Optional[np.ndarray] = None
    value_estimate: Optional[float] = None

    @property
    def vector_action(self) -> Optional[np.ndarray]:
        """Whichever action vector the model produced"""
        if self.discrete_actions is not None:
            return self.discrete_actions
        return self.continuous_actions

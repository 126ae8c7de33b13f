"""
Basic usage example for the agent brain.

This script demonstrates how to:
1. Declare the agents' interface and export a matching model
2. Load the model into a brain and check its compatibility
3. Request decisions and read back the actions
"""

import numpy as np

from agent_brain import BrainParameters, InferenceBrain, PolicyModel, PolicyModelConfig
from agent_brain.inference import ActionSelection, AgentObservationRecord, BrainConfig, configure_logging


def main():
    """Run a basic example of the inference brain."""

    # Interface of the agents: one 8-wide observation, four discrete branches
    params = BrainParameters(
        observation_sizes=[8],
        vector_action_space_type="discrete",
        vector_action_size=[3, 2, 2, 4],
        brain_name="StrikerBrain"
    )

    # Untrained model with the same interface
    model = PolicyModel(PolicyModelConfig(
        observation_sizes=params.stacked_observation_sizes,
        action_sizes=params.vector_action_size
    ))

    config = BrainConfig(model_path=None, seed=7, action_selection=ActionSelection.SAMPLE)
    configure_logging(config.verbose)

    brain = InferenceBrain(params, config=config)

    try:
        report = brain.load_model(model.to_graph_bytes())
        print(f"Compatibility: {report}")

        rng = np.random.default_rng(0)
        for step in range(5):
            print(f"\n{'='*50}")
            print(f"Decision step {step + 1}")
            print(f"{'='*50}")

            for agent_id in ("striker_1", "striker_2", "goalie"):
                # The goalie may not move sideways (branch 1, action 1)
                mask = None
                if agent_id == "goalie":
                    mask = [[False] * 3, [False, True], [False] * 2, [False] * 4]
                brain.request_decision(AgentObservationRecord(
                    agent_id=agent_id,
                    observations=[rng.standard_normal(8)],
                    action_mask=mask
                ))

            actions = brain.decide_actions()
            for agent_id, action in actions.items():
                print(f"  {agent_id}: actions={action.discrete_actions.tolist()} "
                      f"value={action.value_estimate:.3f}")

        print(f"\nMetrics: {brain.metrics.get_summary()}")

    finally:
        # Always release the model
        brain.dispose()
        print("\nBrain disposed.")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Run an inference brain against randomly generated agents.

This script loads a model artifact, drives a batch of simulated agents for
a number of decision steps and reports the brain's performance metrics.

Usage:
    python run_brain.py --model model.pt --agents 16 --steps 1000
    python run_brain.py --model model.ckpt --backend portable --device gpu
    python run_brain.py --model model.pt --observation-sizes 8 --action-sizes 3 2 2 4

Environment variables can also be used:
    BRAIN_MODEL_PATH=model.pt BRAIN_BACKEND=graph python run_brain.py
"""

import argparse
import logging
import sys

import numpy as np

from agent_brain.inference import (
    ActionSpaceType,
    AgentObservationRecord,
    BrainConfig,
    BrainError,
    BrainParameters,
    InferenceBrain,
    configure_logging
)


def parse_args():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Run an inference brain with simulated agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    # Model arguments
    parser.add_argument(
        '--model', '--model-path',
        type=str,
        default=None,
        help='Path to model artifact (default: from BRAIN_MODEL_PATH env var)'
    )

    parser.add_argument(
        '--backend',
        choices=['graph', 'portable'],
        default=None,
        help='Execution backend (default: graph or BRAIN_BACKEND env var)'
    )

    parser.add_argument(
        '--device',
        choices=['cpu', 'gpu'],
        default=None,
        help='Execution device (default: cpu or BRAIN_DEVICE env var)'
    )

    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Seed of the inference random sources (default: 0 or BRAIN_SEED env var)'
    )

    parser.add_argument(
        '--selection',
        choices=['sample', 'argmax'],
        default=None,
        help='Discrete action selection (default: sample or ACTION_SELECTION env var)'
    )

    # Agent interface arguments
    parser.add_argument(
        '--observation-sizes',
        type=int,
        nargs='+',
        default=[8],
        help='Width of each observation group (default: 8)'
    )

    parser.add_argument(
        '--action-sizes',
        type=int,
        nargs='+',
        default=[3, 2, 2, 4],
        help='Discrete branch sizes, or the action width with --continuous'
    )

    parser.add_argument(
        '--continuous',
        action='store_true',
        help='Use a continuous action space'
    )

    parser.add_argument(
        '--memory-size',
        type=int,
        default=0,
        help='Recurrent state size per agent (default: 0)'
    )

    # Simulation arguments
    parser.add_argument(
        '--agents',
        type=int,
        default=8,
        help='Number of simulated agents (default: 8)'
    )

    parser.add_argument(
        '--steps',
        type=int,
        default=1000,
        help='Number of decision steps (default: 1000)'
    )

    parser.add_argument(
        '--done-probability',
        type=float,
        default=0.01,
        help='Chance that an agent ends its episode at each step (default: 0.01)'
    )

    # Performance arguments
    parser.add_argument(
        '--cpu-threads',
        type=int,
        default=None,
        help='Number of CPU threads to use (default: torch default or CPU_THREADS env var)'
    )

    parser.add_argument(
        '--warmup-steps',
        type=int,
        default=10,
        help='Model warmup steps (default: 10)'
    )

    # Monitoring arguments
    parser.add_argument(
        '--log-interval',
        type=int,
        default=None,
        help='Steps between summary logs (default: 1000)'
    )

    parser.add_argument(
        '--metrics-file',
        type=str,
        default=None,
        help='Save a metrics summary to this JSON file'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    return parser.parse_args()


def create_config_from_args(args) -> BrainConfig:
    """Create BrainConfig from command line arguments"""
    # Start with defaults (which will read from env vars)
    config = BrainConfig()

    # Override with command line arguments if provided
    if args.model:
        config.model_path = args.model

    if args.backend:
        config.backend = args.backend

    if args.device:
        config.device = args.device

    if args.seed is not None:
        config.seed = args.seed

    if args.selection:
        config.action_selection = args.selection

    if args.cpu_threads is not None:
        config.cpu_threads = args.cpu_threads

    if args.log_interval is not None:
        config.log_interval = args.log_interval

    if args.verbose:
        config.verbose = True

    config.validate()
    return config


def create_brain_parameters(args) -> BrainParameters:
    """Create the simulated agents' interface from command line arguments"""
    return BrainParameters(
        observation_sizes=args.observation_sizes,
        vector_action_space_type=(
            ActionSpaceType.CONTINUOUS if args.continuous else ActionSpaceType.DISCRETE
        ),
        vector_action_size=args.action_sizes,
        memory_size=args.memory_size,
        brain_name="SimulatedBrain"
    )


def simulate(brain: InferenceBrain, args, rng: np.random.Generator):
    """Drive the brain with random observations for `args.steps` steps"""
    sizes = brain.brain_parameters.stacked_observation_sizes

    for _ in range(args.steps):
        for agent_id in range(args.agents):
            brain.request_decision(AgentObservationRecord(
                agent_id=agent_id,
                observations=[rng.standard_normal(size).astype(np.float32) for size in sizes],
                reward=float(rng.standard_normal()),
                done=bool(rng.random() < args.done_probability)
            ))
        brain.step()


def main():
    """Main entry point"""
    # Parse arguments
    args = parse_args()

    # Create config
    try:
        config = create_config_from_args(args)
        brain_parameters = create_brain_parameters(args)
    except ValueError as e:
        print(f"Error creating configuration: {e}", file=sys.stderr)
        return 1

    if not config.model_path:
        print("No model given: use --model or BRAIN_MODEL_PATH", file=sys.stderr)
        return 1

    # Setup logging
    configure_logging(config.verbose, stream=sys.stdout)

    # Log configuration
    logger = logging.getLogger(__name__)
    logger.info("Starting inference brain")
    logger.info(f"Model: {config.model_path}")
    logger.info(f"Backend: {config.backend.value} on {config.device.value}")
    logger.info(f"Agents: {args.agents}, Steps: {args.steps}")

    brain = InferenceBrain(brain_parameters, config=config)
    try:
        brain.initialize()
        if not brain.is_ready:
            logger.error(f"Model cannot drive these agents:\n{brain.get_model_failed_checks()}")
            return 1

        if args.warmup_steps > 0:
            brain.model_handle.backend.warmup(args.warmup_steps)

        simulate(brain, args, np.random.default_rng(config.seed))

        summary = brain.metrics.get_summary()
        logger.info("Run complete:")
        for key, value in summary.items():
            logger.info(f"  {key}: {value}")

        if args.metrics_file:
            brain.metrics.save_to_file(args.metrics_file)
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except BrainError as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    finally:
        brain.dispose()


if __name__ == "__main__":
    sys.exit(main())

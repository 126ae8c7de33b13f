#!/usr/bin/env python3
"""
Build a policy model and export it in both artifact formats.

The exported artifacts have randomly initialized weights and are meant
for exercising a brain end to end (load, validate, decide) without a
trained model.

Usage:
    python export_model.py --output-dir models
    python export_model.py --observation-sizes 6 4 --action-sizes 3 --continuous
    python export_model.py --action-sizes 3 2 2 4 --memory-size 16 --use-previous-action
"""

import argparse
import logging
import os
import sys

import torch

from agent_brain.inference import configure_logging
from agent_brain.models import PolicyModel, PolicyModelConfig

logger = logging.getLogger(__name__)


def parse_args():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Export a policy model as graph and checkpoint artifacts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--output-dir', type=str, default='models',
                        help='Directory for the exported artifacts (default: models)')
    parser.add_argument('--name', type=str, default='policy',
                        help='Base file name of the artifacts (default: policy)')
    parser.add_argument('--observation-sizes', type=int, nargs='+', default=[8],
                        help='Width of each observation group, stacking included')
    parser.add_argument('--action-sizes', type=int, nargs='+', default=[3, 2, 2, 4],
                        help='Discrete branch sizes, or the action width with --continuous')
    parser.add_argument('--continuous', action='store_true',
                        help='Export a continuous-control model')
    parser.add_argument('--deterministic', action='store_true',
                        help='Continuous only: do not add noise from the epsilon input')
    parser.add_argument('--indices', action='store_true',
                        help='Discrete only: output one chosen index per branch')
    parser.add_argument('--memory-size', type=int, default=0,
                        help='Recurrent state size (default: 0)')
    parser.add_argument('--use-previous-action', action='store_true',
                        help='Feed the previous discrete action to the model')
    parser.add_argument('--no-action-masks', action='store_true',
                        help='Discrete only: do not declare an action mask input')
    parser.add_argument('--hidden-size', type=int, default=64,
                        help='Hidden layer size (default: 64)')
    parser.add_argument('--num-layers', type=int, default=2,
                        help='Number of hidden layers (default: 2)')
    parser.add_argument('--seed', type=int, default=0,
                        help='Seed for weight initialization (default: 0)')
    return parser.parse_args()


def main():
    """Main entry point"""
    args = parse_args()

    configure_logging()

    torch.manual_seed(args.seed)

    try:
        config = PolicyModelConfig(
            observation_sizes=args.observation_sizes,
            use_previous_action=args.use_previous_action,
            use_action_masks=not args.no_action_masks,
            action_sizes=args.action_sizes,
            is_continuous=args.continuous,
            stochastic=not args.deterministic,
            discrete_output="indices" if args.indices else "log_probs",
            hidden_size=args.hidden_size,
            num_layers=args.num_layers,
            memory_size=args.memory_size
        )
        model = PolicyModel(config)
    except ValueError as e:
        print(f"Error creating model: {e}", file=sys.stderr)
        return 1

    os.makedirs(args.output_dir, exist_ok=True)
    graph_path = os.path.join(args.output_dir, f"{args.name}.pt")
    checkpoint_path = os.path.join(args.output_dir, f"{args.name}.ckpt")

    model.save_graph(graph_path)
    model.save_checkpoint(checkpoint_path)

    logger.info(f"Model inputs: {[t['name'] for t in model.model_spec()['inputs']]}")
    logger.info(f"Load {graph_path} with the graph backend and {checkpoint_path} with the portable backend")
    return 0


if __name__ == "__main__":
    sys.exit(main())

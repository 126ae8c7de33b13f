"""
Neural network models for the inference brain.

This module contains the policy network used to produce model artifacts
for both execution backends.
"""

from .policy_model import (
    PolicyModel,
    PolicyModelConfig
)

__all__ = [
    'PolicyModel',
    'PolicyModelConfig'
]

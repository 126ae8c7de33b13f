"""
Policy network used to build model artifacts for the inference brain.

The network reads and writes tensors by their reserved names, so the
same module can be exported both as a TorchScript graph and as a torch
checkpoint and executed by either backend.
"""

import io
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import torch
import torch.nn as nn

from .. import tensor_names

logger = logging.getLogger(__name__)


@dataclass
class PolicyModelConfig:
    """Configuration for PolicyModel"""
    # Input dimensions
    observation_sizes: List[int] = field(default_factory=lambda: [8])
    use_previous_action: bool = False
    use_action_masks: bool = True

    # Output dimensions
    action_sizes: List[int] = field(default_factory=lambda: [2])  # Branch sizes, or [n] if continuous
    is_continuous: bool = False
    stochastic: bool = True  # Continuous only: add exp(log_std) * epsilon
    discrete_output: str = "log_probs"  # "log_probs" or "indices"

    # Architecture parameters
    hidden_size: int = 64
    num_layers: int = 2
    memory_size: int = 0
    activation: str = "relu"  # "relu", "gelu", "tanh"

    version_number: int = 2


class PolicyModel(nn.Module):
    """
    MLP policy with optional recurrent state.

    Architecture:
    1. Concatenation of all observation groups (and previous action)
    2. Observation normalization with stored running statistics
    3. Fully connected encoder
    4. Optional recurrent layer over [features, recurrent_in]
    5. Action head (per-branch log-probabilities or continuous actions)
       and value head
    """

    def __init__(self, config: PolicyModelConfig = None):
        super().__init__()
        self.config = config or PolicyModelConfig()
        config = self.config

        if config.discrete_output not in ("log_probs", "indices"):
            raise ValueError(f"Unknown discrete output kind: {config.discrete_output}")

        # Plain attributes read by forward()
        self.observation_names: List[str] = [
            tensor_names.observation_name(i) for i in range(len(config.observation_sizes))
        ]
        self.action_sizes: List[int] = [int(s) for s in config.action_sizes]
        self.is_continuous: bool = config.is_continuous
        self.use_memory: bool = config.memory_size > 0
        self.use_previous_action: bool = config.use_previous_action and not config.is_continuous
        self.use_action_masks: bool = config.use_action_masks and not config.is_continuous
        self.use_epsilon: bool = config.stochastic and config.is_continuous
        self.output_indices: bool = config.discrete_output == "indices"

        input_size = sum(config.observation_sizes)
        if self.use_previous_action:
            input_size += len(self.action_sizes)

        # Normalization statistics (identity until set_normalization is called)
        self.register_buffer('obs_mean', torch.zeros(input_size))
        self.register_buffer('obs_var', torch.ones(input_size))

        layers: List[nn.Module] = []
        current_size = input_size
        for _ in range(config.num_layers):
            layers.append(nn.Linear(current_size, config.hidden_size))
            layers.append(self._get_activation(config.activation))
            current_size = config.hidden_size
        self.encoder = nn.Sequential(*layers)

        if self.use_memory:
            self.memory_layer = nn.Linear(current_size + config.memory_size, config.memory_size)
            current_size = config.memory_size
        else:
            self.memory_layer = nn.Identity()

        action_width = self.action_sizes[0] if self.is_continuous else sum(self.action_sizes)
        self.action_head = nn.Linear(current_size, action_width)
        self.log_std = nn.Parameter(torch.zeros(1, action_width))
        self.value_head = nn.Linear(current_size, 1)

        self._initialize_weights()

        logger.info(f"PolicyModel initialized with {self._count_parameters()} parameters")

    def _get_activation(self, name: str) -> nn.Module:
        """Get activation function by name"""
        if name == "relu":
            return nn.ReLU()
        elif name == "gelu":
            return nn.GELU()
        elif name == "tanh":
            return nn.Tanh()
        else:
            return nn.ReLU()

    def _initialize_weights(self):
        """Initialize network weights"""
        for module in self.modules():
            if isinstance(module, nn.Linear):
                nn.init.orthogonal_(module.weight, gain=np.sqrt(2))
                nn.init.constant_(module.bias, 0)
        # Small action head for a near-uniform initial policy
        nn.init.orthogonal_(self.action_head.weight, gain=0.01)

    def _count_parameters(self) -> int:
        """Count total trainable parameters"""
        return sum(p.numel() for p in self.parameters() if p.requires_grad)

    def set_normalization(self, mean, var):
        """Store observation normalization statistics"""
        with torch.no_grad():
            self.obs_mean.copy_(torch.as_tensor(mean, dtype=torch.float32))
            self.obs_var.copy_(torch.as_tensor(var, dtype=torch.float32))

    def forward(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        """
        Forward pass through the model.

        Args:
            inputs: Input tensors by reserved name, each [batch, width]

        Returns:
            Output tensors by reserved name ("action", "value_estimate" and,
            with memory, "recurrent_out")
        """
        features: List[torch.Tensor] = []
        for name in self.observation_names:
            features.append(inputs[name])
        if self.use_previous_action:
            features.append(inputs["prev_action"])

        x = torch.cat(features, dim=1)
        x = (x - self.obs_mean) / torch.sqrt(self.obs_var + 1e-8)
        hidden = self.encoder(x)

        outputs: Dict[str, torch.Tensor] = {}

        if self.use_memory:
            hidden = torch.tanh(self.memory_layer(torch.cat([hidden, inputs["recurrent_in"]], dim=1)))
            outputs["recurrent_out"] = hidden

        outputs["value_estimate"] = self.value_head(hidden)

        if self.is_continuous:
            action = self.action_head(hidden)
            if self.use_epsilon:
                action = action + torch.exp(self.log_std) * inputs["epsilon"]
            outputs["action"] = action
            return outputs

        logits = self.action_head(hidden)
        if self.use_action_masks:
            logits = logits.masked_fill(inputs["action_masks"] > 0.5, -1.0e8)

        log_probs: List[torch.Tensor] = []
        indices: List[torch.Tensor] = []
        offset = 0
        for size in self.action_sizes:
            branch = logits[:, offset:offset + size]
            log_probs.append(torch.log_softmax(branch, dim=1))
            indices.append(torch.argmax(branch, dim=1, keepdim=True).to(logits.dtype))
            offset += size

        if self.output_indices:
            outputs["action"] = torch.cat(indices, dim=1)
        else:
            outputs["action"] = torch.cat(log_probs, dim=1)
        return outputs

    def model_spec(self) -> Dict[str, Any]:
        """
        Metadata describing the model's tensors.

        Returns:
            JSON-serializable dictionary stored with exported artifacts
        """
        config = self.config
        inputs = [
            {'name': name, 'shape': [-1, size]}
            for name, size in zip(self.observation_names, config.observation_sizes)
        ]
        if self.use_previous_action:
            inputs.append({'name': tensor_names.PREVIOUS_ACTION, 'shape': [-1, len(self.action_sizes)]})
        if self.use_action_masks:
            inputs.append({'name': tensor_names.ACTION_MASK, 'shape': [-1, sum(self.action_sizes)]})
        if self.use_memory:
            inputs.append({'name': tensor_names.RECURRENT_IN, 'shape': [-1, config.memory_size]})
        if self.use_epsilon:
            inputs.append({'name': tensor_names.EPSILON, 'shape': [-1, self.action_sizes[0]]})

        if self.is_continuous:
            action_width = self.action_sizes[0]
        elif self.output_indices:
            action_width = len(self.action_sizes)
        else:
            action_width = sum(self.action_sizes)

        outputs = [
            {'name': tensor_names.ACTION, 'shape': [-1, action_width]},
            {'name': tensor_names.VALUE_ESTIMATE, 'shape': [-1, 1]},
        ]
        if self.use_memory:
            outputs.append({'name': tensor_names.RECURRENT_OUT, 'shape': [-1, config.memory_size]})

        return {
            'version_number': config.version_number,
            'inputs': inputs,
            'outputs': outputs,
            'memory_size': config.memory_size,
            'is_continuous_control': config.is_continuous,
            'action_output_shape': list(self.action_sizes),
            'discrete_output': config.discrete_output,
        }

    def to_graph_bytes(self) -> bytes:
        """Serialize the model as a TorchScript graph with embedded metadata"""
        self.eval()
        scripted = torch.jit.script(self)
        buffer = io.BytesIO()
        torch.jit.save(
            scripted,
            buffer,
            _extra_files={tensor_names.MODEL_SPEC_FILE: json.dumps(self.model_spec())}
        )
        return buffer.getvalue()

    def to_checkpoint_bytes(self) -> bytes:
        """Serialize config, weights and metadata as a torch checkpoint"""
        buffer = io.BytesIO()
        torch.save({
            'config': asdict(self.config),
            'model_state_dict': self.state_dict(),
            'model_spec': self.model_spec(),
        }, buffer)
        return buffer.getvalue()

    def save_graph(self, path: str):
        """Save TorchScript artifact to file"""
        with open(path, 'wb') as f:
            f.write(self.to_graph_bytes())
        logger.info(f"Graph model saved to {path}")

    def save_checkpoint(self, path: str):
        """Save checkpoint artifact to file"""
        with open(path, 'wb') as f:
            f.write(self.to_checkpoint_bytes())
        logger.info(f"Checkpoint model saved to {path}")

    @classmethod
    def from_checkpoint(cls, checkpoint: Dict[str, Any],
                        device: Optional[str] = None) -> 'PolicyModel':
        """
        Rebuild a model from a loaded checkpoint dictionary.

        Args:
            checkpoint: Dictionary produced by to_checkpoint_bytes
            device: Device to move the model to

        Returns:
            PolicyModel with the checkpoint's weights
        """
        config = PolicyModelConfig(**checkpoint['config'])
        model = cls(config)
        model.load_state_dict(checkpoint['model_state_dict'])
        if device is not None:
            model.to(device)
        return model

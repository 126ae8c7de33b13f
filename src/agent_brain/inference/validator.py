"""
Compatibility checks between a loaded model and the agent interface.

Every mismatch is collected into a CompatibilityReport so that a caller
sees all of them at once; nothing here raises.
"""

import logging
from typing import Iterator, List, Optional

from .. import tensor_names
from .brain_parameters import BrainParameters
from .tensors import ModelSpec, TensorRole, TensorSpec

logger = logging.getLogger(__name__)


class CompatibilityReport:
    """Human-readable list of failed compatibility checks"""

    def __init__(self, failures: Optional[List[str]] = None):
        self.failures: List[str] = list(failures or [])

    def add(self, message: str):
        self.failures.append(message)

    def is_empty(self) -> bool:
        return not self.failures

    def mentions(self, name: str) -> bool:
        """Check whether any failure names `name`"""
        return any(name in failure for failure in self.failures)

    def __len__(self) -> int:
        return len(self.failures)

    def __iter__(self) -> Iterator[str]:
        return iter(self.failures)

    def __bool__(self) -> bool:
        return bool(self.failures)

    def __str__(self) -> str:
        if not self.failures:
            return "Model is compatible"
        return "\n".join(f"  - {failure}" for failure in self.failures)


class ModelParameterValidator:
    """
    Validates a model's declared tensors against BrainParameters.

    Checks:
    - Model version and control type
    - Presence of every required input and support for every declared input
    - Non-batch shape of every input
    - Action, recurrent and value outputs
    """

    def validate(self,
                 model_spec: Optional[ModelSpec],
                 brain_parameters: BrainParameters) -> CompatibilityReport:
        """
        Validate a model against the agent interface.

        Args:
            model_spec: Metadata of the loaded model (None if no model is loaded)
            brain_parameters: Declared agent interface

        Returns:
            Report with one entry per mismatch
        """
        report = CompatibilityReport()

        if model_spec is None:
            report.add("There is no model loaded for this brain")
            return report

        if model_spec.version_number not in tensor_names.SUPPORTED_VERSIONS:
            report.add(
                f"Version of the trainer the model was trained with "
                f"({model_spec.version_number}) is not compatible with the brain; "
                f"supported versions: {list(tensor_names.SUPPORTED_VERSIONS)}"
            )

        self._check_control_type(model_spec, brain_parameters, report)
        self._check_memory_size(model_spec, brain_parameters, report)
        self._check_missing_inputs(model_spec, brain_parameters, report)
        self._check_input_shapes(model_spec, brain_parameters, report)
        self._check_outputs(model_spec, brain_parameters, report)

        if report.is_empty():
            logger.debug("Model passed all compatibility checks")
        return report

    def _check_control_type(self, model_spec: ModelSpec, params: BrainParameters,
                            report: CompatibilityReport):
        if model_spec.is_continuous_control != params.is_continuous:
            expected = "continuous" if params.is_continuous else "discrete"
            actual = "continuous" if model_spec.is_continuous_control else "discrete"
            report.add(
                f"Action space type mismatch: the brain expects {expected} control "
                f"but the model uses {actual} control"
            )

    def _check_memory_size(self, model_spec: ModelSpec, params: BrainParameters,
                           report: CompatibilityReport):
        if model_spec.memory_size != params.memory_size:
            report.add(
                f"Memory size mismatch: the brain expects {params.memory_size} "
                f"but the model declares {model_spec.memory_size}"
            )

    def _check_missing_inputs(self, model_spec: ModelSpec, params: BrainParameters,
                              report: CompatibilityReport):
        declared = set(model_spec.input_names)

        for index in range(len(params.observation_sizes)):
            name = tensor_names.observation_name(index)
            if name not in declared:
                report.add(
                    f"The model does not contain the observation input '{name}' "
                    f"for observation group {index}"
                )

        if params.memory_size > 0 and tensor_names.RECURRENT_IN not in declared:
            report.add(
                f"The model does not contain the recurrent input '{tensor_names.RECURRENT_IN}' "
                f"but the brain declares a memory size of {params.memory_size}"
            )

    def _check_input_shapes(self, model_spec: ModelSpec, params: BrainParameters,
                            report: CompatibilityReport):
        stacked_sizes = params.stacked_observation_sizes

        for spec in model_spec.inputs:
            if spec.role == TensorRole.OBSERVATION:
                index = tensor_names.observation_index(spec.name)
                if index >= len(stacked_sizes):
                    report.add(
                        f"The model input '{spec.name}' has no matching observation group; "
                        f"the brain declares {len(stacked_sizes)} group(s)"
                    )
                    continue
                self._check_width(spec, stacked_sizes[index], "observation size", report)

            elif spec.role == TensorRole.ACTION_MASK:
                if params.is_continuous:
                    report.add(f"The model input '{spec.name}' requires discrete control")
                else:
                    self._check_width(spec, params.total_discrete_actions,
                                      "total number of discrete actions", report)

            elif spec.role == TensorRole.PREVIOUS_ACTION:
                if params.is_continuous:
                    report.add(f"The model input '{spec.name}' requires discrete control")
                else:
                    self._check_width(spec, params.num_branches,
                                      "number of action branches", report)

            elif spec.role == TensorRole.EPSILON:
                if not params.is_continuous:
                    report.add(f"The model input '{spec.name}' requires continuous control")
                else:
                    self._check_width(spec, params.continuous_size,
                                      "continuous action size", report)

            elif spec.role == TensorRole.RECURRENT_IN:
                self._check_width(spec, params.memory_size, "memory size", report)

            else:
                report.add(f"The model input '{spec.name}' is not supported by the brain")

    def _check_width(self, spec: TensorSpec, expected: int, what: str,
                     report: CompatibilityReport):
        if spec.feature_shape != (expected,):
            report.add(
                f"Shape of the model input '{spec.name}' does not match: the brain expects "
                f"a {what} of {expected} but the model declares {list(spec.feature_shape)}"
            )

    def _check_outputs(self, model_spec: ModelSpec, params: BrainParameters,
                       report: CompatibilityReport):
        action = model_spec.get_output(tensor_names.ACTION)
        if action is None:
            report.add(f"The model does not contain the action output '{tensor_names.ACTION}'")
        elif params.is_continuous:
            if action.feature_shape != (params.continuous_size,):
                report.add(
                    f"Action size of the model does not match: the brain expects "
                    f"{params.continuous_size} but the model contains {list(action.feature_shape)}"
                )
        else:
            if model_spec.discrete_output == "indices":
                expected_width = params.num_branches
            elif model_spec.discrete_output == "log_probs":
                expected_width = params.total_discrete_actions
            else:
                expected_width = None
                report.add(f"Unknown discrete output kind '{model_spec.discrete_output}'")

            if expected_width is not None and action.feature_shape != (expected_width,):
                report.add(
                    f"Action size of the model does not match: the brain expects an action "
                    f"output of width {expected_width} but the model contains "
                    f"{list(action.feature_shape)}"
                )

        # Branch sizes are only comparable when the control types agree
        if (model_spec.is_continuous_control == params.is_continuous and
                list(model_spec.action_output_shape) != list(params.vector_action_size)):
            report.add(
                f"Action branch sizes do not match: the brain expects "
                f"{params.vector_action_size} but the model declares "
                f"{model_spec.action_output_shape}"
            )

        if params.memory_size > 0:
            recurrent = model_spec.get_output(tensor_names.RECURRENT_OUT)
            if recurrent is None:
                report.add(
                    f"The model does not contain the recurrent output "
                    f"'{tensor_names.RECURRENT_OUT}'"
                )
            elif recurrent.feature_shape != (params.memory_size,):
                report.add(
                    f"Shape of the model output '{recurrent.name}' does not match: the brain "
                    f"expects a memory size of {params.memory_size} but the model declares "
                    f"{list(recurrent.feature_shape)}"
                )

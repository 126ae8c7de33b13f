"""
Inference brain that decides actions for batches of agents.

This module provides the InferenceBrain class that orchestrates the
complete decision pipeline: buffering agent requests, generating input
tensors, running the execution backend and applying the outputs.
"""

import logging
import time
import weakref
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, TextIO

import numpy as np

from .allocator import TensorCachingAllocator
from .applier import TensorApplier
from .backends import ModelHandle, create_backend
from .brain_parameters import BrainParameters
from .config import BackendType, BrainConfig, InferenceDevice
from .errors import ExecutionError, LoadError
from .generator import TensorGenerator
from .metrics import BrainMetrics
from .records import ActionRecord, AgentObservationRecord
from .validator import CompatibilityReport, ModelParameterValidator

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class BrainState(Enum):
    """Lifecycle state of an InferenceBrain"""
    UNLOADED = "unloaded"  # No model
    LOADED = "loaded"      # Model loaded but failed compatibility checks
    READY = "ready"        # Model loaded and compatible, inference enabled


class InferenceBrain:
    """
    Decides actions for all agents that requested a decision in a step.

    The host loop calls `request_decision` once per agent needing an action,
    then `decide_actions` once; every buffered agent is processed in a single
    backend invocation.

    State machine:
    - UNLOADED -> LOADED on load_model, then LOADED -> READY if the model
      passes validation (validation runs once per load)
    - any state -> UNLOADED on reload or dispose
    """

    def __init__(self,
                 brain_parameters: BrainParameters,
                 config: Optional[BrainConfig] = None,
                 name: Optional[str] = None):
        """
        Initialize inference brain.

        Args:
            brain_parameters: Declared agent interface
            config: Brain configuration (defaults from environment if None)
            name: Brain name used in logs (defaults to brain_parameters.brain_name)
        """
        self.brain_parameters = brain_parameters
        self.config = config or BrainConfig()
        self.name = name or brain_parameters.brain_name

        self.allocator = TensorCachingAllocator(max_bytes=self.config.max_allocator_bytes)
        self.validator = ModelParameterValidator()
        self.metrics = BrainMetrics()

        # Model state
        self._state = BrainState.UNLOADED
        self._handle: Optional[ModelHandle] = None
        self._report = self.validator.validate(None, brain_parameters)
        self._generator: Optional[TensorGenerator] = None
        self._applier: Optional[TensorApplier] = None

        # Pending requests, keyed by agent id in request order
        self._buffer: Dict[Hashable, AgentObservationRecord] = {}

        # Values produced for each agent in its previous decision step
        self._memories: Dict[Hashable, np.ndarray] = {}
        self._previous_actions: Dict[Hashable, np.ndarray] = {}
        self._last_seen: Dict[Hashable, int] = {}
        self._decision_step = 0

        # Arrays the brain has placed on agent records, by id. A record carried
        # into a later step holds one of these; it is not caller-supplied state.
        self._issued: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

        self._is_controlled = False

        logger.info(f"Inference brain '{self.name}' initialized")

    # --- Properties ---

    @property
    def state(self) -> BrainState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == BrainState.READY

    @property
    def model_handle(self) -> Optional[ModelHandle]:
        return self._handle

    @property
    def pending_count(self) -> int:
        """Number of agents waiting for a decision"""
        return len(self._buffer)

    @property
    def is_controlled_externally(self) -> bool:
        return self._is_controlled

    # --- Model lifecycle ---

    def load_model(self,
                   model_bytes: bytes,
                   device: Optional[InferenceDevice] = None,
                   backend: Optional[BackendType] = None,
                   seed: Optional[int] = None) -> CompatibilityReport:
        """
        Load (or reload) the model used to decide actions.

        The previous model is released first. If the new model fails the
        compatibility checks, the brain stays LOADED and refuses to run
        inference until a compatible model is loaded.

        Args:
            model_bytes: Serialized model in the backend's format
            device: Execution device (defaults to config.device)
            backend: Backend variant (defaults to config.backend)
            seed: Seed of the random sources used during inference
                (defaults to config.seed)

        Returns:
            Compatibility report of the loaded model

        Raises:
            LoadError: If the model cannot be loaded; the brain stays UNLOADED
        """
        device = InferenceDevice(device) if device is not None else self.config.device
        backend_type = BackendType(backend) if backend is not None else self.config.backend
        seed = self.config.seed if seed is None else seed

        self._unload()

        logger.info(
            f"Loading model for brain '{self.name}' "
            f"(backend: {backend_type.value}, device: {device.value}, seed: {seed})"
        )

        engine = create_backend(backend_type, device, num_threads=self.config.cpu_threads)
        try:
            model_spec = engine.load(model_bytes)
        except LoadError:
            logger.error(f"Brain '{self.name}' failed to load its model and stays unloaded")
            raise

        self._handle = ModelHandle(
            backend=engine,
            model_spec=model_spec,
            backend_type=backend_type,
            device=device
        )
        self._state = BrainState.LOADED
        self.metrics.log_model_load()

        self._report = self.validator.validate(model_spec, self.brain_parameters)
        if not self._report.is_empty():
            logger.error(
                f"Model is not compatible with brain '{self.name}', inference disabled:\n"
                f"{self._report}"
            )
            return self._report

        self._generator = TensorGenerator(self.brain_parameters, seed=seed, allocator=self.allocator)
        self._applier = TensorApplier.for_model(
            self.brain_parameters, model_spec, seed=seed, selection=self.config.action_selection
        )
        self._state = BrainState.READY

        logger.info(f"Brain '{self.name}' is ready")
        return self._report

    def load_model_from_file(self, model_path: str, **kwargs) -> CompatibilityReport:
        """Load a model artifact from disk (see load_model)"""
        with open(model_path, 'rb') as f:
            model_bytes = f.read()
        logger.info(f"Read {len(model_bytes)} bytes from {model_path}")
        return self.load_model(model_bytes, **kwargs)

    def get_model_failed_checks(self) -> CompatibilityReport:
        """
        Get the failed compatibility checks of the current model.

        This does not reload the model; the report reflects the last load.
        """
        return self._report

    def _unload(self):
        """Release the current model and every value derived from it"""
        if self._handle is not None:
            self._handle.release()
            logger.info(f"Released previous model of brain '{self.name}'")

        self._handle = None
        self._generator = None
        self._applier = None
        self._report = self.validator.validate(None, self.brain_parameters)
        self._forget_all()
        self.allocator.reset(keep_buffers=True)
        self._state = BrainState.UNLOADED

    # --- Decisions ---

    def set_controlled_externally(self, controlled: bool = True):
        """
        When controlled externally, the brain does not use the model to
        decide on actions; decision requests are dropped at every step.
        """
        self._is_controlled = controlled
        logger.info(f"Brain '{self.name}' externally controlled: {controlled}")

    def request_decision(self, record: AgentObservationRecord):
        """
        Buffer a decision request for the next `decide_actions` call.

        A second request from the same agent within one step replaces the first.
        """
        if record.agent_id in self._buffer:
            logger.warning(
                f"Agent {record.agent_id} requested a decision twice in one step; "
                f"keeping the latest request"
            )
        self._buffer[record.agent_id] = record

    def decide_actions(self) -> Dict[Hashable, ActionRecord]:
        """
        Decide actions for every buffered agent in one backend invocation.

        Postcondition: the request buffer is empty and every tensor generated
        during the step has been released, whatever the outcome.

        Returns:
            Action records keyed by agent id, in request order. Empty if no
            agent requested a decision, the brain is externally controlled,
            or the brain is not ready.

        Raises:
            ExecutionError: If the forward pass fails; no agent receives an action
        """
        if not self._buffer:
            return {}

        records = list(self._buffer.values())
        self._buffer = {}

        try:
            if self._is_controlled:
                self.metrics.log_skipped('controlled')
                return {}

            if self._state != BrainState.READY:
                if self._handle is None:
                    logger.error(f"No model was present for the brain '{self.name}'")
                else:
                    logger.error(
                        f"Brain '{self.name}' cannot run inference with an incompatible model:\n"
                        f"{self._report}"
                    )
                self.metrics.log_skipped('not_ready')
                return {}

            return self._run_inference(records)

        finally:
            self.allocator.reset(keep_buffers=True)

    def _run_inference(self, records: List[AgentObservationRecord]) -> Dict[Hashable, ActionRecord]:
        """Run generator, backend and applier for one batch"""
        self._fill_from_previous_step(records)

        start_time = time.time()
        inputs = self._generator.generate(self._handle.backend.declared_inputs(), records)
        generated_time = time.time()

        try:
            outputs = self._handle.backend.run(inputs)
        except ExecutionError:
            self.metrics.log_error()
            logger.error(
                f"Decision step of brain '{self.name}' skipped for {len(records)} agent(s)"
            )
            raise
        executed_time = time.time()

        actions = self._applier.apply(outputs, records)
        applied_time = time.time()

        self._remember(records, actions)

        self.metrics.log_step(
            batch_size=len(records),
            generate_latency=generated_time - start_time,
            execute_latency=executed_time - generated_time,
            apply_latency=applied_time - executed_time
        )
        self.metrics.log_summary(step_interval=self.config.log_interval)

        if self.config.verbose:
            logger.debug(
                f"Brain '{self.name}' decided for {len(records)} agent(s) in "
                f"{(applied_time - start_time)*1000:.2f}ms"
            )

        return {action.agent_id: action for action in actions}

    def _fill_from_previous_step(self, records: List[AgentObservationRecord]):
        """
        Fill recurrent state and previous action from the last step.

        Values the caller put on a record are used as given. Values the brain
        itself wrote onto a record in an earlier step are replaced by the
        brain's current state for that agent, which is None once the agent
        was forgotten (done, reset or reload).
        """
        for record in records:
            record.memory = self._carried(record.memory, self._memories.get(record.agent_id))
            record.previous_action = self._carried(
                record.previous_action, self._previous_actions.get(record.agent_id)
            )

    def _carried(self, value: Any, remembered: Optional[np.ndarray]) -> Any:
        if value is not None and self._issued.get(id(value)) is not value:
            return value
        return remembered

    def _issue(self, value: Optional[np.ndarray]):
        if value is not None:
            self._issued[id(value)] = value

    def _remember(self, records: List[AgentObservationRecord], actions: List[ActionRecord]):
        self._decision_step += 1

        for record, action in zip(records, actions):
            # The applier wrote action.memory onto the record as well
            self._issue(action.memory)
            self._issue(action.discrete_actions)
            self._last_seen[record.agent_id] = self._decision_step

            if record.done:
                # Episode over: the next decision starts from a blank state
                self._forget(record.agent_id)
                continue
            if action.memory is not None:
                self._memories[record.agent_id] = action.memory
            if action.discrete_actions is not None:
                self._previous_actions[record.agent_id] = action.discrete_actions

        ttl = self.config.agent_state_ttl
        if ttl > 0:
            expired = [
                agent_id for agent_id, seen in self._last_seen.items()
                if self._decision_step - seen >= ttl
            ]
            for agent_id in expired:
                self._forget(agent_id)
            if expired:
                logger.debug(f"Brain '{self.name}' forgot {len(expired)} inactive agent(s)")

    def _forget(self, agent_id: Hashable):
        self._memories.pop(agent_id, None)
        self._previous_actions.pop(agent_id, None)
        self._last_seen.pop(agent_id, None)

    def _forget_all(self):
        self._memories.clear()
        self._previous_actions.clear()
        self._last_seen.clear()

    # --- Host loop entry points ---

    def initialize(self):
        """Load the model configured in config.model_path, if any"""
        if self.config.model_path:
            self.load_model_from_file(self.config.model_path)
        else:
            logger.warning(f"No model path configured for brain '{self.name}'")

    def step(self) -> Dict[Hashable, ActionRecord]:
        """Run one decision step (see decide_actions)"""
        return self.decide_actions()

    def reset(self):
        """Drop pending requests and every agent's recurrent state"""
        self._buffer.clear()
        self._forget_all()
        logger.debug(f"Brain '{self.name}' reset")

    def dispose(self):
        """Release the model and all allocator memory"""
        self._unload()
        self._buffer.clear()
        self.allocator.reset(keep_buffers=False)
        logger.info(f"Brain '{self.name}' disposed")


def configure_logging(verbose: bool = False, stream: Optional[TextIO] = None):
    """
    Setup logging for scripts hosting a brain.

    Args:
        verbose: Log at DEBUG instead of INFO
        stream: Stream to log to (defaults to stderr)
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(stream)]
    )

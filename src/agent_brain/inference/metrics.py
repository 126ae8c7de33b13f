"""
Metrics tracking for the inference brain.

This module provides lightweight metrics collection for decision steps:
batch sizes, per-phase latencies, skipped steps and execution errors.
"""

import json
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass
class StepMetrics:
    """Metrics for a single decision step"""
    step_id: int
    batch_size: int
    generate_latency: float
    execute_latency: float
    apply_latency: float

    @property
    def total_latency(self) -> float:
        return self.generate_latency + self.execute_latency + self.apply_latency

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'step_id': self.step_id,
            'batch_size': self.batch_size,
            'generate_latency_ms': round(self.generate_latency * 1000, 3),
            'execute_latency_ms': round(self.execute_latency * 1000, 3),
            'apply_latency_ms': round(self.apply_latency * 1000, 3),
            'total_latency_ms': round(self.total_latency * 1000, 3)
        }


class BrainMetrics:
    """
    Lightweight metrics tracker for an inference brain.

    Keeps aggregate counters plus a rolling window of recent steps.
    """

    def __init__(self, window_size: int = 1000):
        """
        Initialize metrics tracker.

        Args:
            window_size: Size of rolling window for recent steps
        """
        self.window_size = window_size

        # Aggregate counters
        self.total_steps = 0
        self.total_decisions = 0
        self.execution_errors = 0
        self.skipped_steps: Dict[str, int] = defaultdict(int)
        self.model_loads = 0

        # Rolling window of recent steps
        self.recent_steps: deque = deque(maxlen=window_size)
        self.step_times: deque = deque(maxlen=window_size)

    def log_step(self,
                 batch_size: int,
                 generate_latency: float,
                 execute_latency: float,
                 apply_latency: float) -> StepMetrics:
        """
        Log metrics for a completed decision step.

        Args:
            batch_size: Number of agents decided for
            generate_latency: Time spent building input tensors (seconds)
            execute_latency: Time spent in the backend forward pass (seconds)
            apply_latency: Time spent applying output tensors (seconds)

        Returns:
            Metrics of the step
        """
        self.total_steps += 1
        self.total_decisions += batch_size

        step = StepMetrics(
            step_id=self.total_steps,
            batch_size=batch_size,
            generate_latency=generate_latency,
            execute_latency=execute_latency,
            apply_latency=apply_latency
        )
        self.recent_steps.append(step)
        self.step_times.append(time.time())
        return step

    def log_skipped(self, reason: str):
        """Log a decision step that did not run inference"""
        self.skipped_steps[reason] += 1

    def log_error(self):
        """Log a decision step aborted by an execution error"""
        self.execution_errors += 1

    def log_model_load(self):
        self.model_loads += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""
        if self.total_steps == 0:
            return {
                'total_steps': 0,
                'execution_errors': self.execution_errors,
                'skipped_steps': dict(self.skipped_steps),
                'status': 'No decision steps completed yet'
            }

        recent = list(self.recent_steps)
        latencies = [step.total_latency for step in recent]
        execute = [step.execute_latency for step in recent]
        batch_sizes = [step.batch_size for step in recent]

        return {
            'total_steps': self.total_steps,
            'total_decisions': self.total_decisions,
            'execution_errors': self.execution_errors,
            'skipped_steps': dict(self.skipped_steps),
            'model_loads': self.model_loads,
            'avg_batch_size': round(sum(batch_sizes) / len(batch_sizes), 2),
            'max_batch_size': max(batch_sizes),
            'avg_step_latency_ms': round(sum(latencies) / len(latencies) * 1000, 3),
            'max_step_latency_ms': round(max(latencies) * 1000, 3),
            'avg_execute_latency_ms': round(sum(execute) / len(execute) * 1000, 3),
            'steps_per_second': round(self._calculate_rate(), 1)
        }

    def _calculate_rate(self) -> float:
        """Calculate decision steps per second over recent steps"""
        recent_times = list(self.step_times)[-20:]  # Last 20 steps
        if len(recent_times) < 2:
            return 0.0

        time_span = recent_times[-1] - recent_times[0]
        if time_span > 0:
            return (len(recent_times) - 1) / time_span
        return 0.0

    def log_summary(self, step_interval: int = 1000):
        """Log summary metrics every `step_interval` steps"""
        if self.total_steps % step_interval == 0 and self.total_steps > 0:
            summary = self.get_summary()
            logger.info(f"[Step {self.total_steps}] Brain Metrics Summary:")
            logger.info(f"  Decisions: {summary['total_decisions']}")
            logger.info(f"  Avg Batch Size: {summary['avg_batch_size']}")
            logger.info(f"  Avg Step Latency: {summary['avg_step_latency_ms']}ms")
            logger.info(f"  Avg Execute Latency: {summary['avg_execute_latency_ms']}ms")
            if summary['execution_errors']:
                logger.info(f"  Execution Errors: {summary['execution_errors']}")

    def save_to_file(self, filepath: str):
        """Save metrics summary to JSON file"""
        summary = self.get_summary()

        if self.recent_steps:
            summary['recent_steps'] = [step.to_dict() for step in self.recent_steps][-10:]

        with open(filepath, 'w') as f:
            json.dump(summary, f, indent=2)

        logger.info(f"Metrics saved to {filepath}")

"""
Reserved tensor names shared by model artifacts and the brain.

Models declare their inputs and outputs by name; the brain derives each
tensor's role from these names.
"""

VECTOR_OBSERVATION = "vector_observation"
ACTION_MASK = "action_masks"
RECURRENT_IN = "recurrent_in"
PREVIOUS_ACTION = "prev_action"
EPSILON = "epsilon"

ACTION = "action"
RECURRENT_OUT = "recurrent_out"
VALUE_ESTIMATE = "value_estimate"

# Metadata file stored alongside the weights in both artifact formats
MODEL_SPEC_FILE = "model_spec.json"

SUPPORTED_VERSIONS = (2,)


def observation_name(index: int) -> str:
    """Name of the input tensor for observation group `index`"""
    if index == 0:
        return VECTOR_OBSERVATION
    return f"{VECTOR_OBSERVATION}_{index}"


def observation_index(name: str) -> int:
    """
    Inverse of observation_name.

    Returns:
        Group index, or -1 if `name` is not an observation tensor name
    """
    if name == VECTOR_OBSERVATION:
        return 0
    prefix = VECTOR_OBSERVATION + "_"
    if name.startswith(prefix) and name[len(prefix):].isdigit():
        index = int(name[len(prefix):])
        return index if index > 0 else -1
    return -1

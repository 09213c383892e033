"""Core workflow: result decoding and the end-to-end transaction driver."""

from ekacare_scribe.core.decoder import DecodedOutput, decode_output, decode_outputs, decode_value
from ekacare_scribe.core.workflow import WorkflowOptions, WorkflowResult, run_workflow

__all__ = [
    "DecodedOutput",
    "WorkflowOptions",
    "WorkflowResult",
    "decode_output",
    "decode_outputs",
    "decode_value",
    "run_workflow",
]

"""Step execution backends."""

from artifact_pipeline.backend.base import AgentBackend, DispatchOutcome, DispatchRequest
from artifact_pipeline.backend.inline import InlineCommandBackend
from artifact_pipeline.backend.process import DetachedProcessBackend
from artifact_pipeline.backend.session import InteractiveSessionBackend
from artifact_pipeline.backend.tmux import TmuxClient

__all__ = [
    "AgentBackend",
    "DetachedProcessBackend",
    "DispatchOutcome",
    "DispatchRequest",
    "InlineCommandBackend",
    "InteractiveSessionBackend",
    "TmuxClient",
]

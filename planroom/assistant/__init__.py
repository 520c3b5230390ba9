"""
Personal assistant turn execution.

An assistant takes a turn by talking to the reasoning engine through
AgentCallAdapter, which runs the capability loop and normalizes the
finalize payload into an AgentTurnResult.
"""

from planroom.assistant.adapter import AgentCallAdapter
from planroom.assistant.engine import (
    EngineRequest,
    EngineResponse,
    OpenAIReasoningEngine,
    ReasoningEngine,
)
from planroom.assistant.prompts.builders import PromptContext

__all__ = [
    "AgentCallAdapter",
    "EngineRequest",
    "EngineResponse",
    "OpenAIReasoningEngine",
    "ReasoningEngine",
    "PromptContext",
]

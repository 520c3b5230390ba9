"""Prompt templates and builders for the planning assistants."""

from planroom.assistant.prompts.templates import (
    AssistantPromptConfig,
    ASSISTANT_SYSTEM_PROMPT_TEMPLATE,
    FINALIZE_TOOL_NAME,
)
from planroom.assistant.prompts.builders import (
    PromptContext,
    build_finalize_tool_schema,
    build_system_prompt,
    format_conversation,
)

__all__ = [
    "AssistantPromptConfig",
    "ASSISTANT_SYSTEM_PROMPT_TEMPLATE",
    "FINALIZE_TOOL_NAME",
    "PromptContext",
    "build_finalize_tool_schema",
    "build_system_prompt",
    "format_conversation",
]

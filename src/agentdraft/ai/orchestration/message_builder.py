"""Message construction for agent turns."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping, Sequence

from ..agents.types import VIEW_MODES, AgentDefinition, ExecutionContext
from ..ai_types import ToolDescriptor
from .errors import ConfigurationError
from .types import Message, ToolCallResult

__all__ = [
    "HISTORY_START_MARKER",
    "HISTORY_END_MARKER",
    "MessageBuilder",
    "interpolate_template",
    "target_mode_for",
]

LOGGER = logging.getLogger(__name__)

HISTORY_START_MARKER = "--- PREVIOUS CONVERSATION HISTORY (FOR CONTEXT ONLY) ---"
HISTORY_END_MARKER = "--- END OF PREVIOUS HISTORY. THE FOLLOWING IS THE CURRENT REQUEST. ---"

_TEMPLATE_VAR_RE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")
_HISTORY_ROLES = {"user", "assistant", "system"}

_DEFAULT_SYSTEM_PROMPT = """You are a helpful content assistant. You must respond with valid JSON only in this format:
{
  "post": {
    "title": "Updated title"
  }
}

Only include fields that you are actually changing. NEVER leave module copy fields with their default "Lorem Ipsum" values; always replace them with high-quality, relevant content."""

_DEBUG_INSTRUCTIONS = (
    '\n\nDEBUG MODE ENABLED: Please include a "determination" field in your JSON responses '
    "explaining your reasoning, what you gathered from context/tools, and why you are taking "
    "the next steps."
)

_HISTORY_INSTRUCTIONS = (
    "\n\nNOTE: Conversation history is provided above. Treat each user request as the primary "
    'directive. If the current request represents a "new task" or a significant departure from '
    "previous turns, prioritize the new instructions and do not let previous context restrict the "
    "scope of the current request unless explicitly asked to do so."
)

_FORMAT_INSTRUCTIONS = """

IMPORTANT: You must respond with a JSON object. If you need to use tools, include a "tool_calls" array. If you are providing a final response, include a "summary".{extra}

Format for tool calls:
{{
  "determination": "...",
  "tool_calls": [
    {{ "tool": "tool_name", "params": {{ "key": "value", "mode": "{mode}" }} }}
  ]
}}

Format for final response:
{{
  "determination": "...",
  "summary": "A brief natural language description of what you've done",
  "post": {{ "title": "..." }},
  "modules": [ {{ "type": "...", "props": {{ "...": "..." }} }} ]
}}

Only include fields/modules that you are actually changing. Do not include any text outside the JSON object."""

_NEXT_STEP_GUIDANCE = (
    'Analyze the results above. If you need more tools to complete the user\'s request, include a '
    '"tool_calls" array. If the task is finished, provide your final response with a "summary". '
    "RESPOND IN JSON FORMAT."
)

_CREATION_GUIDANCE = """IMPORTANT: Post/Translation created (ID: {post_id}). To fulfill the user's request, you MUST now:
1. Use get_post_context(postId: "{post_id}") to see the seeded or cloned modules and their current IDs.
2. For each module or field that needs content:
   - Use update_post_module_ai_review with the specific postModuleId and overrides.
   - Use save_post_ai_review for post-level fields like title and excerpt.
3. Once all translations/edits are finished, provide a final response with "redirectPostId": "{post_id}" so the user can be taken to the new version.

RESPOND WITH YOUR NEXT TOOL CALLS IN JSON FORMAT."""

_BANNER = "=" * 72


def target_mode_for(context: ExecutionContext) -> str:
    """Tier that tools should write to: the edited view for field scope, else ``ai-review``."""

    if context.scope != "field":
        return "ai-review"
    mode = context.view_mode or "source"
    if mode not in VIEW_MODES:
        raise ConfigurationError(
            f"Unknown view mode: {mode}",
            details={"view_mode": mode, "supported": list(VIEW_MODES)},
        )
    return mode


def interpolate_template(template: str, variables: Mapping[str, Any]) -> str:
    """Replace ``{{name}}`` / ``{{a.b}}`` with values; unknown names stay verbatim."""

    def replace(match: re.Match[str]) -> str:
        value: Any = variables
        for part in match.group(1).split("."):
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                return match.group(0)
        if value is None:
            return match.group(0)
        if isinstance(value, (Mapping, list)):
            return json.dumps(value, ensure_ascii=False)
        return str(value)

    return _TEMPLATE_VAR_RE.sub(replace, template)


class MessageBuilder:
    """Builds the initial message list and the per-turn follow-up prompts.

    Args:
        tools: Tool descriptors advertised to agents that use tools.
        debug: Ask the model for a ``determination`` field.
    """

    def __init__(self, tools: Sequence[ToolDescriptor] = (), *, debug: bool = False) -> None:
        self._tools = tuple(tools)
        self._debug = debug

    def build_messages(
        self,
        agent: AgentDefinition,
        context: ExecutionContext,
        payload: Mapping[str, Any],
    ) -> list[Message]:
        messages = [Message.system(self.build_system_prompt(agent, context, payload))]
        messages.extend(self.build_history(context))
        messages.append(Message.user(self.build_user_message(agent, context, payload)))
        LOGGER.debug(
            "Built %s message(s) for agent %s (scope=%s)", len(messages), agent.id, context.scope
        )
        return messages

    # ------------------------------------------------------------------
    # System prompt
    # ------------------------------------------------------------------
    def build_system_prompt(
        self,
        agent: AgentDefinition,
        context: ExecutionContext,
        payload: Mapping[str, Any],
    ) -> str:
        if not agent.system_prompt:
            return _DEFAULT_SYSTEM_PROMPT

        mode = target_mode_for(context)
        variables: dict[str, Any] = {
            "agent": agent.name,
            "scope": context.scope,
            "targetMode": mode,
        }
        variables.update(context.data)
        variables.update(payload)
        prompt = interpolate_template(agent.system_prompt, variables)

        if agent.style_guide is not None:
            prompt += "\n\n" + self._style_guide_block(agent)
        if agent.writing_style is not None:
            prompt += "\n\n" + self._writing_style_block(agent)

        extra = _DEBUG_INSTRUCTIONS if self._debug else ""
        if context.history:
            extra += _HISTORY_INSTRUCTIONS
        return prompt + _FORMAT_INSTRUCTIONS.format(extra=extra, mode=mode)

    @staticmethod
    def _style_guide_block(agent: AgentDefinition) -> str:
        guide = agent.style_guide
        assert guide is not None
        lines = ["STYLE GUIDE FOR MEDIA GENERATION:"]
        if guide.design_style:
            lines.append(f"- Design Style: {guide.design_style}")
        if guide.color_palette:
            lines.append(f"- Color Palette: {', '.join(guide.color_palette)}")
        if guide.image_treatments:
            lines.append(f"- Design Treatments: {', '.join(guide.image_treatments)}")
        if guide.notes:
            lines.append(f"- Additional Notes: {guide.notes}")
        return "\n".join(lines) + "\n\nWhen generating images, follow the style guide above."

    @staticmethod
    def _writing_style_block(agent: AgentDefinition) -> str:
        style = agent.writing_style
        assert style is not None
        lines = ["WRITING STYLE PREFERENCES:"]
        if style.tone:
            lines.append(f"- Tone: {style.tone}")
        if style.voice:
            lines.append(f"- Voice: {style.voice}")
        if style.conventions:
            lines.append(f"- Conventions: {', '.join(style.conventions)}")
        if style.notes:
            lines.append(f"- Additional Notes: {style.notes}")
        return (
            "\n".join(lines)
            + "\n\nWhen writing or editing text content, follow the writing style preferences above. "
            'NEVER leave module copy fields with their default "Lorem Ipsum" values; always replace '
            "them with high-quality, relevant content."
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def build_history(self, context: ExecutionContext) -> list[Message]:
        history = context.history
        if not history:
            return []
        messages = [Message.system(HISTORY_START_MARKER)]
        for item in history:
            role = str(item.get("role", "user"))
            if role not in _HISTORY_ROLES:
                LOGGER.debug("Skipping history entry with unsupported role %s", role)
                continue
            messages.append(Message(role=role, content=str(item.get("content", ""))))  # type: ignore[arg-type]
        messages.append(Message.system(HISTORY_END_MARKER))
        return messages

    # ------------------------------------------------------------------
    # User message
    # ------------------------------------------------------------------
    def build_user_message(
        self,
        agent: AgentDefinition,
        context: ExecutionContext,
        payload: Mapping[str, Any],
    ) -> str:
        parts: list[str] = []
        instruction = payload.get("openEndedContext")
        if instruction:
            parts.extend(self._instruction_block(str(instruction)))

        parts.append("\n--- TECHNICAL CONTEXT ---")
        parts.append(
            "IMPORTANT: Use the following technical context to inform your tool calls, but "
            "PRIORITIZE the USER INSTRUCTIONS above for your creative decisions."
        )
        parts.extend(self._scope_guidance(context))

        post = payload.get("post")
        if isinstance(post, Mapping) and context.scope != "global":
            parts.append(f"\nTarget Post ID: {post.get('id')}")
            parts.append(f"Current post data:\n{_dump(post)}")

        modules = payload.get("modules")
        if isinstance(modules, Sequence) and modules and context.scope != "global":
            parts.extend(self._module_listing(modules))

        extra_context = payload.get("context")
        if extra_context:
            parts.append(f"\nAdditional context:\n{_dump(extra_context)}")

        if agent.use_tools:
            parts.extend(self._tool_listing(agent))
        return "\n".join(parts)

    @staticmethod
    def _instruction_block(instruction: str) -> list[str]:
        return [
            f"\n\n{_BANNER}",
            "CURRENT USER INSTRUCTIONS (PRIORITY):",
            instruction,
            f"{_BANNER}\n",
            "Please fulfill the CURRENT USER INSTRUCTIONS above. If these instructions represent "
            "a new task, ignore irrelevant previous conversation history.",
            "\nRESPONSE FORMAT:",
            "{",
            '  "post": { "fieldName": "newValue" },',
            '  "modules": [',
            '    { "type": "hero", "props": { "title": "New title" } },',
            '    { "type": "prose", "props": { "content": "New content" } }',
            "  ]",
            "}",
            '\n\nCRITICAL: If the user asks to update "all modules" or "all copy", you MUST include '
            "entries for ALL module types shown above.",
            'Do NOT include "orderIndex" unless you want to update only a specific instance of that type.',
            'Without "orderIndex", your changes will apply to ALL modules of that type.',
        ]

    @staticmethod
    def _scope_guidance(context: ExecutionContext) -> list[str]:
        if context.scope == "dropdown":
            return ["Scope: Manual execution requested by user on an existing post."]
        if context.scope == "global":
            return [
                "Scope: Global execution (System-wide).",
                "- You are NOT currently editing a specific post.",
                "- Focus on media generation or creating NEW posts.",
                '- Use "list_post_types" first if you need to create a post to see what is available.',
                '- Do NOT assume you are creating a "blog post" unless explicitly asked for that type.',
            ]
        if context.scope == "field":
            return [
                f"Scope: Per-field AI assistance for: {context.field_key or 'unknown'}",
                "- Your primary goal is to provide a value for this specific field.",
            ]
        return [f"Scope: {context.scope}"]

    @staticmethod
    def _module_listing(modules: Sequence[Any]) -> list[str]:
        lines = [f"\nCurrent modules ({len(modules)} total):"]
        has_prose = False
        for position, module in enumerate(modules):
            if not isinstance(module, Mapping):
                continue
            module_type = str(module.get("type", ""))
            has_prose = has_prose or "prose" in module_type.lower()
            order_index = module.get("orderIndex")
            if order_index is None:
                order_index = position
            lines.append(
                f"\n{position + 1}. {module_type} (postModuleId: \"{module.get('postModuleId')}\", "
                f"orderIndex: {order_index}):"
            )
            lines.append(_dump(module.get("props") or {}))
        lines.append(
            '\nIMPORTANT: If asked to update "all modules" or "all copy", you MUST include entries '
            'for all relevant modules in your response array. Use "postModuleId" to ensure your '
            "changes apply to the correct instance."
        )
        if has_prose:
            lines.append(
                '\nNOTICE: This post contains "Prose" modules. When writing copy for these modules, '
                "ensure you provide a substantial amount of content (multiple paragraphs, headings, "
                "etc.) to meet user expectations for high-quality, detailed copy."
            )
        return lines

    def _tool_listing(self, agent: AgentDefinition) -> list[str]:
        assert agent.llm is not None
        allowed = [tool for tool in self._tools if agent.llm.is_tool_allowed(tool.name)]
        lines = ["\n\nYou have access to the following tools:"]
        lines.extend(f"- {tool.name}: {tool.description}" for tool in allowed)
        lines.append(
            '\nTo use a tool, include a "tool_calls" array in your JSON response with tool name and params.'
        )
        return lines

    # ------------------------------------------------------------------
    # Follow-up turns
    # ------------------------------------------------------------------
    def build_tool_followup(
        self,
        turn: int,
        results: Sequence[ToolCallResult],
        created_post_id: str | None = None,
    ) -> str:
        """User message carrying one turn's tool results and next-step guidance."""

        body = json.dumps([result.to_dict() for result in results], indent=2, default=str)
        prompt = f"Tool execution results (Turn {turn}):\n{body}\n\n"
        if created_post_id:
            return prompt + _CREATION_GUIDANCE.format(post_id=created_post_id)
        return prompt + _NEXT_STEP_GUIDANCE


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)

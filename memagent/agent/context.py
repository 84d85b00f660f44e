"""
Prompt Assembly
===============

Builds every prompt the pipeline sends to the completion function:

- classification (system + user prompt, and the stricter corrective retry)
- tool parameter extraction and tool selection
- the background block for each execution path: memory, tool results, or both

Background layout for the answer call:

    <path instructions>

    ## Recent conversations        (episodic, most relevant first)
    - User: ... Assistant: ...

    ## Relevant knowledge          (semantic, most relevant first)
    - concept: description

    ## Tool execution results
    - calculator: Success - {"result": 42}

Empty sections are left out. When memory was requested but nothing was
found, the model is told so explicitly and asked not to invent memories.
"""

import json

from memagent.agent.models import IntentType, QueryIntent, ToolExecutionRecord
from memagent.memory.models import MemoryContext
from memagent.tools import MCPTool
from memagent.utils.json_utils import render_json
from memagent.utils.logger import Logger

logger = Logger("Prompts")

NO_MEMORY_NOTICE = (
    "No memories found - this appears to be our first conversation or no relevant "
    "memories exist for this user.\n"
    "IMPORTANT: If the user asks about what you remember from past conversations, say that "
    "you don't have any memories to recall. Do not make up past conversations or memories."
)

DEGRADED_NOTICE = (
    "Note: part of the memory lookup failed, so the context below may be incomplete."
)


class PromptBuilder:
    """
    Prompt text for classification, tool handling and answer generation.

    Example:
        prompts = PromptBuilder()

        system = prompts.classification_system(registry.get_all())
        user = prompts.classification_user("What is 15 + 27?", previous_intents=[])

        system = prompts.answer_system(IntentType.MEMORY_CHAT, context, tool_results=[])
    """

    INTENT_DESCRIPTIONS = {
        IntentType.CONVERSATION: "General chat without specific intent",
        IntentType.TOOL_EXECUTION: "Direct tool usage or computational tasks",
        IntentType.MEMORY_CHAT: "Conversation that must draw on remembered interactions",
        IntentType.HYBRID: "Tool execution combined with memory context",
        IntentType.KNOWLEDGE_SEARCH: "Search stored knowledge to answer a question",
    }

    CLASSIFICATION_PROMPT = """You are an intent classifier for an assistant that can hold memory-aware conversations, execute tools, and search stored knowledge.

Classify the user query into exactly one of these intent types:

1. conversation: General chat without specific intent
   Examples: "Hello", "How are you?", "Tell me a joke"

2. tool_execution: Direct tool usage or computational tasks
   Calculations, API calls, file operations, data processing
   Examples: "Calculate 5 + 3", "Call https://api.example.com/status", "Read config.json"

3. memory_chat: Conversation that depends on previous interactions
   Examples: "What did we discuss yesterday?", "Remember that I like Python", "What do I like?"

4. hybrid: Tool execution that should also use memory context
   Examples: "Based on my preferences, fetch the matching items", "Fetch this data and compare it with what I told you"

5. knowledge_search: Questions answered from stored knowledge
   Examples: "What do I know about machine learning?", "Explain what we stored about the API"

{tools}

Respond with a single JSON object and nothing else:
{{
  "type": "<one of the five types>",
  "confidence": <number between 0 and 1>,
  "requiredTools": ["<tool name>", ...],
  "memoryContext": <true if memory should be looked up>,
  "reasoning": "<one sentence>"
}}"""

    CORRECTIVE_PROMPT = """Your previous answer could not be used: {problem}

Previous answer:
{raw}

Classify this query again: "{query}"

Return ONLY a JSON object with exactly these keys:
- "type": one of conversation, tool_execution, memory_chat, hybrid, knowledge_search
- "confidence": a number from 0 to 1
- "requiredTools": an array of tool names (may be empty)
- "memoryContext": true or false
- "reasoning": a short string
No markdown, no commentary."""

    PATH_INSTRUCTIONS = {
        IntentType.CONVERSATION: "You are a helpful AI assistant engaged in conversation. Be friendly, helpful, and concise.",
        IntentType.TOOL_EXECUTION: "You are an AI assistant that answers using the results of the tools it just ran.",
        IntentType.MEMORY_CHAT: (
            "You are an AI assistant with access to memory. Answer ONLY from the memory "
            "context below; if it does not contain the answer, say that you don't remember."
        ),
        IntentType.HYBRID: (
            "You are an AI assistant that combines tool results with what it remembers about the user. "
            "Use both the memory context and the tool results below."
        ),
        IntentType.KNOWLEDGE_SEARCH: (
            "You are an AI assistant that searches stored knowledge to answer questions. "
            "Base the answer on the knowledge below; if nothing relevant is there, say so clearly."
        ),
    }

    # ==========================================================================
    # Classification
    # ==========================================================================

    def describe_tools(self, tools: list[MCPTool]) -> str:
        if not tools:
            return "No tools are available."
        lines = [f"Available tools: {', '.join(t.name for t in tools)}", "", "Tool details:"]
        for tool in tools:
            lines.append(f"- {tool.name}: {tool.description}")
            summary = tool.parameter_summary()
            if summary:
                lines.append(summary)
        return "\n".join(lines)

    def classification_system(self, tools: list[MCPTool]) -> str:
        return self.CLASSIFICATION_PROMPT.format(tools=self.describe_tools(tools))

    def classification_user(
        self,
        query: str,
        previous_intents: list[QueryIntent] | None = None,
        user_context: dict | None = None
    ) -> str:
        prompt = f'Classify this user query:\n"{query}"'

        recent = (previous_intents or [])[-3:]
        if recent:
            prompt += "\n\nPrevious intents in this session:"
            for index, intent in enumerate(recent, 1):
                prompt += f"\n{index}. {intent.type.value} (confidence: {intent.confidence})"

        hints = {k: v for k, v in (user_context or {}).items() if k not in ("userId", "sessionId")}
        if hints:
            prompt += f"\n\nUser context: {render_json(hints)}"

        return prompt

    def classification_retry(self, query: str, raw_output: str, problem: str) -> str:
        raw = raw_output.strip() or "(empty)"
        return self.CORRECTIVE_PROMPT.format(problem=problem, raw=raw[:1000], query=query)

    # ==========================================================================
    # Tools
    # ==========================================================================

    def parameter_extraction(
        self,
        query: str,
        tool: MCPTool,
        upstream: list[ToolExecutionRecord] | None = None
    ) -> str:
        prompt = (
            f'Extract arguments for the tool "{tool.name}" from this query: "{query}"\n\n'
            f"Tool description: {tool.description}\n"
            f"Tool schema: {json.dumps(tool.parameters, indent=2)}"
        )

        inputs = [r for r in upstream or [] if r.success]
        if inputs:
            prompt += "\n\nResults of tools that ran before this one:"
            for record in inputs:
                prompt += f"\n- {record.tool_name}: {render_json(record.data, 2000)}"

        prompt += (
            "\n\nReturn only a JSON object with the extracted arguments. "
            "If you cannot extract valid arguments, return an empty object {}."
        )
        return prompt

    def tool_selection(self, query: str, tools: list[MCPTool]) -> str:
        return (
            f'Choose the single tool that best answers this query: "{query}"\n\n'
            f"{self.describe_tools(tools)}\n\n"
            'Return only a JSON object: {"toolName": "<tool name or none>", "args": {...}}. '
            'Use "none" when no tool applies.'
        )

    def restate_need(self, query: str, tools: list[MCPTool]) -> str:
        names = ", ".join(t.name for t in tools) or "none"
        return (
            f'The user asked: "{query}"\n\n'
            f"No suitable tool could be determined for this request (available tools: {names}). "
            "Restate what the user needs in one or two sentences and say what information "
            "or tool would be required to complete it."
        )

    # ==========================================================================
    # Answer generation
    # ==========================================================================

    def memory_sections(self, context: MemoryContext | None, semantic_first: bool = False) -> list[str]:
        if context is None:
            return []
        if context.is_empty():
            sections = [NO_MEMORY_NOTICE]
            if context.degraded:
                sections.insert(0, DEGRADED_NOTICE)
            return sections

        episodic = ""
        if context.episodic_memories:
            episodic = "## Recent conversations\n" + "\n".join(
                f"- {m.content}" for m in context.episodic_memories
            )
        semantic = ""
        if context.semantic_memories:
            semantic = "## Relevant knowledge\n" + "\n".join(
                f"- {m.concept}: {m.description}" for m in context.semantic_memories
            )

        ordered = [semantic, episodic] if semantic_first else [episodic, semantic]
        sections = [s for s in ordered if s]
        if context.degraded:
            sections.insert(0, DEGRADED_NOTICE)
        return sections

    def tool_section(self, records: list[ToolExecutionRecord]) -> str:
        if not records:
            return ""
        lines = ["## Tool execution results"]
        for r in records:
            if r.skipped:
                lines.append(f"- {r.tool_name}: Skipped - {r.error}")
            elif r.success:
                lines.append(f"- {r.tool_name}: Success - {render_json(r.data, 4000)}")
            else:
                lines.append(f"- {r.tool_name}: Failed - {r.error}")
        return "\n".join(lines)

    def answer_system(
        self,
        intent_type: IntentType,
        context: MemoryContext | None,
        tool_results: list[ToolExecutionRecord]
    ) -> str:
        """
        The system message for the terminal answer call of a path.

        Knowledge search lists semantic memory first and labels episodic
        records as secondary; memory chat and hybrid use both equally;
        conversation only adds memory as optional background.
        """
        sections = [self.PATH_INSTRUCTIONS[intent_type]]

        if intent_type is IntentType.KNOWLEDGE_SEARCH:
            memory = self.memory_sections(context, semantic_first=True)
            sections.extend(s.replace("## Recent conversations", "## Related conversations (secondary)") for s in memory)
        elif intent_type is IntentType.CONVERSATION:
            if context is not None and not context.is_empty():
                sections.append("Background from earlier interactions (use only if relevant):")
                sections.extend(self.memory_sections(context))
        elif intent_type in (IntentType.MEMORY_CHAT, IntentType.HYBRID):
            sections.extend(self.memory_sections(context) or [NO_MEMORY_NOTICE])

        if intent_type in (IntentType.TOOL_EXECUTION, IntentType.HYBRID):
            tools = self.tool_section(tool_results)
            if tools:
                sections.append(tools)
            sections.append(
                "If a tool failed or was skipped, explain what went wrong and suggest alternatives."
            )

        return "\n\n".join(sections)

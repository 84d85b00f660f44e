"""
MCP Tools System
================

Tools follow the Model Context Protocol (MCP) pattern:
- Each tool has a name, description, and JSON Schema for its parameters
- The agent decides which tools to use (classifier or tool selection)
- Tools are executed and their results folded into the final answer

Built-in tools:
1. calculator  - safe arithmetic
2. api_call    - HTTP requests to external services
3. file_reader - read files, list directories, stat paths
4. json_reader - parse JSON and follow a key path

The registry is an explicit object handed to the agent at construction,
so tests and embedders can assemble exactly the tools they want:

    registry = ToolRegistry()
    register_builtin_tools(registry, base_dir=Path("."))

This module provides:
- MCPTool dataclass for defining tools
- ToolResult for standardized responses
- ToolRegistry for lookup, schema validation and invocation
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Awaitable

import httpx
from jsonschema import Draft7Validator

from memagent.utils.errors import ToolExecutionError
from memagent.utils.logger import Logger

logger = Logger("Tools")


@dataclass
class ToolResult:
    """
    Standardized result from tool execution.

    Attributes:
        success: Whether the tool executed successfully
        data: The result data (varies by tool)
        error: Error message if success is False
    """
    success: bool
    data: Any = None
    error: str | None = None


@dataclass
class MCPTool:
    """
    Definition of a tool following MCP pattern.

    Attributes:
        name: Unique identifier for the tool
        description: What the tool does (shown to the model)
        parameters: JSON Schema for the parameters
        execute: Async function that runs the tool
        consumes: Names of tools whose results this tool takes as input;
                  when one of them fails in the same plan, this tool is skipped

    Example:
        async def add(params: dict) -> ToolResult:
            return ToolResult(success=True, data={"sum": params["a"] + params["b"]})

        tool = MCPTool(
            name="add",
            description="Add two numbers",
            parameters={
                "type": "object",
                "properties": {
                    "a": {"type": "number"},
                    "b": {"type": "number"}
                },
                "required": ["a", "b"]
            },
            execute=add
        )
    """
    name: str
    description: str
    parameters: dict
    execute: Callable[[dict], Awaitable[ToolResult]]
    consumes: list[str] = field(default_factory=list)

    @property
    def required_parameters(self) -> list[str]:
        return list(self.parameters.get("required", []))

    def parameter_summary(self) -> str:
        """One line per parameter, for prompts."""
        required = set(self.required_parameters)
        lines = []
        for name, schema in self.parameters.get("properties", {}).items():
            marker = "required" if name in required else "optional"
            description = schema.get("description", "")
            lines.append(f"  - {name} ({schema.get('type', 'any')}, {marker}): {description}".rstrip(": "))
        return "\n".join(lines)

    def to_metadata(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "consumes": list(self.consumes),
        }


class ToolRegistry:
    """
    Registry of the tools available to one agent.

    Example:
        registry = ToolRegistry()
        registry.register(my_tool)

        tool = registry.get("my_tool")
        errors = registry.validate("my_tool", {"a": 1})
        result = await registry.execute("my_tool", {"a": 1, "b": 2})
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._tools: dict[str, MCPTool] = {}
        self._validators: dict[str, Draft7Validator] = {}

    def register(self, tool: MCPTool) -> None:
        """
        Register a tool.

        Raises:
            ValueError: If a tool with this name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        Draft7Validator.check_schema(tool.parameters)
        self._tools[tool.name] = tool
        self._validators[tool.name] = Draft7Validator(tool.parameters)
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> MCPTool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get_all(self) -> list[MCPTool]:
        return list(self._tools.values())

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    def validate(self, name: str, params: dict) -> list[str]:
        """
        Check parameters against a tool's schema.

        Returns:
            Human-readable violations; empty when the parameters are valid
        """
        validator = self._validators.get(name)
        if validator is None:
            return [f"Tool '{name}' not found"]

        errors = sorted(validator.iter_errors(params), key=lambda e: [str(p) for p in e.path])
        messages = []
        for error in errors:
            location = ".".join(str(p) for p in error.path)
            messages.append(f"{location}: {error.message}" if location else error.message)
        return messages

    async def invoke(self, name: str, params: dict) -> ToolResult:
        """
        Validate and run a tool, letting its own exceptions propagate.

        Raises:
            ToolExecutionError: Unknown tool or invalid parameters (not retryable)
        """
        tool = self.get(name)
        if tool is None:
            raise ToolExecutionError(f"Tool '{name}' not found", name, retryable=False)

        problems = self.validate(name, params)
        if problems:
            raise ToolExecutionError(
                f"Invalid parameters for '{name}': {'; '.join(problems)}", name, retryable=False
            )

        logger.info(f"Executing tool: {name}")
        return await tool.execute(params)

    async def execute(self, name: str, params: dict) -> ToolResult:
        """
        Execute a tool by name, converting every failure into a ToolResult.

        Args:
            name: The tool name
            params: Parameters to pass to the tool
        """
        try:
            return await self.invoke(name, params)
        except ToolExecutionError as e:
            return ToolResult(success=False, error=str(e))
        except Exception as e:
            logger.error(f"Tool execution failed: {name}", e)
            return ToolResult(success=False, error=str(e))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    # Defined last: the name shadows the builtin inside the class body
    def list(self) -> list[dict]:
        """Metadata of every registered tool, in registration order."""
        return [tool.to_metadata() for tool in self._tools.values()]


def register_builtin_tools(
    registry: ToolRegistry,
    base_dir: Path | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None
) -> ToolRegistry:
    """
    Register calculator, api_call, file_reader and json_reader.

    Args:
        registry: Registry to fill
        base_dir: Root the file tools may read under (default: working directory)
        http_transport: Optional httpx transport for api_call (tests use MockTransport)
    """
    # Imported here: the tool modules import MCPTool/ToolResult from this package
    from memagent.tools.calculator import register_calculator_tools
    from memagent.tools.file_tools import register_file_tools
    from memagent.tools.http_tools import register_http_tools

    register_calculator_tools(registry)
    register_http_tools(registry, transport=http_transport)
    register_file_tools(registry, base_dir=base_dir or Path.cwd())

    logger.info(f"Registered {len(registry)} tools")
    return registry


__all__ = [
    "MCPTool",
    "ToolResult",
    "ToolRegistry",
    "register_builtin_tools",
]

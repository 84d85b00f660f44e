"""
Agent System
============

The orchestration core. For each request it:
1. Classifies the query into one of five intents
2. Assembles memory context (episodic + semantic)
3. Routes to the matching execution path, running tools as needed
4. Composes a structured ExecutionResult

This module provides:
- Agent: the execute/classify entry point
- IntentClassifier: LLM classification with heuristic fallback
- ExecutionRouter: the five execution paths
- ToolExecutor: tool plans with timeouts, retries and dependencies
- ResponseComposer: result aggregation
- PromptBuilder: all prompt text
"""

from memagent.agent.models import (
    BatchClassification,
    BatchSummary,
    ExecutionMetadata,
    ExecutionOptions,
    ExecutionResult,
    IntentType,
    QueryIntent,
    StageTimings,
    ToolExecutionRecord,
)
from memagent.agent.context import PromptBuilder
from memagent.agent.classifier import IntentClassifier, heuristic_intent
from memagent.agent.tools_executor import ToolCall, ToolExecutor
from memagent.agent.router import ExecutionRouter, RouteOutcome
from memagent.agent.composer import ResponseComposer
from memagent.agent.core import Agent

__all__ = [
    "Agent",
    "BatchClassification",
    "BatchSummary",
    "ExecutionMetadata",
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutionRouter",
    "IntentClassifier",
    "IntentType",
    "PromptBuilder",
    "QueryIntent",
    "ResponseComposer",
    "RouteOutcome",
    "StageTimings",
    "ToolCall",
    "ToolExecutionRecord",
    "ToolExecutor",
    "heuristic_intent",
]

"""
memagent - Memory-Aware Agent Orchestration Core
================================================

Routes a user query through intent classification, memory context
assembly, tool execution and answer generation, and returns a single
structured result.

This package provides:
- Agent system: classifier, execution router, response composer
- Two-store memory (episodic interactions, semantic knowledge)
- Vector search over semantic memory (numpy + OpenAI embeddings)
- MCP-style tools: calculator, HTTP API calls, file and JSON readers
"""

__version__ = "1.0.0"

"""
memagent - Command Line Entry Point
===================================

Runs one query through the agent, or classifies a batch of queries, and
prints the result as JSON.

It:
1. Loads configuration (.env + environment)
2. Builds the agent (OpenAI backends, memory stores, built-in tools)
3. Executes the query or the batch classification
4. Prints the structured result

Run with:
    python -m memagent.main "What is 15 + 27?" --user U1 --session S1

Or after installing:
    memagent "What is 15 + 27?" --user U1 --session S1
    memagent "What do I like?" --user U1 --session S1 --detail minimal
    memagent --classify "Hello" "What is 2 * 3?"
"""

import argparse
import asyncio
import json
import sys

from memagent.utils.config import get_config
from memagent.utils.errors import AgentError, ValidationError
from memagent.utils.logger import Logger

main_logger = Logger("Main")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memagent",
        description="Memory-aware agent: classify a query, gather memory, run tools, answer",
    )
    parser.add_argument("queries", nargs="+", metavar="QUERY", help="Query to execute (or classify)")
    parser.add_argument("--user", dest="user_id", default="cli-user", help="User id scoping memory")
    parser.add_argument("--session", dest="session_id", default="cli-session", help="Session id for episodic memory")
    parser.add_argument(
        "--classify",
        action="store_true",
        help="Only classify the queries (batch) instead of executing one",
    )
    parser.add_argument("--no-memory", action="store_true", help="Do not look up memory context")
    parser.add_argument("--no-store", action="store_true", help="Do not write the interaction back to memory")
    parser.add_argument(
        "--hint",
        default=None,
        metavar="TYPE",
        help="Skip classification and use this intent type",
    )
    parser.add_argument(
        "--detail",
        choices=["full", "standard", "minimal"],
        default="standard",
        help="Response detail level",
    )
    parser.add_argument("--parallel-tools", action="store_true", help="Run independent tools concurrently")
    parser.add_argument("--max-memory", type=int, default=None, help="Cap on memory records in the context")
    parser.add_argument("--deadline-ms", type=float, default=None, help="Overall request budget in milliseconds")
    parser.add_argument("--concurrency", type=int, default=None, help="Batch classification concurrency")
    parser.add_argument("--model", default=None, help="Completion model override")
    return parser


async def main(argv: list[str] | None = None) -> int:
    """
    Main async entry point.

    Returns:
        Process exit code
    """
    args = _build_parser().parse_args(argv)

    try:
        config = get_config()

        from memagent.agent import Agent, ExecutionOptions
        agent = Agent.from_config(config)

        if args.classify:
            summary = await agent.classify_batch(args.queries, concurrency=args.concurrency, model=args.model)
            print(json.dumps(summary.to_dict(), indent=2, default=str))
            return 0

        options = ExecutionOptions(
            user_id=args.user_id,
            session_id=args.session_id,
            include_memory_context=not args.no_memory,
            max_memory_results=args.max_memory if args.max_memory is not None else config.memory.max_results,
            model=args.model,
            hint_intent=args.hint,
            parallel_tools=args.parallel_tools,
            store_interaction=not args.no_store,
            detail=args.detail,
            deadline_ms=args.deadline_ms,
        )
        result = await agent.execute(" ".join(args.queries), options)
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.success else 1

    except ValidationError as e:
        main_logger.error("Invalid request", e, {"field": e.field})
        return 2
    except AgentError as e:
        main_logger.error("Request failed", e)
        return 1
    except ValueError as e:
        # Missing or malformed configuration
        main_logger.error("Failed to start", e)
        return 1


def run():
    """
    Synchronous entry point.

    This is called when running with the `memagent` command.
    """
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

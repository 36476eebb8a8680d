"""
Route a single utterance and print the decision as JSON.

Usage:
    python scripts/route_query.py "what is the leave policy?" --chunks data/probe_chunks.json
    python scripts/route_query.py "if score < 7 then reject" --dispatch
    python scripts/route_query.py "hello" --metrics

--chunks points at a JSON list of pre-scored chunks
([{"content": ..., "source": ..., "score": ...}]) used as the knowledge base,
which makes a decision replayable offline. Without it the probe sees an
empty knowledge base.
"""
import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from intent_router.core.config import Thresholds
from intent_router.core.logging import configure_logging, get_logger
from intent_router.core.metrics import get_metrics
from intent_router.core.tracing import configure_tracing, shutdown_tracing
from intent_router.services.retrieval.base import StaticRetriever
from intent_router.services.routing.orchestration import RouterService
from intent_router.services.tools.handlers import ToolHandlers

logger = get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    if args.chunks:
        retriever = StaticRetriever.from_json_file(Path(args.chunks))
    else:
        retriever = StaticRetriever([])

    thresholds = None
    if args.high_retrieval is not None or args.low_retrieval is not None or args.high_intent is not None:
        defaults = Thresholds()
        thresholds = Thresholds(
            high_retrieval=args.high_retrieval if args.high_retrieval is not None else defaults.high_retrieval,
            low_retrieval=args.low_retrieval if args.low_retrieval is not None else defaults.low_retrieval,
            high_intent=args.high_intent if args.high_intent is not None else defaults.high_intent,
        )

    service = RouterService(retriever=retriever)
    decision = await service.route(args.utterance, thresholds=thresholds)
    print(json.dumps(decision.model_dump(mode="json"), indent=2))

    exit_code = 0
    if args.dispatch:
        response = await ToolHandlers(retriever=retriever).dispatch(decision, args.utterance)
        print(json.dumps(response.model_dump(mode="json"), indent=2))
        exit_code = 0 if response.success else 1

    if args.metrics:
        print(get_metrics().decode("utf-8"))
    return exit_code


def main():
    parser = argparse.ArgumentParser(description="Route one utterance to chat, retrieval or config")
    parser.add_argument("utterance", help="Raw user request")
    parser.add_argument("--chunks", help="JSON file with pre-scored knowledge-base chunks")
    parser.add_argument("--dispatch", action="store_true", help="Also run the chosen tool handler")
    parser.add_argument("--metrics", action="store_true", help="Print Prometheus metrics after the decision")
    parser.add_argument("--high-retrieval", type=float, default=None, help="Override HIGH_RETRIEVAL")
    parser.add_argument("--low-retrieval", type=float, default=None, help="Override LOW_RETRIEVAL")
    parser.add_argument("--high-intent", type=float, default=None, help="Override HIGH_INTENT")

    args = parser.parse_args()

    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "WARNING"),
        json_output=os.getenv("LOG_JSON", "true").lower() == "true",
    )
    if os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        configure_tracing()
    try:
        exit_code = asyncio.run(run(args))
    finally:
        shutdown_tracing()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

"""DeepResearch - multi-provider research pipeline

Simple CLI for running a research session end to end.
"""

import argparse
import asyncio

import uvicorn

from deepresearch.agents.research_engine import DeepResearchEngine
from deepresearch.models.errors import ResearchError
from deepresearch.models.research import ResearchConfig, ResearchDepth, SessionStatus
from deepresearch.services.database import PostgresResearchStore
from deepresearch.services.memory_store import InMemoryResearchStore


def _build_store(backend: str):
    if backend == "memory":
        return InMemoryResearchStore()
    return PostgresResearchStore()


async def run_research(args: argparse.Namespace) -> int:
    """Run one session, print its events, then print the exported report."""
    store = _build_store(args.store)
    if isinstance(store, PostgresResearchStore) and args.init_schema:
        await store.init_schema()

    engine = DeepResearchEngine(store=store)
    config = ResearchConfig(
        depth=ResearchDepth(args.depth),
        max_sources=args.max_sources or 0,
        include_forums=args.include_forums,
        generate_report=not args.no_report,
    )

    print(f"Research query: {args.query}")
    print("-" * 50)

    try:
        session = await engine.start_research(args.query, args.project_id, config=config)
        async for event in engine.stream_research(session.id):
            event_type = event.event.value
            data = event.data

            if event_type == "status_change":
                print(f"\n[*] Status: {data.get('status')}")
                if data.get("error"):
                    print(f"[!] Error: {data['error']}")

            elif event_type == "source_found":
                print(f"  [+] Source: {data.get('title', '')[:80]} ({data.get('credibility', 0):.2f})")

            elif event_type == "fact_extracted":
                print(".", end="", flush=True)

            elif event_type == "contradiction_detected":
                print(f"\n  [!] Contradiction: {data.get('explanation', '')[:120]}")

            elif event_type == "progress":
                details = ", ".join(f"{k}={v}" for k, v in data.items() if k != "phase")
                print(f"\n  [~] {data.get('phase')} done: {details}")

        await engine.wait_for_background_tasks()
        detail = await engine.get_session(session.id)
        if detail is None or detail.session.status != SessionStatus.COMPLETED:
            return 1

        stats = detail.session.stats
        print(f"\n\n[*] Research Complete!")
        print(f"   Runtime: {stats.duration_ms}ms")
        print(f"   Sources: {stats.sources_used}/{stats.sources_searched}")
        print(f"   Facts: {stats.facts_extracted}")
        print(f"   Contradictions: {stats.contradictions_found}")

        if detail.report is not None:
            body, _ = await engine.export_report(session.id, args.format)
            print(f"\n{'='*50}")
            print("REPORT:")
            print(f"{'='*50}")
            print(body)
        return 0
    except ResearchError as e:
        print(f"\n[!] Error: {e}")
        return 1
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="DeepResearch CLI")
    parser.add_argument("--query", "-q", help="Research query")
    parser.add_argument("--project-id", default="cli", help="Project the session belongs to")
    parser.add_argument(
        "--depth",
        choices=[d.value for d in ResearchDepth],
        default=ResearchDepth.STANDARD.value,
    )
    parser.add_argument("--max-sources", type=int, help="Override the depth's source budget")
    parser.add_argument("--include-forums", action="store_true", help="Also search forum providers")
    parser.add_argument("--no-report", action="store_true", help="Skip report generation")
    parser.add_argument("--format", choices=["md", "html"], default="md", help="Report export format")
    parser.add_argument("--store", choices=["memory", "postgres"], default="memory")
    parser.add_argument("--init-schema", action="store_true", help="Create Postgres tables first")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API instead of one session")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()

    if args.serve:
        uvicorn.run("deepresearch.main:app", host=args.host, port=args.port)
        return
    if not args.query:
        parser.error("--query is required unless --serve is given")

    raise SystemExit(asyncio.run(run_research(args)))


if __name__ == "__main__":
    main()

"""Console entry point for GoldQA."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Sequence

# .env values must be in the environment before the config dataclasses are defined
from dotenv import load_dotenv
load_dotenv()

from goldqa.src.retrieval.export import DataExport, load_export
from goldqa.src.utils.config import CONFIG, AppConfig, validate_environment
from goldqa.src.utils.models import TestSpecification


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="goldqa", description="Validate a web UI against a tab-separated data export.")
    sub = parser.add_subparsers(dest="command", required=True)

    learn = sub.add_parser("learn", help="explore the UI and synthesize tests")
    learn.add_argument("--url", required=True, help="page to explore")
    learn.add_argument("--export", action="append", required=True, help="TSV export (repeatable)")
    learn.add_argument("--timeout", type=float, help="learning timeout in seconds")
    learn.add_argument("--tests-out", type=Path, default=Path("goldqa-tests.json"), help="where to save the tests")
    learn.add_argument("--run", action="store_true", help="execute the synthesized tests right away")

    run = sub.add_parser("run", help="execute previously synthesized tests")
    run.add_argument("--export", action="append", required=True, help="TSV export (repeatable)")
    run.add_argument("--tests", type=Path, required=True, help="JSON file written by 'learn'")
    run.add_argument("--url", help="page the tests target when they do not name one")

    host = sub.add_parser("host", help="start the Playwright MCP host")
    host.add_argument("--host", default="0.0.0.0")
    host.add_argument("--port", type=int, default=8001)
    return parser


def _load_exports(paths: Sequence[str]) -> List[DataExport]:
    return [load_export(path) for path in paths]


def _load_tests(path: Path, default_url: str | None) -> List[TestSpecification]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    tests = [TestSpecification.model_validate(item) for item in payload]
    if default_url:
        tests = [test if test.target_url else test.model_copy(update={"target_url": default_url}) for test in tests]
    return tests


async def _learn(args: argparse.Namespace, config: AppConfig) -> int:
    from goldqa.src.orchestrator import LearningPipeline

    if args.timeout:
        config.pipeline.learning_timeout_s = args.timeout
    pipeline = LearningPipeline.from_config(config)
    try:
        result = await pipeline.perform_complete_learning(_load_exports(args.export), target_url=args.url)
        if not result.success:
            print(f"❌ Learning failed: {result.error}")
            return 1
        tests = [test.model_copy(update={"target_url": test.target_url or args.url}) for test in result.tests]
        args.tests_out.write_text(
            json.dumps([test.model_dump(mode="json") for test in tests], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        print(f"✅ {len(result.findings)} control(s), {len(result.mappings)} mapping(s), {len(tests)} test(s)")
        print(f"   Tests saved to {args.tests_out}")
        if args.run:
            run = await pipeline.run_tests(tests)
            print(f"📊 {run.counters()} -> {pipeline.last_report_dir}")
            return 0 if run.failed == 0 and run.errors == 0 else 2
        return 0
    finally:
        pipeline.backend.close()


async def _run(args: argparse.Namespace, config: AppConfig) -> int:
    from goldqa.src.orchestrator import LearningPipeline

    pipeline = LearningPipeline.from_config(config)
    try:
        await pipeline.ingest_exports(_load_exports(args.export))
        run = await pipeline.run_tests(_load_tests(args.tests, args.url))
        print(f"📊 {run.counters()} -> {pipeline.last_report_dir}")
        return 0 if run.failed == 0 and run.errors == 0 else 2
    finally:
        pipeline.backend.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "host":
        from goldqa.src.backend.mcp_host import main as host_main

        host_main(host=args.host, port=args.port)
        return 0

    config = CONFIG
    missing = validate_environment(config)
    if missing:
        print(f"❌ Missing configuration: {', '.join(missing)}")
        return 1

    if args.command == "learn":
        return asyncio.run(_learn(args, config))
    return asyncio.run(_run(args, config))


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Workflow Runner CLI

Opens target sessions for page workflows and runs them from the terminal,
using the same engine as the API server.

Usage:
    python runner_cli.py compile <page_workflow_id> [--values '{"s1": "Alice"}']
    python runner_cli.py open <page_workflow_id> [<page_workflow_id> ...] [--count N]
    python runner_cli.py run <page_workflow_id> [--values JSON] [--count N] [--wait SECONDS]
"""

import argparse
import asyncio
import json
import logging
import sys
import threading

import engine_config
from engine.compiler import compile_script
from engine.sessions import wait_closed
from persistence.workflow_store import JSONWorkflowStore
from workflow_engine import WorkflowRunner


def output_json(data):
    """Print JSON to stdout."""
    print(json.dumps(data, indent=2, ensure_ascii=False))


def load_page_workflow(store, page_workflow_id):
    page_workflow = store.get_page_workflow(page_workflow_id)
    if page_workflow is None:
        raise ValueError(f"Page workflow not found: {page_workflow_id}")
    return page_workflow


async def _wait_for_operator(runner, session_ids):
    """Keep the windows until Enter is pressed or every window is closed."""
    loop = asyncio.get_running_loop()
    enter = loop.create_future()

    def _read_stdin():
        sys.stdin.readline()
        loop.call_soon_threadsafe(lambda: enter.done() or enter.set_result(None))

    # Daemon thread: a pending readline must not hold up interpreter exit
    threading.Thread(target=_read_stdin, daemon=True).start()
    all_closed = asyncio.gather(*(wait_closed(runner.registry, sid) for sid in session_ids))
    await asyncio.wait({enter, all_closed}, return_when=asyncio.FIRST_COMPLETED)
    all_closed.cancel()


# --- Commands ---


def cmd_compile(args, store):
    page_workflow = load_page_workflow(store, args.page_workflow_id)
    script = compile_script(page_workflow.steps, json.loads(args.values))
    output_json(script.payload())


async def cmd_open(args, store):
    page_workflows = [load_page_workflow(store, pid) for pid in args.page_workflow_ids]
    async with WorkflowRunner() as runner:
        opened = []
        for page_workflow in page_workflows:
            for _ in range(args.count):
                session_id = await runner.open_session(page_workflow)
                opened.append({"session_id": session_id, "page_workflow_id": page_workflow.id})
        output_json({"sessions": opened})
        print("Press Enter to close all windows.", file=sys.stderr)
        await _wait_for_operator(runner, [s["session_id"] for s in opened])


async def cmd_run(args, store):
    page_workflow = load_page_workflow(store, args.page_workflow_id)
    values = json.loads(args.values)
    workflow = store.get_workflow(page_workflow.workflow_id)

    async with WorkflowRunner() as runner:
        session_ids = [await runner.open_session(page_workflow) for _ in range(args.count)]
        if args.wait > 0:
            await asyncio.sleep(args.wait)

        result = await runner.execute(page_workflow, values, session_ids, workflow=workflow)
        output_json({
            "page_workflow_id": page_workflow.id,
            "ok": result.ok,
            "outcomes": [o.model_dump() for o in result.outcomes],
        })
        if not args.close:
            print("Press Enter to close all windows.", file=sys.stderr)
            await _wait_for_operator(runner, session_ids)


def main():
    parser = argparse.ArgumentParser(description="Workflow Runner CLI")
    parser.add_argument("--store", default=str(engine_config.STORE_PATH), help="Workflow store JSON file")
    parser.add_argument("--config", help="YAML file with setting overrides")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    # compile
    p_compile = sub.add_parser("compile")
    p_compile.add_argument("page_workflow_id")
    p_compile.add_argument("--values", default="{}", help='JSON: {"step_id": "value"}')

    # open
    p_open = sub.add_parser("open")
    p_open.add_argument("page_workflow_ids", nargs="+")
    p_open.add_argument("--count", type=int, default=1, help="Sessions per page workflow")

    # run
    p_run = sub.add_parser("run")
    p_run.add_argument("page_workflow_id")
    p_run.add_argument("--values", default="{}", help='JSON: {"step_id": "value"}')
    p_run.add_argument("--count", type=int, default=1, help="Number of sessions")
    p_run.add_argument("--wait", type=float, default=2.0, help="Seconds to wait after opening")
    p_run.add_argument("--close", action="store_true", help="Close windows right after the run")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        if args.config:
            engine_config.load_overrides(args.config)
        store = JSONWorkflowStore(args.store)

        if args.command == "compile":
            cmd_compile(args, store)
        elif args.command == "open":
            asyncio.run(cmd_open(args, store))
        elif args.command == "run":
            asyncio.run(cmd_run(args, store))
    except Exception as e:
        output_json({"error": str(e), "command": args.command})
        sys.exit(1)


if __name__ == "__main__":
    main()

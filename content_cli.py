#!/usr/bin/env python3
"""Operator CLI for the content-improvement workflow.

Commands:
  analyze [--report PATH]  analyze all tracked files (read-only), optionally writing a markdown report
  improve                  ask the assistant for improvements and stage them
  pending                  list staged improvements awaiting review
  apply [--ids ID ...]     apply all pending improvements, or only the given ids
  reject --ids ID ...      reject pending improvements
  rollback BACKUP_ID       restore a content file from a backup
  backups [--file PATH]    list backups, newest first
  status                   show the workflow stage and next recommended action
  history                  show workflow events and batches
  files                    list tracked content files

Results are printed as JSON on stdout; logs go to stderr.
"""

import os
import sys
import json
import asyncio
import argparse
import logging
from typing import Any, List, Optional

from dotenv import load_dotenv

from agents.settings import ContentSettings
from services.report_generator import write_report
from utils.errors import ContentWorkflowError, NotAvailableError
from workflows import ContentImprovementWorkflow

logger = logging.getLogger("content_cli")


def configure_logging():
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    for pkg in ("httpcore", "openai", "httpx"):
        logging.getLogger(pkg).setLevel(logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Brand voice content improvement workflow")
    parser.add_argument("--config", default=None, help="Path to config file (default: config.content.yaml or $CONTENT_CONFIG)")
    parser.add_argument("--content-root", default=None, help="Override the content root directory")
    parser.add_argument("--workdir", default=None, help="Override the improvements/backups/state directory")
    parser.add_argument("--workflow-id", default=None, help="Workflow id (state is kept per id)")

    sub = parser.add_subparsers(dest="command", required=True)
    analyze_p = sub.add_parser("analyze", help="Analyze tracked content files")
    analyze_p.add_argument("--report", default=None, metavar="PATH", help="Also write a markdown report to PATH")
    sub.add_parser("improve", help="Generate and stage improvements")
    sub.add_parser("pending", help="List pending improvements")

    apply_p = sub.add_parser("apply", help="Apply pending improvements")
    apply_p.add_argument("--ids", nargs="*", default=None, help="Improvement ids (default: all pending)")

    reject_p = sub.add_parser("reject", help="Reject pending improvements")
    reject_p.add_argument("--ids", nargs="+", required=True, help="Improvement ids to reject")

    rollback_p = sub.add_parser("rollback", help="Restore a file from a backup")
    rollback_p.add_argument("backup_id")

    backups_p = sub.add_parser("backups", help="List backups")
    backups_p.add_argument("--file", default=None, help="Only backups of this content file")

    sub.add_parser("status", help="Show workflow status")
    sub.add_parser("history", help="Show improvement history")
    sub.add_parser("files", help="List tracked content files")
    return parser


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


async def run_command(workflow: ContentImprovementWorkflow, args: argparse.Namespace) -> Any:
    command = args.command
    if command == "analyze":
        result = await workflow.analyze_content()
        if args.report:
            write_report(result, args.report)
        return result
    if command == "improve":
        return await workflow.improve_content()
    if command == "pending":
        return workflow.get_pending_improvements()
    if command == "apply":
        return await workflow.apply_improvements(args.ids)
    if command == "reject":
        return await workflow.reject_improvements(args.ids)
    if command == "rollback":
        return {"backup_id": args.backup_id, "restored": await workflow.rollback(args.backup_id)}
    if command == "backups":
        return workflow.get_backups(args.file)
    if command == "status":
        return workflow.get_workflow_status()
    if command == "history":
        return workflow.get_improvement_history()
    if command == "files":
        return workflow.get_content_files()
    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None, workflow: Optional[ContentImprovementWorkflow] = None) -> int:
    args = build_parser().parse_args(argv)

    if workflow is None:
        settings = ContentSettings.from_config(
            args.config,
            content_root=args.content_root,
            workdir=args.workdir,
            workflow_id=args.workflow_id,
        )
        workflow = ContentImprovementWorkflow(settings)
    logger.debug("Running %s for workflow %s", args.command, workflow.workflow_id)

    try:
        result = asyncio.run(run_command(workflow, args))
    except NotAvailableError as e:
        print(f"Content system not available: {e}", file=sys.stderr)
        return 2
    except ContentWorkflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(_dump(result), indent=2, ensure_ascii=False))
    if isinstance(result, dict) and result.get("restored") is False:
        return 1
    if getattr(result, "success", True) is False:
        return 1
    return 0


def cli() -> int:
    load_dotenv()
    configure_logging()
    return main()


if __name__ == "__main__":
    sys.exit(cli())

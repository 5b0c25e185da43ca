#!/usr/bin/env python3
"""
DeskPilot CLI
Command line interface for the ticket automation engine.
"""
import sys
import signal
import argparse
import asyncio
import logging
import time

from rich.console import Console
from rich.panel import Panel

from deskpilot.logging_setup import setup_logging
from deskpilot.ui import banner, error_banner, table
from config import load_config
from exceptions import DeskPilotError
from main import DeskPilotSystem


console = Console()
logger = logging.getLogger("DeskPilotCLI")


def _open_system(args) -> DeskPilotSystem:
    return DeskPilotSystem(load_config(args.config))


def cmd_run(args) -> None:
    """Run a single evaluation cycle."""
    with _open_system(args) as system:
        banner("DeskPilot", f"Manual cycle against {system.config.database.path}")
        start = time.time()
        report = asyncio.run(system.run_now())
        duration = time.time() - start

        if report.aborted:
            console.print(Panel.fit(
                f"Time: {duration:.2f}s\nCycle aborted: {report.error}",
                title="Cycle",
                border_style="red"
            ))
        else:
            console.print(Panel.fit(
                f"Time: {duration:.2f}s\n"
                f"Rules evaluated: {report.rules_evaluated}\n"
                f"Tickets evaluated: {report.tickets_evaluated} "
                f"(matched {report.tickets_matched}, deferred {report.tickets_deferred}, "
                f"failed {report.tickets_failed})\n"
                f"Outcomes: {report.outcomes}\n"
                f"Audit write failures: {report.audit_failures}",
                title=f"Cycle {report.cycle_id[:8]}",
                border_style="green" if not report.tickets_failed else "yellow"
            ))
        error_banner(system.scheduler.health())


async def _serve(system: DeskPilotSystem) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, system.stop)
        except NotImplementedError:
            # Not available on Windows event loops; Ctrl+C falls back to KeyboardInterrupt
            logger.debug(f"Signal handler for {sig!r} unavailable")
    await system.serve()


def cmd_serve(args) -> None:
    """Run the periodic evaluation loop."""
    with _open_system(args) as system:
        if args.import_rules:
            system.import_rules()
        banner(
            "DeskPilot",
            f"Serving every {system.config.engine.cycle_interval_seconds:.0f}s "
            f"with {system.config.engine.worker_pool_size} worker(s)"
        )
        try:
            asyncio.run(_serve(system))
        except KeyboardInterrupt:
            logger.info("Interrupted")


def cmd_rules(args) -> None:
    """Rule administration."""
    with _open_system(args) as system:
        repo = system.rule_repository

        if args.rules_command == "list":
            rules = repo.list_rules(active_only=args.active)
            console.print(table(
                "Rules (creation order)",
                ["ID", "Name", "Active", "Version", "Conditions", "Actions", "Last executed"],
                [
                    (
                        r.id,
                        r.name,
                        "yes" if r.is_active else "no",
                        r.version,
                        len(r.trigger_conditions),
                        len(r.actions),
                        r.last_executed_at.isoformat() if r.last_executed_at else "-"
                    )
                    for r in rules
                ]
            ))
        elif args.rules_command == "import":
            imported = system.import_rules(args.directory, replace=args.replace)
            console.print(f"Imported {len(imported)} rule(s)")
        elif args.rules_command == "export":
            paths = system.export_rules(args.directory)
            console.print(f"Exported {len(paths)} rule(s)")
        elif args.rules_command in ("enable", "disable"):
            rule = repo.set_active(args.rule_id, args.rules_command == "enable")
            console.print(f"Rule {rule.id} is now {'active' if rule.is_active else 'inactive'}")
        elif args.rules_command == "delete":
            if repo.delete(args.rule_id):
                console.print(f"Deleted rule {args.rule_id}")
            else:
                console.print(f"[yellow]Rule not found: {args.rule_id}[/yellow]")
        elif args.rules_command == "test":
            ticket_ids = system.test_rule(args.rule_id)
            console.print(f"Rule {args.rule_id} would fire for {len(ticket_ids)} ticket(s): {', '.join(ticket_ids) or '-'}")


def cmd_history(args) -> None:
    """Show audit records, newest first."""
    with _open_system(args) as system:
        records = system.audit_log.query(rule_id=args.rule, ticket_id=args.ticket, limit=args.limit)
        console.print(table(
            "Execution history",
            ["Matched at", "Rule", "v", "Ticket", "Outcome", "Actions", "Superseded by", "Error"],
            [
                (
                    r.matched_at.strftime("%Y-%m-%d %H:%M:%S"),
                    r.rule_id,
                    r.rule_version,
                    r.ticket_id,
                    r.outcome.value,
                    ", ".join(f"{a.type.value}={a.target_value}" for a in r.actions_applied),
                    r.superseded_by,
                    r.error
                )
                for r in records
            ]
        ))


def cmd_status(args) -> None:
    """Show rule counts and execution history totals from storage."""
    with _open_system(args) as system:
        status = system.get_status()
        # Scheduler health lives in the serving process, so only stored data is shown
        latest = system.audit_log.query(limit=1)
        last_execution = (
            f"{latest[0].matched_at.isoformat()} ({latest[0].outcome.value}, rule {latest[0].rule_id})"
            if latest else "never"
        )
        console.print(Panel.fit(
            f"Rules: {status['rules_active']} active / {status['rules_total']} total\n"
            f"Last execution: {last_execution}\n"
            f"Outcome totals: {status['outcome_totals']}",
            title="DeskPilot",
            border_style="cyan"
        ))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DeskPilot ticket automation CLI")
    parser.add_argument("--config", help="Path to a JSON configuration file")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run one evaluation cycle now")
    run_parser.set_defaults(func=cmd_run)

    serve_parser = subparsers.add_parser("serve", help="Run the periodic evaluation loop")
    serve_parser.add_argument("--import-rules", action="store_true", help="Import rule files before serving")
    serve_parser.set_defaults(func=cmd_serve)

    rules_parser = subparsers.add_parser("rules", help="Manage rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_command", required=True)
    list_parser = rules_sub.add_parser("list", help="List rules")
    list_parser.add_argument("--active", action="store_true", help="Only active rules")
    import_parser = rules_sub.add_parser("import", help="Import YAML rule files")
    import_parser.add_argument("directory", nargs="?", help="Directory (defaults to RULES_PATH)")
    import_parser.add_argument("--replace", action="store_true", help="Update rules that already exist")
    export_parser = rules_sub.add_parser("export", help="Export rules as YAML files")
    export_parser.add_argument("directory", nargs="?", help="Directory (defaults to RULES_PATH)")
    for name, help_text in (
        ("enable", "Activate a rule"),
        ("disable", "Deactivate a rule"),
        ("delete", "Delete a rule"),
        ("test", "Dry-run a rule against active tickets"),
    ):
        sub = rules_sub.add_parser(name, help=help_text)
        sub.add_argument("rule_id")
    rules_parser.set_defaults(func=cmd_rules)

    history_parser = subparsers.add_parser("history", help="Show execution history")
    history_parser.add_argument("--rule", help="Filter by rule id")
    history_parser.add_argument("--ticket", help="Filter by ticket id")
    history_parser.add_argument("--limit", type=int, default=50)
    history_parser.set_defaults(func=cmd_history)

    status_parser = subparsers.add_parser("status", help="Show engine status")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv=None):
    setup_logging()
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return

    try:
        args.func(args)
    except DeskPilotError as e:
        logger.debug("CLI error", exc_info=True)
        console.print(Panel.fit(f"Error: {e.message}", border_style="red"))
        sys.exit(1)


if __name__ == "__main__":
    main()

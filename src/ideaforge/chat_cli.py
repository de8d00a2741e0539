"""CLI entry point for the business planning chat.

Usage:
    # Interactive chat driven by the configured provider
    ideaforge-chat

    # Question-bank mode, no API key required
    ideaforge-chat --mode rules

    # Resume a saved project and stream replies
    ideaforge-chat --project ~/.ideaforge/salon.json --stream
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .config import CompletionPolicyName, Config, EngineMode, Provider, load_config
from .models import ChatMessage, MessageType, Project
from .workflow import ProjectWorkflow, Stage, calculate_overall_progress

logger = logging.getLogger(__name__)

COMMANDS = {
    "/status": "Show current progress",
    "/knowledge": "List documented knowledge",
    "/accept <id>": "Accept a feature suggestion",
    "/decline <id>": "Decline a feature suggestion",
    "/save": "Save the project",
    "/help": "Show available commands",
    "/quit": "Exit",
}

DEFAULT_SAVE_DIR = Path.home() / ".ideaforge"


def print_message(console: Console, message: ChatMessage) -> None:
    style = "red" if message.is_error else "cyan"
    title = "Summary" if message.metadata and message.metadata.type == MessageType.SUMMARY else "Assistant"
    console.print(Panel(Markdown(message.content), title=title, border_style=style))
    for suggestion in message.suggestions:
        console.print(
            f"  [bold]{suggestion.id}[/bold] {suggestion.title} "
            f"[dim]({suggestion.priority.value}, {suggestion.category})[/dim]"
        )
    if message.suggestions:
        console.print("  [dim]Use /accept <id> or /decline <id>[/dim]")


def print_status(console: Console, workflow: ProjectWorkflow) -> None:
    progress = workflow.get_progress()
    table = Table(title=workflow.project.name, show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Stage", progress["current_stage_name"])
    table.add_row("Topic", progress["current_topic"] or "-")
    table.add_row("Completed topics", ", ".join(progress["completed_topics"]) or "-")
    table.add_row("Completed stages", ", ".join(progress["completed_stages"]) or "-")
    table.add_row("Progress", f"{progress['progress_percent']}% (archived {calculate_overall_progress(workflow.project)}%)")
    table.add_row("Knowledge entries", str(progress["knowledge_entries"]))
    pending = workflow.engine.context.pending_suggestions()
    table.add_row("Pending suggestions", ", ".join(f"{s.id} {s.title}" for s in pending) or "-")
    credentials = workflow.config.credentials
    providers = [f"{p.value} {credentials.masked(p)}" for p in credentials.configured_providers()]
    table.add_row("Providers", ", ".join(providers) or "none configured")
    console.print(table)


def print_knowledge(console: Console, workflow: ProjectWorkflow) -> None:
    table = Table(title="Knowledge")
    table.add_column("Stage")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Source")
    table.add_column("Conf.")
    for entry in workflow.knowledge:
        table.add_row(entry.stage, entry.type.value, entry.title, entry.source.value, f"{entry.confidence:.2f}")
    console.print(table)


def handle_command(console: Console, workflow: ProjectWorkflow, command: str, save_path: Path) -> None:
    name, _, arg = command.partition(" ")
    arg = arg.strip()

    if name == "/help":
        for cmd, desc in COMMANDS.items():
            console.print(f"  [bold]{cmd}[/bold]  {desc}")
    elif name == "/status":
        print_status(console, workflow)
    elif name == "/knowledge":
        print_knowledge(console, workflow)
    elif name in ("/accept", "/decline"):
        if not arg:
            console.print(f"Usage: {name} <suggestion id>")
            return
        resolve = workflow.accept_suggestion if name == "/accept" else workflow.decline_suggestion
        try:
            confirmation = resolve(arg)
        except KeyError as e:
            console.print(f"[red]{e.args[0]}[/red]")
            return
        if confirmation is None:
            console.print("[dim]That suggestion was already resolved.[/dim]")
        else:
            print_message(console, confirmation)
    elif name == "/save":
        workflow.save(save_path)
        console.print(f"Saved to {save_path}")
    else:
        console.print(f"Unknown command: {name}. Type /help for commands.")


async def run_chat(config: Config, args: argparse.Namespace, console: Console) -> None:
    """Interactive loop until /quit or EOF."""
    save_path = Path(args.project).expanduser() if args.project else None
    if save_path and save_path.exists():
        workflow = ProjectWorkflow.load(save_path, config, provider=args.provider)
        console.print(f"Resumed [bold]{workflow.project.name}[/bold] at stage {workflow.current_stage.display_name}")
    else:
        workflow = ProjectWorkflow(Project(name=args.name), config, provider=args.provider)
        save_path = save_path or DEFAULT_SAVE_DIR / f"{workflow.project.id}.json"

    def on_stage_change(old: Stage, new: Stage) -> None:
        console.rule(f"{old.display_name} complete - now entering {new.display_name}")

    def stream_token(token: str) -> None:
        console.print(token, end="", soft_wrap=True, highlight=False)

    workflow.set_on_stage_change(on_stage_change)
    print_message(console, workflow.start())

    try:
        while True:
            try:
                user_input = console.input("[bold green]> [/bold green]").strip()
            except EOFError:
                console.print("\nEOF received. Exiting.")
                break
            if not user_input:
                continue
            if user_input.lower() in ("/quit", "/exit"):
                break
            if user_input.startswith("/"):
                handle_command(console, workflow, user_input, save_path)
                continue

            result = await workflow.send(user_input, on_token=stream_token if args.stream else None)
            if args.stream:
                console.print()
                for suggestion in result.message.suggestions:
                    console.print(f"  [bold]{suggestion.id}[/bold] {suggestion.title}")
            else:
                print_message(console, result.message)
            if result.summary is not None:
                print_message(console, result.summary)
            if result.stage_completed and result.advanced_to is None:
                console.print("[bold]All stages complete![/bold]")
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
    finally:
        workflow.save(save_path)
        console.print(f"Progress saved to {save_path}")
        await workflow.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Develop a business idea stage by stage through chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  OPENAI_API_KEY, ANTHROPIC_API_KEY, GOOGLE_API_KEY   Provider credentials
  IDEAFORGE_MODE, IDEAFORGE_PROVIDER                  Defaults for --mode and --provider
        """,
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in EngineMode],
        default=None,
        help="Reply strategy: 'ai' (provider-backed) or 'rules' (question bank)",
    )
    parser.add_argument(
        "--policy",
        choices=[p.value for p in CompletionPolicyName],
        default=None,
        help="Topic completion policy (default depends on mode)",
    )
    parser.add_argument(
        "--provider", "-p",
        choices=[p.value for p in Provider],
        default=None,
        help="Provider to use instead of the first configured one",
    )
    parser.add_argument(
        "--project",
        default=None,
        help="Project file to resume and save to",
    )
    parser.add_argument(
        "--name",
        default="Untitled project",
        help="Name for a new project",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Stream assistant replies as they are generated",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser


def main(argv: Optional[list] = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    console = Console()
    try:
        config = load_config()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    if args.mode:
        config.engine.mode = EngineMode(args.mode)
    if args.policy:
        config.engine.completion_policy = CompletionPolicyName(args.policy)
    if args.provider:
        args.provider = Provider(args.provider)
        config.default_provider = args.provider

    try:
        asyncio.run(run_chat(config, args, console))
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

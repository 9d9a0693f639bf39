import argparse
import asyncio
import json
import sys
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from scenechain.billing.cost import can_afford, estimate_collection_cost
from scenechain.config.config import PipelineConfig, load_config
from scenechain.segmentation.engine import SegmentationEngine, build_constraints
from scenechain.segmentation.llm import resolve_llm_capability
from scenechain.segmentation.models import (
    ExpansionConfig,
    ExpansionStyle,
    SegmentationOptions,
    SegmentationResult,
    WarningSeverity,
)
from scenechain.segmentation.text import estimate_segment_count
from scenechain.utils.logging_setup import configure_logging

SEVERITY_STYLE = {
    WarningSeverity.ERROR: "bold red",
    WarningSeverity.WARNING: "yellow",
    WarningSeverity.INFO: "dim",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scenechain", description="Split scripts into continuity-aware video clips.")
    parser.add_argument("--config", help="Path to a TOML config file")
    sub = parser.add_subparsers(dest="command", required=True)

    seg = sub.add_parser("segment", help="Segment a script file and show the cost estimate")
    seg.add_argument("script", help="Script file, or '-' for stdin")
    seg.add_argument("--mode", choices=["ai", "hybrid", "duration", "even_split"])
    seg.add_argument("--max-segments", type=int)
    seg.add_argument("--target-duration", type=float)
    seg.add_argument("--max-tokens", type=int)
    seg.add_argument("--expand", action="store_true", help="Enable semantic expansion")
    seg.add_argument("--style", choices=[s.value for s in ExpansionStyle])
    seg.add_argument("--dialogue", action="store_true", help="Enable dialogue implantation")
    seg.add_argument("--features", help="Comma-separated pipeline features for the cost estimate")
    seg.add_argument("--balance", type=int, help="Credit balance to check the estimate against")
    seg.add_argument("--json", action="store_true", help="Print the raw result as JSON")

    sub.add_parser("serve", help="Run the HTTP API")
    return parser


def _read_script(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def render_result(console: Console, result: SegmentationResult, features: List[str], balance: Optional[int], unlimited: bool) -> None:
    meta = result.metadata
    table = Table(title=f"{meta.segment_count} segments ({meta.mode_used.display_name})")
    table.add_column("#", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Conf.", justify="right")
    table.add_column("Reason")
    table.add_column("Text", overflow="fold")
    for segment in result.segments:
        preview = segment.text if len(segment.text) <= 80 else segment.text[:77] + "..."
        table.add_row(
            str(segment.order + 1),
            f"{segment.duration:.1f}s",
            str(segment.estimated_tokens),
            f"{segment.confidence:.2f}",
            segment.split_reason,
            preview,
        )
    console.print(table)

    if meta.fallback_used:
        console.print(f"[yellow]Used {meta.mode_used.display_name} instead of {meta.requested_mode.display_name}: {meta.fallback_reason}[/]")
    for warning in result.warnings:
        console.print(f"[{SEVERITY_STYLE[warning.severity]}]{warning.severity.value}: {warning.message}[/]")

    breakdown = estimate_collection_cost(result.segments, features)
    body = breakdown.format_breakdown()
    if balance is not None:
        affordable = can_afford(breakdown.total_tokens, balance, unlimited)
        body += f"\nBalance: {balance} credits - " + ("[green]affordable[/]" if affordable else "[red]insufficient[/]")
    console.print(Panel(body, title="Cost estimate"))


async def _run_segment(args, config) -> int:
    console = Console()
    pipeline = PipelineConfig.from_config(config)
    script = _read_script(args.script)

    constraints = build_constraints(
        max_segments=args.max_segments or pipeline.max_segments,
        max_tokens_per_segment=args.max_tokens or config.get("max_tokens_per_segment"),
        target_duration=args.target_duration or pipeline.target_duration,
        min_duration=config.get("min_duration"),
        max_duration=config.get("max_duration"),
    )
    options = SegmentationOptions(
        enable_semantic_expansion=args.expand or pipeline.enable_semantic_expansion,
        enable_dialogue_implantation=args.dialogue or pipeline.enable_dialogue_implantation,
        expansion=ExpansionConfig(style=ExpansionStyle(args.style or pipeline.expansion_style)),
        llm_timeout_sec=config.get("llm_timeout_sec", 60.0),
    )
    mode = args.mode or pipeline.mode
    if mode in ("ai", "hybrid"):
        console.print(f"[dim]Estimated segments: ~{estimate_segment_count(script, constraints.target_duration, constraints.max_segments)}[/]")

    engine = SegmentationEngine(llm=resolve_llm_capability(config), options=options)
    result = await engine.segment(script, mode, constraints)

    features = (
        [f.strip() for f in args.features.split(",") if f.strip()]
        if args.features is not None else config.get("pipeline_features", [])
    )
    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        render_result(console, result, features, args.balance, bool(config.get("unlimited_credits")))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
        configure_logging(
            log_file=config["log_file"],
            level=config["log_level"],
            enable_console=bool(config.get("log_console")),
        )
        if args.command == "serve":
            from scenechain.server import main as serve

            serve(config)
            return 0
        return asyncio.run(_run_segment(args, config))
    except (OSError, ValueError) as e:
        Console(stderr=True).print(f"[bold red]Error:[/bold red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

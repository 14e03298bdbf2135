"""CLI for session-graph."""

import json
import logging
from pathlib import Path
from typing import Any

import click

from .analysis.path import calculate_path
from .analysis.scoring import score_action
from .analysis.thresholds import apply_thresholds
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig, load_config
from .execution.machine import ExecutionStateMachine
from .graph.snapshot import diff_snapshots
from .layout.engine import DynamicLayoutEngine
from .state.data_store import SessionDataStore


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid JSON in {path}: {exc}") from exc


def _read_events(path: Path) -> list[dict[str, Any]]:
    """Events from a JSON array, an {"events": [...]} object, or JSON lines."""
    if path.suffix == ".jsonl":
        events = []
        for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError as exc:
                raise SystemExit(f"Invalid JSON on line {number} of {path}: {exc}") from exc
        return events

    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("events", [])
    if not isinstance(data, list):
        raise SystemExit(f"Expected a list of events in {path}")
    return data


def _load_store(ctx: click.Context, session_file: Path) -> SessionDataStore:
    data = _read_json(session_file)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected a session object in {session_file}")
    store = SessionDataStore(config=ctx.obj["config"])
    store.load_session(data)
    return store


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML engine configuration",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None):
    """Session Graph - live clinical reasoning graph engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config: EngineConfig = DEFAULT_ENGINE_CONFIG
    if config_path is not None:
        try:
            config = load_config(config_path)
        except (FileNotFoundError, ValueError) as exc:
            raise SystemExit(str(exc)) from exc
    ctx.obj = {"config": config}


@cli.command()
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--session-id", default="replay", help="Session id to initialize with")
@click.option("--json", "as_json", is_flag=True, help="Print the final graph as JSON")
@click.pass_context
def replay(ctx: click.Context, events_file: Path, session_id: str, as_json: bool):
    """Replay recorded execution events through the state machine."""
    events = _read_events(events_file)
    machine = ExecutionStateMachine(ctx.obj["config"])
    machine.initialize(session_id)

    applied = sum(1 for payload in events if machine.process_payload(payload))
    skipped = len(events) - applied

    if as_json:
        view = machine.graph_view()
        click.echo(
            json.dumps(
                {
                    "nodes": [
                        {
                            "id": n.id,
                            "name": n.name,
                            "role": n.role,
                            "state": n.state.value if n.state else None,
                            "layer": n.layer,
                            "x": n.x,
                            "y": n.y,
                        }
                        for n in view["nodes"]
                    ],
                    "links": [
                        {"id": l.id, "source": l.source, "target": l.target, "type": l.relationship}
                        for l in view["links"]
                    ],
                },
                indent=2,
            )
        )
        return

    metrics = machine.metrics()
    click.echo(f"Events: {len(events)}  Applied: {applied}  Skipped: {skipped}")
    click.echo(f"Status: {metrics.status}")
    click.echo(
        f"Nodes: {metrics.total_nodes}  Completed: {metrics.completed_nodes}  "
        f"Failed: {metrics.failed_nodes}  Active: {metrics.active_nodes}  "
        f"Pending: {metrics.pending_nodes}"
    )
    click.echo(f"Success rate: {metrics.success_rate:.1f}%")
    click.echo(f"Cost: {metrics.total_cost:.4f}  Duration: {metrics.total_duration:.0f}ms")
    click.echo(f"Graph: {machine.graph.get_stats()}")


@cli.command()
@click.argument("flow_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--width", type=float, default=None, help="Viewport width")
@click.option("--height", type=float, default=None, help="Viewport height")
@click.pass_context
def layout(ctx: click.Context, flow_file: Path, width: float | None, height: float | None):
    """Lay out a declarative expert flow and print node positions."""
    flow = _read_json(flow_file)
    if not isinstance(flow, dict):
        raise SystemExit(f"Expected a flow object in {flow_file}")

    engine = DynamicLayoutEngine(ctx.obj["config"].layout)
    result = engine.generate_layout(flow)
    if width is not None or height is not None:
        result = engine.resize(
            width if width is not None else engine.config.width,
            height if height is not None else engine.config.height,
        )

    for node in sorted(result.nodes, key=lambda n: (n.layer, n.y)):
        click.echo(f"L{node.layer}  ({node.x:7.1f}, {node.y:7.1f})  {node.id}  [{node.type}]")
    click.echo(f"\n{len(result.nodes)} nodes, {len(result.links)} links")
    ignored = engine.ignored_links()
    if ignored:
        click.echo(f"Ignored for layering: {', '.join(ignored)}")


@cli.command()
@click.argument("session_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--pending", is_flag=True, help="Only questions awaiting an answer")
@click.pass_context
def questions(ctx: click.Context, session_file: Path, pending: bool):
    """List follow-up questions ranked by composite score."""
    store = _load_store(ctx, session_file)
    rows = store.sorted_pending_questions.get() if pending else store.sorted_questions.get()
    if not rows:
        click.echo("No questions.")
        return

    session = store.get_current_session_data()
    index = store.relationship_index.get()
    scoring = ctx.obj["config"].scoring
    for i, question in enumerate(rows, 1):
        scored = score_action(question, session, index, scoring)
        text = question.get("question") or question.get("content") or question.get("id")
        click.echo(f"{i}. [{scored.score:.2f}] {text} ({question.get('status', 'pending')})")


@cli.command("filter")
@click.argument("session_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--symptoms", "symptom_threshold", type=float, default=None, help="Max severity shown")
@click.option("--diagnoses", "diagnosis_threshold", type=float, default=None, help="Min probability shown")
@click.option("--treatments", "treatment_threshold", type=float, default=None, help="Max priority shown")
@click.option(
    "--show-all",
    type=click.Choice(["symptoms", "diagnoses", "treatments"]),
    multiple=True,
    help="Toggle show-all for a node type",
)
@click.pass_context
def filter_view(
    ctx: click.Context,
    session_file: Path,
    symptom_threshold: float | None,
    diagnosis_threshold: float | None,
    treatment_threshold: float | None,
    show_all: tuple[str, ...],
):
    """Apply thresholds to the flow view and report what stays visible."""
    store = _load_store(ctx, session_file)
    thresholds = store.thresholds.get()
    if symptom_threshold is not None:
        thresholds = thresholds.with_symptom_threshold(symptom_threshold)
    if diagnosis_threshold is not None:
        thresholds = thresholds.with_diagnosis_threshold(diagnosis_threshold)
    if treatment_threshold is not None:
        thresholds = thresholds.with_treatment_threshold(treatment_threshold)
    for kind in show_all:
        thresholds = thresholds.toggled(kind)

    view = store.sankey_data.get()
    result = apply_thresholds(view, thresholds)
    visible = result.visible
    hidden = result.hidden_counts

    for node in visible.nodes:
        click.echo(f"  [{node.type}] {node.name} ({node.id})")
    click.echo(
        f"\nVisible: {len(visible.nodes)} nodes, {len(visible.links)} links  "
        f"Hidden: symptoms={hidden.symptoms} diagnoses={hidden.diagnoses} "
        f"treatments={hidden.treatments}"
    )


@cli.command()
@click.argument("session_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("node_id", type=str)
@click.pass_context
def path(ctx: click.Context, session_file: Path, node_id: str):
    """Show the one-hop highlight path around a node."""
    store = _load_store(ctx, session_file)
    result = calculate_path(node_id, store.relationship_index.get())
    if result is None:
        click.echo(f"No relationships for {node_id}")
        return

    click.echo(f"Path from {store.get_node_display_text(result.trigger)}:")
    for other in result.nodes:
        if other != result.trigger:
            click.echo(f"  - {store.get_node_display_text(other)} ({other})")
    click.echo(f"Links: {', '.join(result.links)}")


@cli.command()
@click.argument("old_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("new_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def diff(old_file: Path, new_file: Path):
    """Diff two session snapshots."""
    old_snapshot = _read_json(old_file)
    new_snapshot = _read_json(new_file)
    if not isinstance(old_snapshot, dict) or not isinstance(new_snapshot, dict):
        raise SystemExit("Both snapshots must be JSON objects")

    result = diff_snapshots(old_snapshot, new_snapshot)
    for group, changes in result["nodes"].items():
        parts = [f"{key}={','.join(ids)}" for key, ids in changes.items() if ids]
        if parts:
            click.echo(f"{group}: {' '.join(parts)}")

    summary = result["summary"]
    click.echo(
        f"added={summary['added']} removed={summary['removed']} updated={summary['updated']}"
    )


if __name__ == "__main__":
    cli()

"""CLI entry point for agentsim."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import TYPE_CHECKING

import typer

from agentsim import __version__
from agentsim.config import AgentsimConfig
from agentsim.errors import DefinitionError
from agentsim.session.wire import EventType, Wire, WireEvent

if TYPE_CHECKING:
    from agentsim.definition import Definition
    from agentsim.engine.orchestrator import Orchestrator
    from agentsim.engine.process import LinearProcess

app = typer.Typer(
    name="agentsim",
    help="Drive populations of LLM-backed agents through branching processes.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load(definition_path: str, config: AgentsimConfig) -> Definition:
    from agentsim.definition import load_definition
    from agentsim.llm.capability import create_capability

    if not os.path.isfile(definition_path):
        typer.echo(f"Error: Definition not found: {definition_path}", err=True)
        raise typer.Exit(1)

    capability = create_capability(config=config.llm)
    try:
        definition = load_definition(definition_path, capability, config.process)
    except DefinitionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    return definition


@app.command()
def run(
    definition: str = typer.Argument(help="Path to a YAML simulation definition."),
    process: str | None = typer.Option(
        None,
        "--process",
        "-p",
        help="Process id to run (default: 'run' from the definition, else the last).",
    ),
    model: str | None = typer.Option(
        None,
        "--model",
        "-m",
        help="LLM model to use (default: from env/config).",
    ),
    delay: float | None = typer.Option(
        None, "--delay", "-d", help="Seconds to pause between steps."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run a simulation and print the resulting agents as JSON."""
    setup_logging(verbose)

    config = AgentsimConfig.load(config_file)
    if model:
        config.llm.model = model
    loaded = _load(definition, config)
    if process:
        loaded.run = process

    try:
        entry = loaded.entry
    except DefinitionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    typer.echo(f"agentsim v{__version__}")
    typer.echo(f"Definition: {definition}")
    typer.echo(f"Process: {entry.id}")
    typer.echo(f"Model: {config.llm.model}")
    typer.echo("---")

    wire = Wire()
    orchestrator = loaded.build_orchestrator(config.simulation, wire=wire)
    if delay is not None:
        orchestrator.config.delay = delay
    asyncio.run(_run_with_progress(orchestrator, entry, wire))

    typer.echo(json.dumps([a.to_dict() for a in orchestrator.list_agents()], indent=2))
    _print_usage(orchestrator)


def format_event(event: WireEvent) -> str | None:
    """One progress line per event, or ``None`` for events not shown."""
    d = event.data
    if event.type == EventType.STEP_BEGIN:
        return f"[Step {d.get('step', 0)}] {d.get('process_id', '?')}"
    if event.type == EventType.NODE_APPLIED:
        changes = json.dumps(d.get("changes", {}))
        line = f"  {d.get('agent_id', '?')} < {d.get('node_id', '?')}: {changes}"
        reasoning = d.get("reasoning")
        return f"{line} ({reasoning})" if reasoning else line
    if event.type == EventType.NODE_FAILED:
        return f"  {d.get('agent_id', '?')} x {d.get('node_id', '?')}: {d.get('error', '')}"
    if event.type == EventType.BRANCH_SELECTED:
        return f"  {d.get('agent_id', '?')} -> {d.get('branch_id', '?')}"
    if event.type == EventType.ERROR:
        return f"ERROR: {d.get('error', 'unknown error')}"
    return None


async def _run_with_progress(
    orchestrator: Orchestrator, entry: LinearProcess, wire: Wire
) -> None:
    # subscribe before the run starts so RUN_BEGIN is not missed
    queue = wire.subscribe()

    async def _consume_wire() -> None:
        while True:
            event = await queue.get()
            if event is None:
                break
            line = format_event(event)
            if line is not None:
                typer.echo(line, err=True)
        wire.unsubscribe(queue)

    consumer_task = asyncio.create_task(_consume_wire())
    try:
        await orchestrator.run_to_completion(entry)
    finally:
        # Signal wire close and wait for consumer to finish
        wire.close()
        await consumer_task


def _print_usage(orchestrator: Orchestrator) -> None:
    usage = orchestrator.aggregate_usage()
    typer.echo("---")
    typer.echo(f"Calls: {usage.calls}")
    typer.echo(f"Input tokens: {usage.input_tokens}")
    typer.echo(f"Output tokens: {usage.output_tokens}")
    typer.echo(f"Estimated cost: ${usage.estimated_cost:.6f}")


@app.command()
def schema(
    definition: str = typer.Argument(help="Path to a YAML simulation definition."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Print the response schema inferred from each agent's attributes."""
    from agentsim.llm.schema import create_schema

    config = AgentsimConfig.load(config_file)
    loaded = _load(definition, config)
    for i, agent in enumerate(loaded.agents):
        label = agent.id or f"agent[{i}]"
        typer.echo(f"{label}: {json.dumps(create_schema(agent.attributes), indent=2)}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

"""CLI entry point for devflow."""

import asyncio
import json
import sys
from pathlib import Path

import click
import structlog

from devflow.config.settings import DevflowSettings
from devflow.engine.state_manager import StateManager
from devflow.enums import ArtifactKind
from devflow.exceptions import ConfigurationError, DevflowError
from devflow.generation.agreement import AgreementEvaluator
from devflow.generation.candidates import CandidateGenerator
from devflow.generation.parsing import parse_artifact, summarize
from devflow.generation.prompts import PromptRenderer
from devflow.generation.scoring import Scorer
from devflow.generation.synthesizer import Synthesizer
from devflow.models.domain import Task
from devflow.models.generation import Candidate, GenerationRequest, ScoringContext, SynthesisResult
from devflow.providers import build_backends
from devflow.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)

KIND_CHOICE = click.Choice([kind.value for kind in ArtifactKind])


@click.group()
@click.option("--config", default="devflow.yaml", help="Path to configuration file")
@click.option("--log-level", default="WARNING", help="Logging level")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str) -> None:
    """devflow: ticket-to-merge delivery with multi-backend generation."""
    configure_logging(log_level)

    # synthesize works on local files and needs no configuration
    if ctx.invoked_subcommand in ["synthesize"]:
        ctx.obj = {"settings": None}
        return

    config_path = Path(config)
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config}", err=True)
        sys.exit(1)

    try:
        settings = DevflowSettings.from_yaml(str(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


@cli.group()
def runs() -> None:
    """Inspect persisted delivery runs."""


@runs.command("list")
@click.option("--active", is_flag=True, help="Only show running runs")
@click.pass_context
def list_runs(ctx: click.Context, active: bool) -> None:
    """List runs with their stage and status."""
    settings: DevflowSettings = ctx.obj["settings"]
    state = StateManager(settings.state_dir)
    all_runs = asyncio.run(state.list_runs())

    shown = [r for r in all_runs if not active or r["status"] == "running"]
    if not shown:
        click.echo("No runs found")
        return

    for run in shown:
        click.echo(
            f"{run['run_id']}  ticket={run['task_id']}  status={run['status']}  "
            f"stage={run['current_stage']}  fix_attempts={run['fix_attempts']}"
        )


@runs.command("show")
@click.argument("run_id")
@click.option("--journal", is_flag=True, help="Include the activity journal")
@click.pass_context
def show_run(ctx: click.Context, run_id: str, journal: bool) -> None:
    """Show one run as JSON."""
    settings: DevflowSettings = ctx.obj["settings"]
    state = StateManager(settings.state_dir)
    try:
        run = dict(asyncio.run(state.load_run(run_id)))
    except DevflowError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if not journal:
        run["history"] = f"{len(run['history'])} entries"
    click.echo(json.dumps(run, indent=2))


@cli.command()
@click.option("--kind", type=KIND_CHOICE, required=True, help="Artifact kind of the files")
@click.option("--language", default=None, help="Project language for relevance scoring")
@click.option("--framework", default=None, help="Project framework for relevance scoring")
@click.option("--known-path", "known_paths", multiple=True, help="Known project path (repeatable)")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
def synthesize(
    kind: str,
    language: str | None,
    framework: str | None,
    known_paths: tuple[str, ...],
    files: tuple[Path, ...],
) -> None:
    """Score artifact files and pick a winner.

    Each FILE holds one generator answer; its name (without extension) is
    used as the backend id.
    """
    artifact_kind = ArtifactKind(kind)
    context = ScoringContext(language=language, framework=framework, known_paths=list(known_paths))
    scorer = Scorer()

    candidates = []
    for path in files:
        backend_id = path.stem
        try:
            artifact = parse_artifact(artifact_kind, path.read_text())
        except DevflowError as e:
            candidates.append(Candidate.sentinel(backend_id, e.message))
            continue
        score = scorer.score(artifact, context)
        candidates.append(
            Candidate(
                backend_id=backend_id,
                artifact=artifact,
                score=score,
                reasoning=f"Rubric score {score:.0f}/100",
                summary=summarize(artifact),
            )
        )

    try:
        result = Synthesizer(priority=[p.stem for p in files]).synthesize(candidates, artifact_kind)
    except DevflowError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    _echo_result(result)


@cli.command()
@click.option("--kind", type=KIND_CHOICE, required=True, help="Artifact kind to generate")
@click.option("--title", required=True, help="Ticket title")
@click.option("--description", default="", help="Ticket description")
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), help="Write the winning artifact here")
@click.pass_context
def generate(ctx: click.Context, kind: str, title: str, description: str, output: Path | None) -> None:
    """Generate an artifact with every configured backend and synthesize it."""
    settings: DevflowSettings = ctx.obj["settings"]
    artifact_kind = ArtifactKind(kind)
    if artifact_kind == ArtifactKind.FAILURE_ANALYSIS:
        click.echo("Error: failure_analysis is only generated from failing test runs", err=True)
        sys.exit(1)
    if not settings.generation.backends:
        click.echo("Error: No generation backends configured", err=True)
        sys.exit(1)

    try:
        result = asyncio.run(_generate(settings, artifact_kind, Task(id="adhoc", title=title, description=description)))
    except DevflowError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("generate_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)

    _echo_result(result)
    if output is not None:
        output.write_text(json.dumps(result.winner.artifact.model_dump(mode="json"), indent=2))
        click.echo(f"Winning artifact written to {output}")


async def _generate(settings: DevflowSettings, kind: ArtifactKind, task: Task) -> SynthesisResult:
    backends = build_backends(settings.generation)
    try:
        prompt = PromptRenderer().render_artifact(kind, task=task, project=settings.project, previous={})
        generator = CandidateGenerator(backends, timeout=settings.generation.timeout_seconds)
        project = settings.project
        candidates = await generator.generate(
            GenerationRequest(kind=kind, prompt=prompt, backend_ids=settings.generation.backend_ids),
            ScoringContext(language=project.language, framework=project.framework, known_paths=project.known_paths),
        )
    finally:
        for backend in backends.values():
            await backend.close()

    synthesizer = Synthesizer(
        weights=settings.generation.weights,
        priority=settings.generation.backend_ids,
        evaluator=AgreementEvaluator(settings.generation.agreement_normalizer),
    )
    return synthesizer.synthesize(candidates, kind)


def _echo_result(result: SynthesisResult) -> None:
    click.echo(result.explanation)
    failed = [c for c in result.candidates if c.failed]
    for candidate in failed:
        click.echo(f"{candidate.backend_id}: {candidate.reasoning}", err=True)


if __name__ == "__main__":
    cli()

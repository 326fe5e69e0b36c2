"""
AI Grader CLI Application.

Provides a command-line interface for grading essays and reading-comprehension
answers, regrading stored submissions, and checking LLM connectivity.
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ai_grader.config import ConfigurationError, Settings, get_settings
from ai_grader.grading import GradingEngine, LLMError, MalformedResponseError, merge_answers
from ai_grader.log import setup_logging
from ai_grader.models import Feedback, ProblemType, SimilarityCheckResult
from ai_grader.rubric import RubricParseError, RubricParser
from ai_grader.services import GradingService, NothingToGradeError, RegradeOrchestrator
from ai_grader.storage import JsonFileStore, NotFoundError, StorageError

# Create Typer app
app = typer.Typer(
    name="ai-grader",
    help="LLM-backed grading for essays and reading comprehension",
    add_completion=False,
)

console = Console()

_state: dict[str, Path | None] = {"data_dir": None}


@app.callback()
def main(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Log level (defaults to LOG_LEVEL setting)"),
    ] = None,
    log_file: Annotated[
        Optional[Path],
        typer.Option("--log-file", help="Also write DEBUG logs to this file"),
    ] = None,
    data_dir: Annotated[
        Optional[Path],
        typer.Option("--data-dir", help="Directory with problems.json and submissions.json"),
    ] = None,
) -> None:
    """Configure logging and storage for all commands."""
    settings = get_settings()
    setup_logging(level=log_level or settings.log_level, log_file=log_file)
    _state["data_dir"] = data_dir


def _store(settings: Settings) -> JsonFileStore:
    return JsonFileStore(_state["data_dir"] or settings.data_directory)


def _service(settings: Settings) -> GradingService:
    store = _store(settings)
    return GradingService(GradingEngine(settings), store.problems, store.submissions)


def _fail(label: str, error: Exception) -> None:
    console.print(f"[red]{label}:[/red] {error}")
    raise typer.Exit(1)


@app.command("grade-essay")
def grade_essay(
    prompt_file: Annotated[Path, typer.Argument(help="File with the assignment prompt")],
    essay_file: Annotated[Path, typer.Argument(help="File with the student essay")],
    rubric_file: Annotated[
        Optional[Path],
        typer.Option("--rubric", "-r", help="File with the free-text rubric"),
    ] = None,
    max_score: Annotated[
        Optional[float],
        typer.Option("--max-score", "-m", help="Scale of the final score"),
    ] = None,
    problem_id: Annotated[
        Optional[str],
        typer.Option("--problem", "-p", help="Stored problem for reference example and similarity"),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print raw JSON")] = False,
) -> None:
    """
    Grade an essay file against a rubric.

    With --problem, the latest teacher-corrected essay of that problem calibrates
    the feedback and the essay is compared with the problem's earlier essays.
    """
    try:
        settings = get_settings()

        for path in (prompt_file, essay_file, rubric_file):
            if path is not None and not path.exists():
                console.print(f"[red]Error:[/red] File not found: {path}")
                raise typer.Exit(1)

        prompt = prompt_file.read_text(encoding="utf-8")
        essay = essay_file.read_text(encoding="utf-8")
        raw_rubric = rubric_file.read_text(encoding="utf-8") if rubric_file else None

        similarity: SimilarityCheckResult | None = None
        with _spinner("Grading essay... (this may take a moment)"):
            if problem_id:
                outcome = asyncio.run(
                    _service(settings).grade_essay_submission(
                        problem_id=problem_id,
                        prompt=prompt,
                        essay=essay,
                        raw_rubric=raw_rubric,
                        custom_max_score=max_score,
                    )
                )
                feedback, similarity = outcome.feedback, outcome.similarity_check
            else:
                engine = GradingEngine(settings)
                feedback = asyncio.run(
                    engine.grade_essay(prompt, essay, raw_rubric=raw_rubric, custom_max_score=max_score)
                )

        if as_json:
            payload = {"feedback": feedback.to_json_dict()}
            if similarity is not None:
                payload["similarityCheck"] = similarity.to_json_dict()
            console.print_json(json.dumps(payload, ensure_ascii=False))
            return

        _display_feedback(feedback)
        if similarity is not None:
            console.print(
                Panel(
                    f"{similarity.similarity_percentage:.0f}% - {similarity.explanation}",
                    title="Similarity",
                )
            )

    except (ConfigurationError, StorageError) as e:
        _fail("Configuration Error", e)
    except LLMError as e:
        _fail("LLM Error", e)
    except MalformedResponseError as e:
        _fail("Response Error", e)


@app.command("grade-submission")
def grade_submission(
    submission_id: Annotated[str, typer.Argument(help="Stored submission id")],
) -> None:
    """Grade a stored submission and save the feedback."""
    try:
        settings = get_settings()
        with _spinner(f"Grading {submission_id}..."):
            submission = asyncio.run(_service(settings).grade_submission(submission_id))
        _display_feedback(submission.feedback)
        console.print(f"\n[green]Saved feedback for {submission_id}[/green]")

    except NotFoundError as e:
        _fail("Not Found", e)
    except NothingToGradeError as e:
        _fail("Error", e)
    except (ConfigurationError, StorageError) as e:
        _fail("Configuration Error", e)
    except LLMError as e:
        _fail("LLM Error", e)
    except MalformedResponseError as e:
        _fail("Response Error", e)


@app.command()
def regrade(
    problem_id: Annotated[str, typer.Argument(help="Problem whose submissions are regraded")],
    submission_ids: Annotated[
        Optional[list[str]],
        typer.Option("--id", help="Only regrade this submission (repeatable)"),
    ] = None,
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-c", min=1, max=8, help="Submissions graded at once"),
    ] = None,
) -> None:
    """
    Regrade all (or selected) submissions of a problem.

    Teacher corrections on regraded submissions are cleared.
    """
    try:
        settings = get_settings()
        orchestrator = RegradeOrchestrator(_service(settings), concurrency=concurrency)

        with _spinner(f"Regrading problem {problem_id}..."):
            if submission_ids:
                result = asyncio.run(orchestrator.regrade_selected(problem_id, submission_ids))
            else:
                result = asyncio.run(orchestrator.regrade_all(problem_id))

        console.print(
            f"[green]Updated {result.updated_count}[/green] of {result.attempted_count} submissions"
        )
        if result.failed_ids:
            console.print(f"[yellow]Failed:[/yellow] {', '.join(result.failed_ids)}")

    except NotFoundError as e:
        _fail("Not Found", e)
    except (ConfigurationError, StorageError) as e:
        _fail("Configuration Error", e)


@app.command()
def distribute(
    problem_id: Annotated[str, typer.Argument(help="Reading-comprehension problem")],
    text_file: Annotated[Path, typer.Argument(help="File with the student's free-form answers")],
    as_json: Annotated[bool, typer.Option("--json", help="Print raw JSON")] = False,
) -> None:
    """Split free-form answers across the questions of a problem."""
    try:
        settings = get_settings()
        if not text_file.exists():
            console.print(f"[red]Error:[/red] File not found: {text_file}")
            raise typer.Exit(1)

        problem = _store(settings).problems.get(problem_id)
        if problem.type != ProblemType.READING_COMPREHENSION:
            console.print(f"[red]Error:[/red] Problem {problem_id} is not reading comprehension")
            raise typer.Exit(1)

        engine = GradingEngine(settings)
        with _spinner("Distributing answers..."):
            entries = asyncio.run(
                engine.distribute_answers(text_file.read_text(encoding="utf-8"), problem.questions)
            )
        answers = merge_answers([], entries)

        if as_json:
            console.print_json(json.dumps([a.to_json_dict() for a in answers], ensure_ascii=False))
            return

        table = Table(title="Distributed Answers")
        table.add_column("#", justify="right")
        table.add_column("Question", style="cyan")
        table.add_column("Answer")

        by_question = {a.question_id: a for a in answers}
        for number, question in enumerate(problem.questions, start=1):
            answer = by_question.get(question.id)
            if answer is None:
                shown = "[dim]-[/dim]"
            else:
                shown = answer.selected_option_id or answer.written_answer or ""
            table.add_row(str(number), question.question_text[:60], shown)
        console.print(table)

    except NotFoundError as e:
        _fail("Not Found", e)
    except (ConfigurationError, StorageError) as e:
        _fail("Configuration Error", e)
    except LLMError as e:
        _fail("LLM Error", e)
    except MalformedResponseError as e:
        _fail("Response Error", e)


@app.command("parse-rubric")
def parse_rubric(
    rubric_file: Annotated[Path, typer.Argument(help="File with the free-text rubric")],
    local: Annotated[
        bool,
        typer.Option("--local", help="Use the built-in parser instead of the LLM"),
    ] = False,
) -> None:
    """Extract criteria and maximum scores from a rubric."""
    try:
        if not rubric_file.exists():
            console.print(f"[red]Error:[/red] File not found: {rubric_file}")
            raise typer.Exit(1)

        content = rubric_file.read_text(encoding="utf-8")
        if local:
            items = RubricParser().parse(content)
        else:
            engine = GradingEngine(get_settings())
            with _spinner("Parsing rubric..."):
                items = asyncio.run(engine.parse_rubric(content))

        table = Table(title="Criteria")
        table.add_column("Criterion", style="cyan")
        table.add_column("Max Score", justify="right")
        for item in items:
            table.add_row(item.criterion, f"{item.max_score:g}")
        console.print(table)
        console.print(f"\n[bold]Total:[/bold] {sum(i.max_score for i in items):g}")

    except RubricParseError as e:
        _fail("Rubric Parse Error", e)
    except ConfigurationError as e:
        _fail("Configuration Error", e)
    except LLMError as e:
        _fail("LLM Error", e)
    except MalformedResponseError as e:
        _fail("Response Error", e)


@app.command()
def health() -> None:
    """
    Check if the grading system is operational.

    Verifies configuration and API connectivity.
    """
    try:
        settings = get_settings()
        console.print("[bold]AI Grader Health Check[/bold]\n")

        console.print("[dim]Checking configuration...[/dim]")
        console.print(f"  API Base URL: {settings.llm_base_url}")
        console.print(f"  Model: {settings.llm_model}")
        console.print(f"  Retries: {settings.retry_max_attempts}")
        console.print(f"  Data Directory: {_state['data_dir'] or settings.data_directory}")

        console.print("\n[dim]Checking API connectivity...[/dim]")
        status = asyncio.run(GradingEngine(settings).health_check())

        if status.success:
            console.print(f"[green]✓ {status.message}[/green] ({status.latency_ms}ms)")
        else:
            console.print(f"[red]✗ API is not reachable:[/red] {status.message}")
            raise typer.Exit(1)

        console.print("\n[green]All systems operational[/green]")

    except ConfigurationError as e:
        _fail("Configuration Error", e)


def _spinner(description: str) -> Progress:
    """Transient spinner shown while an LLM call runs."""
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )
    progress.add_task(description, total=None)
    return progress


def _display_feedback(feedback: Feedback | None) -> None:
    """Display grading results in a formatted table."""
    if feedback is None:
        return

    percentage = feedback.total_score / feedback.max_score * 100 if feedback.max_score else 0.0
    score_color = "green" if percentage >= 70 else "yellow" if percentage >= 50 else "red"
    console.print(
        Panel(
            f"[{score_color}][bold]{feedback.total_score:g} / {feedback.max_score:g}[/bold] "
            f"({percentage:.1f}%)[/{score_color}]",
            title="Final Score",
        )
    )

    table = Table(title="Criteria Breakdown")
    table.add_column("Criterion", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Feedback")
    for item in feedback.detailed_feedback:
        table.add_row(item.criterion, f"{item.score:g}", item.feedback)
    console.print(table)

    if feedback.general_suggestions:
        console.print(
            Panel("\n".join(f"• {s}" for s in feedback.general_suggestions), title="Suggestions")
        )


if __name__ == "__main__":
    app()

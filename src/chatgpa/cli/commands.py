"""CLI commands for ChatGPA.

Commands:
- serve: run the API with uvicorn
- init-db: create the database schema
- grant-tokens: top up a user's token balances
- grade: grade a quiz file against a responses file offline
"""

import json
from pathlib import Path

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from chatgpa.config.app_config import load_app_config
from chatgpa.config.logging_config import configure_logging
from chatgpa.core.grader import Question, grade_submission
from chatgpa.db.database import init_db
from chatgpa.db.tokens_repository import grant_tokens as do_grant_tokens
from chatgpa.llm.client import LLMClient, LLMConfig

app = typer.Typer(
    name="chatgpa",
    help="ChatGPA API server and maintenance commands.",
    no_args_is_help=True,
)

console = Console()


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def _read_json(path: Path, what: str) -> object:
    if not path.exists():
        console.print(f"[red]✗ {what} not found: {path}[/red]")
        raise typer.Exit(code=1)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]✗ {what} is not valid JSON: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
) -> None:
    """Run the API server."""
    configure_logging(log_level, json_output=True)
    console.print(f"[blue]Starting ChatGPA API on http://{host}:{port}[/blue]")
    uvicorn.run("chatgpa.web.api:app", host=host, port=port, reload=reload, log_level=log_level.lower())


@app.command(name="init-db")
def init_database(
    db_path: str | None = typer.Option(None, "--db", help="Database file (overrides config)"),
) -> None:
    """Create the database schema (idempotent)."""
    path = Path(db_path) if db_path else load_app_config().db_path
    init_db(path)
    console.print(f"[green]✓ Database ready[/green] [dim]{path}[/dim]")


@app.command(name="grant-tokens")
def grant_tokens(
    user_id: str = typer.Argument(..., help="User id (uuid)"),
    personal: int = typer.Option(0, "--personal", help="Tokens added to the personal balance"),
    reserve: int = typer.Option(0, "--reserve", help="Tokens added to the reserve"),
    pool_bonus: int = typer.Option(0, "--pool-bonus", help="Tokens added to the pool bonus"),
    db_path: str | None = typer.Option(None, "--db", help="Database file (overrides config)"),
) -> None:
    """Top up a user's token balances."""
    if min(personal, reserve, pool_bonus) < 0:
        console.print("[red]✗ Grants must not be negative[/red]")
        raise typer.Exit(code=1)

    init_db(Path(db_path) if db_path else load_app_config().db_path)
    balance = do_grant_tokens(user_id, personal=personal, reserve=reserve, pool_bonus=pool_bonus)

    console.print(f"[green]✓ Tokens granted to {user_id}[/green]")
    console.print(f"  [dim]personal:[/dim]   {balance.personal}")
    console.print(f"  [dim]reserve:[/dim]    {balance.reserve}")
    console.print(f"  [dim]pool_bonus:[/dim] {balance.pool_bonus}")
    console.print(f"  [dim]remaining:[/dim]  {balance.remaining}")


@app.command()
def grade(
    quiz_file: str = typer.Argument(..., help="Quiz JSON: {\"questions\": [...]} or a list of questions"),
    responses_file: str = typer.Argument(..., help="Responses JSON: {question_id: answer}"),
    use_llm: bool = typer.Option(
        False, "--llm", help="Ask the configured model about short answers without a reference"
    ),
    model: str | None = typer.Option(None, "--model", "-m", help="Grading model (overrides config)"),
) -> None:
    """Grade responses against a quiz offline and print the breakdown."""
    quiz_data = _read_json(Path(quiz_file).expanduser(), "Quiz file")
    responses = _read_json(Path(responses_file).expanduser(), "Responses file")

    raw_questions = quiz_data.get("questions", []) if isinstance(quiz_data, dict) else quiz_data
    if not isinstance(raw_questions, list) or not raw_questions:
        console.print("[red]✗ Quiz has no questions[/red]")
        raise typer.Exit(code=1)
    if not isinstance(responses, dict):
        console.print("[red]✗ Responses must be a JSON object[/red]")
        raise typer.Exit(code=1)

    client = None
    config = load_app_config()
    if use_llm:
        llm_config = LLMConfig.from_app_config(config)
        if not llm_config.has_credentials:
            console.print("[yellow]⚠ No API key configured, grading without the model[/yellow]")
        else:
            client = LLMClient(llm_config)

    questions = [Question.from_dict(q) for q in raw_questions]
    result = grade_submission(
        questions,
        {str(k): str(v) for k, v in responses.items()},
        client=client,
        model=model or config.llm.grade_model,
    )

    color = "green" if result.percent >= 70 else "yellow" if result.percent >= 50 else "red"
    header = (
        f"[bold]{result.percent}%[/bold] - [{color}]{result.letter}[/{color}]\n"
        f"Correct: {result.correct_count}/{result.total}\n"
        f"{result.summary}"
    )
    console.print(Panel(header, title="[bold]Grade[/bold]", expand=False))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Question", style="cyan", width=12)
    table.add_column("Type", width=6)
    table.add_column("Result", justify="center", width=8)
    table.add_column("Feedback", width=60)

    for item in result.breakdown:
        status_icon = "[green]✓[/green]" if item.correct else "[red]✗[/red]"
        table.add_row(item.id, item.type, status_icon, _truncate(item.feedback, 80))

    console.print(table)


if __name__ == "__main__":
    app()

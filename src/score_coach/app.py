"""Interactive CLI application."""
import logging
import os
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, FloatPrompt, IntPrompt, Prompt
from rich.table import Table

from score_coach.config import Settings, describe, set_setting, setting_names
from score_coach.dashboard import get_piece_scores, get_practice_stats, get_project_report
from score_coach.db import DEFAULT_DB_PATH, init_db
from score_coach.importer import add_piece_from_pdf, export_library, import_library
from score_coach.library import (
    add_piece, add_project, add_spot, assign_piece, concert_date_for_piece,
    deactivate_spot, list_pieces, list_projects, record_practice,
)
from score_coach.models import PracticeResult, Priority, SpotColor, ValidationError
from score_coach.planner import EmptyPlan, RestBreak, SessionType, plan_session, spots_for_project
from score_coach.readiness import readiness_color

console = Console()
logger = logging.getLogger(__name__)

RESULT_CHOICES = [r.value for r in PracticeResult]
COLOR_STYLES = {"red": "red", "yellow": "yellow", "green": "green", "blue": "blue"}


class SessionExitRequested(Exception):
    """User asked to leave a practice session early."""


def session_prompt(prompt: str, **kwargs) -> str:
    answer = Prompt.ask(prompt, **kwargs)
    if answer.strip().lower() in ("q", "menu"):
        raise SessionExitRequested()
    return answer


def configure_logging() -> None:
    level = os.environ.get("SCORE_COACH_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def show_welcome():
    console.print(Panel(
        "[bold]Score Coach[/bold]\n[dim]Spaced-repetition practice planner[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("practice", "Plan and run a practice session"),
        ("dashboard", "Readiness scores + stats"),
        ("pieces", "List pieces"),
        ("add-piece", "Add a piece (title or PDF)"),
        ("spots", "List spots of a piece"),
        ("add-spot", "Mark a new practice spot"),
        ("remove-spot", "Retire a spot (history kept)"),
        ("projects", "Concert projects and readiness"),
        ("add-project", "Create a project"),
        ("settings", "View or change settings"),
        ("export", "Export library to JSON/YAML"),
        ("import", "Import library from JSON/YAML"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def parse_date(text: str) -> datetime | None:
    text = text.strip()
    if not text:
        return None
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Not a date: {text!r} (use YYYY-MM-DD)") from None
    if value.tzinfo is not None:
        raise ValidationError(f"Give the concert date in local time, without a UTC offset: {text!r}")
    return value


def choose_piece(db_path: str):
    pieces = list_pieces(db_path)
    if not pieces:
        console.print("[yellow]No pieces yet. Use 'add-piece' first.[/yellow]")
        return None
    for i, p in enumerate(pieces, 1):
        console.print(f"  [cyan]{i}[/cyan]) {p.title} [dim]{p.composer}[/dim]")
    idx = IntPrompt.ask("Select piece", choices=[str(i) for i in range(1, len(pieces) + 1)])
    return pieces[idx - 1]


def choose_project(db_path: str):
    projects = list_projects(db_path)
    if not projects:
        console.print("[yellow]No projects yet. Use 'add-project' first.[/yellow]")
        return None
    for i, pr in enumerate(projects, 1):
        when = pr.concert_date.date().isoformat() if pr.concert_date else "no date"
        console.print(f"  [cyan]{i}[/cyan]) {pr.name} [dim]({when})[/dim]")
    idx = IntPrompt.ask("Select project", choices=[str(i) for i in range(1, len(projects) + 1)])
    return projects[idx - 1]


def show_plan(plan) -> None:
    table = Table(title=f"Session Plan ({plan.practice_minutes} min practice, {plan.rest_minutes} min rest)")
    table.add_column("#", justify="right")
    table.add_column("Spot", style="cyan")
    table.add_column("Minutes", justify="right")
    table.add_column("Reps", justify="right")
    table.add_column("Urgency", justify="right")
    n = 0
    for entry in plan.entries:
        if isinstance(entry, RestBreak):
            table.add_row("", "[dim]rest[/dim]", str(entry.minutes), "", "")
            continue
        n += 1
        table.add_row(str(n), entry.title, str(entry.minutes), str(entry.repetitions), f"{entry.urgency:.2f}")
    console.print(table)


def run_practice_session(db_path: str, plan, settings: Settings) -> int:
    """Walk through a plan, recording each result. Returns the number of spots recorded."""
    recorded = 0
    items = plan.items
    for entry in plan.entries:
        if isinstance(entry, RestBreak):
            console.print(Panel(f"Rest for {entry.minutes} minutes. Stand up, shake out your hands.",
                                border_style="green"))
            session_prompt("[dim]Press Enter to continue[/dim]", default="")
            continue
        recorded_label = f"{recorded + 1}/{len(items)}"
        console.print(Panel(
            f"{entry.instructions}\n[dim]{entry.repetitions} repetitions, about {entry.minutes} minutes[/dim]",
            title=f"Spot {recorded_label}: {entry.title}", border_style="cyan",
        ))
        result = session_prompt("How did it go?", choices=RESULT_CHOICES, default="good")
        minutes = int(session_prompt("Minutes spent", default=str(entry.minutes)))
        update = record_practice(db_path, entry.spot_id, result, duration_minutes=minutes, settings=settings)
        recorded += 1
        console.print(
            f"[green]Saved.[/green] Level: [bold]{update.readiness_level.value}[/bold], "
            f"next due {update.next_due:%Y-%m-%d %H:%M}"
        )
        if update.suggested_color != update.spot.color:
            console.print(f"[dim]Consider marking this spot {update.suggested_color.value}.[/dim]")
    return recorded


def cmd_practice(db_path: str):
    settings = Settings.load(db_path)
    scope = Prompt.ask("Practice a", choices=["piece", "project"], default="piece")
    if scope == "project":
        project = choose_project(db_path)
        if project is None:
            return
        pieces = project.pieces_in(list_pieces(db_path))
        spots = spots_for_project(project, pieces)
        concert_date = project.concert_date
    else:
        piece = choose_piece(db_path)
        if piece is None:
            return
        pieces = [piece]
        spots = piece.active_spots
        concert_date = concert_date_for_piece(db_path, piece.id)
    minutes = IntPrompt.ask("Session length (minutes)", default=settings.session_minutes)
    for t in SessionType:
        console.print(f"  [cyan]{t.value:<13}[/cyan] {t.description}")
    session_type = Prompt.ask("Session type", choices=[t.value for t in SessionType],
                              default=SessionType.SMART.value)
    focus_tags = []
    known_tags = sorted({tag for p in pieces for tag in p.tags})
    if len(pieces) > 1 and known_tags:
        answer = Prompt.ask(f"Focus tags ({', '.join(known_tags)}; blank for none)", default="")
        focus_tags = [t.strip() for t in answer.split(",") if t.strip()]
    interleave = scope == "project" and Confirm.ask("Interleave pieces?", default=True)
    microbreaks = Confirm.ask("Microbreaks?", default=True)

    plan = plan_session(spots, minutes, interleave=interleave, microbreaks=microbreaks,
                        concert_date=concert_date, settings=settings, session_type=session_type,
                        focus_tags=focus_tags, pieces=pieces)
    if isinstance(plan, EmptyPlan):
        console.print(f"[yellow]{plan.message}[/yellow]")
        return
    show_plan(plan)
    if not Confirm.ask("Start?", default=True):
        return
    try:
        done = run_practice_session(db_path, plan, settings)
    except SessionExitRequested:
        console.print("[dim]Session ended early. Results so far are saved.[/dim]")
        return
    console.print(f"[green]Session complete: {done} spots practised.[/green]")


def cmd_dashboard(db_path: str):
    stats = get_practice_stats(db_path)
    console.print(Panel(
        f"Attempts: [bold]{stats['attempts']}[/bold]  |  Minutes: [bold]{stats['minutes_practiced']}[/bold]  |  "
        f"Success: [bold]{stats['success_rate']}%[/bold]  |  Due now: [bold]{stats['spots_due']}[/bold]"
        f" of {stats['active_spots']}",
        title="Practice Dashboard", border_style="blue",
    ))
    scores = get_piece_scores(db_path)
    if not scores:
        console.print("[yellow]No pieces yet.[/yellow]")
        return
    table = Table(title="Piece Readiness")
    table.add_column("Piece", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Status")
    table.add_column("Spots", justify="right")
    table.add_column("Critical", justify="right")
    table.add_column("Due", justify="right")
    for s in scores:
        color = readiness_color(s["score"])
        bar = f"[{color}]{'█' * int(s['score'] / 10)}{'░' * (10 - int(s['score'] / 10))}[/{color}]"
        table.add_row(s["title"], f"{s['score']}% {bar}", f"[{color}]{s['label']}[/{color}]",
                      str(s["spots"]), str(s["critical"]), str(s["due"]))
    console.print(table)


def cmd_pieces(db_path: str):
    pieces = list_pieces(db_path)
    if not pieces:
        console.print("[yellow]No pieces yet. Use 'add-piece' to add one.[/yellow]")
        return
    table = Table(title="Library")
    table.add_column("Title", style="cyan")
    table.add_column("Composer")
    table.add_column("Difficulty", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Spots", justify="right")
    table.add_column("Practised", justify="right")
    for p in pieces:
        table.add_row(p.title, p.composer, "★" * p.difficulty, str(p.total_pages or ""),
                      str(len(p.active_spots)), f"{p.total_minutes} min")
    console.print(table)


def cmd_add_piece(db_path: str):
    source = Prompt.ask("Title or path to a PDF score")
    difficulty = IntPrompt.ask("Difficulty (1-5)", choices=["1", "2", "3", "4", "5"], default=3)
    composer = Prompt.ask("Composer", default="")
    if source.lower().endswith(".pdf"):
        if not Path(source).exists():
            console.print(f"[red]File not found: {source}[/red]")
            return
        piece = add_piece_from_pdf(db_path, source, composer=composer, difficulty=difficulty)
    else:
        piece = add_piece(db_path, source, composer=composer, difficulty=difficulty)
    console.print(f"[green]Added {piece.title}[/green]" + (f" ({piece.total_pages} pages)" if piece.total_pages else ""))


def cmd_spots(db_path: str):
    piece = choose_piece(db_path)
    if piece is None:
        return
    now = datetime.now()
    table = Table(title=f"Spots: {piece.title}")
    table.add_column("Spot", style="cyan")
    table.add_column("Page", justify="right")
    table.add_column("Color")
    table.add_column("Level")
    table.add_column("Next due")
    table.add_column("Success", justify="right")
    for s in piece.active_spots:
        style = COLOR_STYLES[s.color.value]
        due = "now" if s.is_due(now) else f"{s.next_due:%Y-%m-%d %H:%M}"
        table.add_row(s.title, str(s.page), f"[{style}]{s.color.display_name}[/{style}]",
                      s.readiness_level.value, due, f"{s.success_rate * 100:.0f}%")
    console.print(table)


def cmd_add_spot(db_path: str):
    piece = choose_piece(db_path)
    if piece is None:
        return
    title = Prompt.ask("Spot name (e.g. 'bars 12-16')")
    page = IntPrompt.ask("Page", default=1)
    x = FloatPrompt.ask("Left edge (0-1)", default=0.0)
    y = FloatPrompt.ask("Top edge (0-1)", default=0.0)
    width = FloatPrompt.ask("Width (0-1)", default=1.0)
    height = FloatPrompt.ask("Height (0-1)", default=0.2)
    color = Prompt.ask("Color", choices=[c.value for c in SpotColor], default="red")
    priority = Prompt.ask("Priority", choices=[p.value for p in Priority], default="medium")
    difficulty = IntPrompt.ask("Difficulty (1-5)", choices=["1", "2", "3", "4", "5"], default=3)
    spot = add_spot(db_path, piece.id, title, page=page, bbox=(x, y, width, height),
                    color=color, priority=priority, difficulty=difficulty)
    console.print(f"[green]Added spot {spot.title}. It is due now.[/green]")


def cmd_remove_spot(db_path: str):
    piece = choose_piece(db_path)
    if piece is None:
        return
    spots = piece.active_spots
    if not spots:
        console.print("[yellow]This piece has no spots.[/yellow]")
        return
    for i, s in enumerate(spots, 1):
        console.print(f"  [cyan]{i}[/cyan]) {s.title} [dim]p.{s.page}[/dim]")
    idx = IntPrompt.ask("Select spot", choices=[str(i) for i in range(1, len(spots) + 1)])
    spot = deactivate_spot(db_path, spots[idx - 1].id)
    console.print(f"[green]Retired {spot.title}. Its history is kept.[/green]")


def cmd_projects(db_path: str):
    project = choose_project(db_path)
    if project is None:
        return
    project, report = get_project_report(db_path, project.id)
    color = readiness_color(report.overall_score)
    header = f"[bold]{project.name}[/bold]"
    if report.days_until_concert is not None:
        header += f"  |  Concert in {report.days_until_concert} days"
    console.print(Panel(header, title="Project Readiness", border_style="blue"))
    console.print(f"\n  Overall: [bold]{report.overall_score}%[/bold] [{color}]{report.level.label}[/{color}]\n")
    if report.piece_scores:
        table = Table(title="Pieces")
        table.add_column("Piece", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Status")
        table.add_column("Critical", justify="right")
        table.add_column("Est. minutes", justify="right")
        for ps in report.piece_scores:
            c = readiness_color(ps.score)
            table.add_row(ps.title, f"{ps.score}%", f"[{c}]{ps.level.label}[/{c}]",
                          str(ps.critical_spots), str(ps.minutes_needed))
        console.print(table)
    console.print("\n[bold]Recommendations:[/bold]")
    for rec in report.recommendations:
        console.print(f"  [yellow]•[/yellow] {rec}")
    if Confirm.ask("\nAdd a piece to this project?", default=False):
        piece = choose_piece(db_path)
        if piece is not None:
            assign_piece(db_path, project.id, piece.id)
            console.print(f"[green]Added {piece.title} to {project.name}.[/green]")


def cmd_add_project(db_path: str):
    name = Prompt.ask("Project name")
    concert = parse_date(Prompt.ask("Concert date (YYYY-MM-DD, blank for none)", default=""))
    goal = IntPrompt.ask("Daily practice goal (minutes)", default=30)
    project = add_project(db_path, name, concert_date=concert, daily_goal_minutes=goal)
    console.print(f"[green]Created project {project.name}.[/green]")


def cmd_settings(db_path: str):
    settings = Settings.load(db_path)
    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in describe(settings):
        table.add_row(name, value)
    console.print(table)
    if Confirm.ask("Change a setting?", default=False):
        key = Prompt.ask("Setting", choices=setting_names())
        value = Prompt.ask("New value")
        set_setting(db_path, key, value)
        console.print(f"[green]{key} = {value}[/green]")


def cmd_export(db_path: str):
    file_path = Prompt.ask("Export to", default="score_coach_library.json")
    counts = export_library(db_path, file_path)
    console.print(f"[green]Exported {counts['pieces']} pieces, {counts['spots']} spots, "
                  f"{counts['projects']} projects → {file_path}[/green]")


def cmd_import(db_path: str):
    file_path = Prompt.ask("File path")
    if not Path(file_path).exists():
        console.print(f"[red]File not found: {file_path}[/red]")
        return
    counts = import_library(db_path, file_path)
    console.print(f"[green]Imported {counts['pieces']} pieces, {counts['spots']} spots, "
                  f"{counts['projects']} projects.[/green]")


COMMANDS = {
    "practice": cmd_practice,
    "dashboard": cmd_dashboard,
    "pieces": cmd_pieces,
    "add-piece": cmd_add_piece,
    "spots": cmd_spots,
    "add-spot": cmd_add_spot,
    "remove-spot": cmd_remove_spot,
    "projects": cmd_projects,
    "add-project": cmd_add_project,
    "settings": cmd_settings,
    "export": cmd_export,
    "import": cmd_import,
}


def main():
    configure_logging()
    db_path = DEFAULT_DB_PATH
    init_db(db_path)
    show_welcome()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="practice").strip().lower()
        if choice in ("quit", "exit", "q"):
            console.print("[dim]Happy practising![/dim]")
            break
        command = COMMANDS.get(choice)
        if command is None:
            console.print("[red]Unknown command. Try again.[/red]")
            continue
        try:
            command(db_path)
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            logger.debug("Command %s failed", choice, exc_info=True)
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()

"""CLI interface for NoteTaker."""

import asyncio
from datetime import date
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from notetaker import __version__
from notetaker.config import get_config
from notetaker.errors import NotetakerError, NoteNotFoundError, log_exception
from notetaker.logging_config import configure_logging
from notetaker.models.enrichment import TaskKind
from notetaker.models.note import Note
from notetaker.models.settings import PerformanceProfile, Theme
from notetaker.services.notebook import Notebook
from notetaker.services.transfer import dumps, loads

app = typer.Typer(
    name="notetaker",
    help="Local-first notes with version history and AI enrichment.",
    no_args_is_help=True,
)
console = Console()

T = TypeVar("T")

ACTIONS = {
    "continue": TaskKind.CONTINUE_WRITING,
    "translate": TaskKind.TRANSLATE,
    "tone": TaskKind.CHANGE_TONE,
    "summarize": TaskKind.SUMMARIZE_SELECTION,
}


def run(command: str, work: Callable[[Notebook], Awaitable[T]]) -> T:
    """Open the notebook, run ``work`` and close it, reporting errors.

    Pending writes and enrichments are drained before the notebook closes.
    """
    config = get_config()

    async def _main() -> T:
        notebook = await Notebook.open(config)
        try:
            return await work(notebook)
        finally:
            await notebook.close()
            for note_id, error in notebook.take_errors():
                console.print(f"[yellow]Background task for note {note_id[:8]} failed: {error}[/yellow]")

    try:
        return asyncio.run(_main())
    except NotetakerError as e:
        path = log_exception(e, config.error_log_path, context=command)
        console.print(f"[red]Error: {e}[/red]")
        console.print(f"[dim]Details written to {path}[/dim]")
        raise typer.Exit(1)


def find_note(notebook: Notebook, note_ref: str) -> Note:
    """Find a note by full id or unique id prefix."""
    matches = [n for n in notebook.notes if n.id == note_ref or n.id.startswith(note_ref)]
    if len(matches) != 1:
        raise NoteNotFoundError(note_ref)
    return matches[0]


def _category_names(projects: list[Any], note: Note) -> tuple[str, str]:
    for project in projects:
        if project.id == note.project_id:
            subject = project.get_subject(note.subject_id)
            return project.name, subject.name if subject else "?"
    return "?", "?"


# ==================== Notes ====================


@app.command()
def init():
    """Create the notebook (with a welcome note) if it does not exist yet."""
    config = get_config()
    existed = config.database_path.exists()

    async def work(notebook: Notebook) -> int:
        return len(notebook.notes)

    count = run("init", work)
    if existed:
        console.print(f"[yellow]Notebook already exists at {config.database_path}[/yellow]")
    else:
        console.print(f"[green]✓[/green] Created notebook at {config.database_path}")
    console.print(f"  Notes: [cyan]{count}[/cyan]")


@app.command()
def new(
    title: str = typer.Argument("New Note", help="Note title"),
    content: str = typer.Option("", "--content", "-c", help="Note body"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name"),
    subject: str = typer.Option("General", "--subject", "-s", help="Subject name"),
    template: Optional[str] = typer.Option(
        None, "--template", "-t", help="Create from the template with this id"
    ),
):
    """Create a note."""

    async def work(notebook: Notebook) -> Note:
        template_id = find_note(notebook, template).id if template else None
        return await notebook.create_note(
            title=title,
            content=content,
            project_name=project,
            subject_name=subject,
            from_template_id=template_id,
        )

    note = run("new", work)
    console.print(f"[green]✓[/green] Created note [cyan]{note.id}[/cyan]: {note.title}")


@app.command("list")
def list_notes(
    tag: Optional[str] = typer.Option(None, "--tag", help="Only notes with this tag"),
    text: Optional[str] = typer.Option(None, "--text", help="Only notes containing this text"),
    archived: bool = typer.Option(False, "--archived", "-a", help="Include archived notes"),
    limit: int = typer.Option(20, "--limit", "-l", help="Max notes to show (0 for all)"),
):
    """List notes, most recently updated first."""

    async def work(notebook: Notebook) -> tuple[list[Note], list[Any]]:
        notes = notebook.find_notes(tag=tag, text=text, include_archived=archived)
        return notes, await notebook.resolver.list_projects()

    notes, projects = run("list", work)
    if not notes:
        console.print("[yellow]No notes found.[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Notes")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Project / Subject", style="magenta")
    table.add_column("Updated", style="green")
    table.add_column("Tags", style="dim")

    shown = notes[:limit] if limit > 0 else notes
    for note in shown:
        project_name, subject_name = _category_names(projects, note)
        title = note.title + (" [dim](template)[/dim]" if note.is_template else "")
        table.add_row(
            note.id[:8],
            title,
            f"{project_name} / {subject_name}",
            note.updated_at.strftime("%Y-%m-%d %H:%M"),
            ", ".join(note.tags),
        )
    console.print(table)

    if len(shown) < len(notes):
        console.print(f"[dim]Showing {len(shown)} of {len(notes)} notes. Use --limit 0 to see all.[/dim]")


@app.command()
def show(note_ref: str = typer.Argument(..., help="Note id or id prefix")):
    """Show a note with its enrichment."""

    async def work(notebook: Notebook) -> tuple[Note, list[Any]]:
        return find_note(notebook, note_ref), await notebook.resolver.list_projects()

    note, projects = run("show", work)
    project_name, subject_name = _category_names(projects, note)

    console.print(f"[bold]{note.title}[/bold]  [dim]{note.id}[/dim]")
    console.print(f"  [bold]Project:[/bold] {project_name} / {subject_name}")
    console.print(f"  [bold]Updated:[/bold] {note.updated_at:%Y-%m-%d %H:%M}")
    if note.disable_ai_sync:
        console.print("  [bold]AI sync:[/bold] [red]disabled[/red]")
    console.print()
    console.print(Markdown(note.content or "_(empty)_"))

    if note.summary:
        console.print(f"\n[bold]Summary:[/bold] {note.summary}")
    for label, items in (
        ("To-dos", note.todos),
        ("Key people", note.key_people),
        ("Decisions", note.decisions),
    ):
        if items:
            console.print(f"[bold]{label}:[/bold]")
            for item in items:
                console.print(f"  • {item}")
    if note.tags:
        console.print(f"[bold]Tags:[/bold] [dim]{', '.join(note.tags)}[/dim]")


@app.command()
def edit(
    note_ref: str = typer.Argument(..., help="Note id or id prefix"),
    title: Optional[str] = typer.Option(None, "--title", help="New title"),
    content: Optional[str] = typer.Option(None, "--content", "-c", help="New body"),
    content_file: Optional[Path] = typer.Option(
        None, "--content-file", "-f", exists=True, dir_okay=False, help="Read the body from a file"
    ),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma-separated tags"),
    archive: Optional[bool] = typer.Option(None, "--archive/--unarchive", help="Archive the note"),
    ai_sync: Optional[bool] = typer.Option(
        None, "--ai-sync/--no-ai-sync", help="Allow automatic enrichment"
    ),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Move to this project"),
    subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Move to this subject"),
):
    """Edit a note. Changes are saved and enriched before the command exits."""
    changes: dict[str, Any] = {}
    if title is not None:
        changes["title"] = title
    if content_file is not None:
        changes["content"] = content_file.read_text(encoding="utf-8")
    elif content is not None:
        changes["content"] = content
    if tags is not None:
        changes["tags"] = [t.strip() for t in tags.split(",") if t.strip()]
    if archive is not None:
        changes["is_archived"] = archive
    if ai_sync is not None:
        changes["disable_ai_sync"] = not ai_sync

    if not changes and project is None and subject is None:
        console.print("[yellow]Nothing to change.[/yellow]")
        raise typer.Exit(0)

    async def work(notebook: Notebook) -> Note:
        note = find_note(notebook, note_ref)
        if changes:
            notebook.update_note(note.id, **changes)
        if project is not None or subject is not None:
            current = await notebook.resolver.get_project(note.project_id)
            await notebook.move_note(note.id, project or current.name, subject or "General")
        await notebook.flush()
        return notebook.get_note(note.id)

    note = run("edit", work)
    console.print(f"[green]✓[/green] Saved {note.title}")
    if note.summary:
        console.print(f"  [bold]Summary:[/bold] {note.summary}")


@app.command()
def delete(
    note_ref: str = typer.Argument(..., help="Note id or id prefix"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a note and its history."""
    if not yes and not typer.confirm(f"Delete note {note_ref} and all its versions?"):
        raise typer.Exit(0)

    async def work(notebook: Notebook) -> Note:
        note = find_note(notebook, note_ref)
        await notebook.delete_note(note.id)
        return note

    note = run("delete", work)
    console.print(f"[green]✓[/green] Deleted {note.title}")


# ==================== History ====================


@app.command()
def history(note_ref: str = typer.Argument(..., help="Note id or id prefix")):
    """List saved versions of a note."""

    async def work(notebook: Notebook) -> tuple[Note, list[Any]]:
        note = find_note(notebook, note_ref)
        return note, await notebook.get_versions(note.id)

    note, versions = run("history", work)
    if not versions:
        console.print(f"[yellow]No earlier versions of {note.title}.[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"History of {note.title}")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Saved", style="green")
    table.add_column("Title")
    table.add_column("Preview", style="dim")
    for i, version in enumerate(versions, 1):
        preview = version.content[:60].replace("\n", " ")
        table.add_row(str(i), f"{version.saved_at:%Y-%m-%d %H:%M:%S}", version.title, preview)
    console.print(table)


@app.command()
def restore(
    note_ref: str = typer.Argument(..., help="Note id or id prefix"),
    number: int = typer.Argument(..., help="Version number as shown by 'history'"),
):
    """Restore an earlier version of a note."""

    async def work(notebook: Notebook) -> Note:
        note = find_note(notebook, note_ref)
        versions = await notebook.get_versions(note.id)
        if not 1 <= number <= len(versions):
            raise typer.BadParameter(f"Choose a version between 1 and {len(versions)}.")
        restored = notebook.restore_version(versions[number - 1])
        await notebook.flush()
        return restored

    note = run("restore", work)
    console.print(f"[green]✓[/green] Restored {note.title}")


# ==================== Projects ====================


@app.command()
def projects():
    """List projects and their subjects."""

    async def work(notebook: Notebook) -> tuple[list[Any], dict[str, int]]:
        counts: dict[str, int] = {}
        for note in notebook.notes:
            counts[note.subject_id] = counts.get(note.subject_id, 0) + 1
        return await notebook.resolver.list_projects(), counts

    project_list, counts = run("projects", work)
    table = Table(title="Projects")
    table.add_column("Project", style="cyan")
    table.add_column("Subject")
    table.add_column("Notes", justify="right", style="green")
    table.add_column("ID", style="dim")
    for project in project_list:
        table.add_row(project.name, "", "", project.id[:8])
        for subject in project.subjects:
            table.add_row("", subject.name, str(counts.get(subject.id, 0)), subject.id[:8])
    console.print(table)


@app.command("project-add")
def project_add(
    name: str = typer.Argument(..., help="Project name"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
):
    """Create a project."""

    async def work(notebook: Notebook) -> Any:
        return await notebook.resolver.create_project(name, description)

    project = run("project-add", work)
    console.print(f"[green]✓[/green] Created project {project.name} [dim]{project.id}[/dim]")


@app.command("subject-add")
def subject_add(
    project: str = typer.Argument(..., help="Project name"),
    name: str = typer.Argument(..., help="Subject name"),
):
    """Add a subject to a project."""

    async def work(notebook: Notebook) -> str:
        found = await notebook.resolver.find_project(project)
        if found is None:
            raise typer.BadParameter(f"No project named {project}.")
        return await notebook.resolver.add_subject(found.id, name)

    subject_id = run("subject-add", work)
    console.print(f"[green]✓[/green] Subject {name} [dim]{subject_id}[/dim]")


@app.command("project-delete")
def project_delete(name: str = typer.Argument(..., help="Project name")):
    """Delete a project that has no notes."""

    async def work(notebook: Notebook) -> None:
        found = await notebook.resolver.find_project(name)
        if found is None:
            raise typer.BadParameter(f"No project named {name}.")
        await notebook.resolver.delete_project(found.id)

    run("project-delete", work)
    console.print(f"[green]✓[/green] Deleted project {name}")


@app.command("subject-delete")
def subject_delete(
    project: str = typer.Argument(..., help="Project name"),
    name: str = typer.Argument(..., help="Subject name"),
):
    """Delete a subject that has no notes."""

    async def work(notebook: Notebook) -> None:
        found = await notebook.resolver.find_project(project)
        subject = found.find_subject(name) if found else None
        if subject is None:
            raise typer.BadParameter(f"No subject {name} in {project}.")
        await notebook.resolver.delete_subject(subject.id)

    run("subject-delete", work)
    console.print(f"[green]✓[/green] Deleted subject {name}")


# ==================== AI ====================


@app.command()
def enrich(note_ref: str = typer.Argument(..., help="Note id or id prefix")):
    """Analyze a note now instead of waiting for the next edit."""

    async def work(notebook: Notebook) -> Optional[Note]:
        note = find_note(notebook, note_ref)
        await notebook.scheduler.flush(note.id)
        with console.status("[yellow]Analyzing note...[/yellow]"):
            return await notebook.enrichment.enrich_now(note.id)

    note = run("enrich", work)
    if note is None:
        console.print("[yellow]Nothing to analyze (empty note or AI sync disabled).[/yellow]")
        raise typer.Exit(0)
    console.print(f"[green]✓[/green] Enriched {note.title}")
    console.print(f"  [bold]Summary:[/bold] {note.summary}")
    if note.tags:
        console.print(f"  [bold]Tags:[/bold] {', '.join(note.tags)}")


@app.command()
def action(
    name: str = typer.Argument(..., help="continue, translate, tone or summarize"),
    note_ref: str = typer.Argument(..., help="Note id or id prefix"),
    language: str = typer.Option("English", "--language", help="Target language for translate"),
    tone: str = typer.Option("professional", "--tone", help="Tone for tone"),
    selection: Optional[str] = typer.Option(
        None, "--selection", help="Text to work on instead of the whole note"
    ),
):
    """Run an AI quick action on a note."""
    kind = ACTIONS.get(name)
    if kind is None:
        console.print(f"[red]Unknown action {name}. Choose one of: {', '.join(ACTIONS)}[/red]")
        raise typer.Exit(1)

    async def work(notebook: Notebook) -> Note:
        note = find_note(notebook, note_ref)
        with console.status("[yellow]Working...[/yellow]"):
            updated = await notebook.run_action(
                note.id, kind, content=selection or "", target_language=language, tone=tone
            )
        await notebook.flush()
        return updated

    note = run("action", work)
    console.print(f"[green]✓[/green] Updated {note.title}")


@app.command()
def ask(question: str = typer.Argument(..., help="Question about your notes")):
    """Ask a question answered from your notes."""

    async def work(notebook: Notebook) -> tuple[Any, dict[str, str]]:
        with console.status("[yellow]Thinking...[/yellow]"):
            answer = await notebook.ask(question)
        return answer, {n.id: n.title for n in notebook.notes}

    answer, titles = run("ask", work)
    console.print(Markdown(answer.answer))
    sources = [titles[i] for i in answer.source_note_ids if i in titles]
    if sources:
        console.print(f"\n[dim]Sources: {', '.join(sources)}[/dim]")


@app.command()
def search(query: str = typer.Argument(..., help="What you are looking for")):
    """Find notes by meaning rather than exact words."""

    async def work(notebook: Notebook) -> list[Note]:
        with console.status("[yellow]Searching...[/yellow]"):
            return await notebook.semantic_search(query)

    notes = run("search", work)
    if not notes:
        console.print("[yellow]No relevant notes found.[/yellow]")
        raise typer.Exit(0)
    for note in notes:
        console.print(f"  [cyan]{note.id[:8]}[/cyan] {note.title}")


# ==================== Data & settings ====================


@app.command()
def export(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output JSON file"),
):
    """Export every note, project, version and setting to JSON."""
    path = output or Path(f"notetaker-export-{date.today().isoformat()}.json")

    async def work(notebook: Notebook) -> Any:
        return await notebook.export_data()

    snapshot = run("export", work)
    path.write_text(dumps(snapshot), encoding="utf-8")
    console.print(
        f"[green]✓[/green] Exported {len(snapshot.notes)} notes and "
        f"{len(snapshot.projects)} projects to {path}"
    )


@app.command("import")
def import_(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON export file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Merge a JSON export into this notebook."""
    config = get_config()
    try:
        snapshot = loads(path.read_text(encoding="utf-8"))
    except NotetakerError as e:
        log_exception(e, config.error_log_path, context="import")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not yes and not typer.confirm(
        f"Import {len(snapshot.notes)} notes and {len(snapshot.projects)} projects?"
    ):
        raise typer.Exit(0)

    async def work(notebook: Notebook) -> Any:
        return await notebook.import_data(snapshot)

    summary = run("import", work)
    console.print(f"[green]✓[/green] Imported {summary.notes} notes, {summary.versions} versions")
    if summary.projects_created:
        console.print(f"  New projects: [cyan]{summary.projects_created}[/cyan]")
    if summary.refiled_notes:
        console.print(
            f"  [yellow]{summary.refiled_notes} note(s) filed under Personal / General[/yellow]"
        )


@app.command()
def settings(
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Gemini API key"),
    ai_language: Optional[str] = typer.Option(None, "--ai-language", help="Language for AI output"),
    ui_language: Optional[str] = typer.Option(None, "--ui-language", help="Interface language"),
    theme: Optional[Theme] = typer.Option(None, "--theme"),
    profile: Optional[PerformanceProfile] = typer.Option(None, "--profile"),
    clear_history: bool = typer.Option(
        False, "--clear-history", help="Delete the version history of every note"
    ),
):
    """Show or change user settings."""
    changes: dict[str, Any] = {
        key: value
        for key, value in {
            "api_key": api_key,
            "ai_language": ai_language,
            "ui_language": ui_language,
            "theme": theme,
            "performance_profile": profile,
        }.items()
        if value is not None
    }

    async def work(notebook: Notebook) -> Any:
        if clear_history:
            await notebook.clear_history()
        if changes:
            return await notebook.update_settings(**changes)
        return notebook.settings

    current = run("settings", work)

    table = Table(title="NoteTaker Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    key_masked = (current.api_key[:6] + "...") if current.has_credential else "(not set)"
    table.add_row("Gemini API Key", key_masked)
    table.add_row("AI Language", current.ai_language)
    table.add_row("UI Language", current.ui_language)
    table.add_row("Theme", current.theme.value)
    table.add_row("Performance Profile", current.performance_profile.value)
    console.print(table)
    if clear_history:
        console.print("[green]✓[/green] Version history cleared")


@app.command()
def config():
    """Show current configuration."""
    try:
        cfg = get_config()
    except Exception as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="NoteTaker Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Database Path", str(cfg.database_path))
    table.add_row("Save Debounce", f"{cfg.save_debounce_seconds}s")
    table.add_row("Enrichment Debounce", f"{cfg.enrichment_debounce_seconds}s")
    table.add_row("Gemini Model", cfg.gemini_model)
    table.add_row("Error Log", str(cfg.error_log_path))
    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"NoteTaker v{__version__}")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """
    NoteTaker - local-first notes with AI enrichment.

    Edits are versioned, and every changed note is summarized, tagged and
    filed under a project and subject by Gemini.
    """
    configure_logging(verbose or get_config().verbose)


if __name__ == "__main__":
    app()

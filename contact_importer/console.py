#!/usr/bin/env python3
"""
Console interface for importing a contact file.
Runs parse -> classify -> review -> import for one file in the terminal.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .core.config import settings
from .core.logging_config import configure_logging
from .db.store import ContactStore, get_store, init_tables
from .domain.contacts.models import CORE_ATTRIBUTE_NAMES, UNMAPPED, CustomFieldDef, ImportReport, target_from_token
from .domain.imports.errors import ContactImportError
from .domain.imports.executor import ImportExecutor
from .domain.imports.mapping_engine import propose_mapping
from .domain.imports.processors.csv_processor import ParsedFile, parse_contact_file
from .domain.imports.reconciler import (
    MappingReview,
    confidence_band,
    sample_values,
    summarize_mapping,
    target_conflicts,
    target_label,
)


class ImportConsole:
    """Interactive console for reviewing a mapping and importing contacts."""

    def __init__(self, store: ContactStore):
        self.console = Console()
        self.store = store
        self.known_fields: List[CustomFieldDef] = []

    def print_welcome(self, file_name: str):
        welcome_text = Text("Contact Import", style="bold blue")
        welcome_panel = Panel.fit(
            f"[green]Importing [bold]{file_name}[/bold][/green]\n\n"
            "• Columns are mapped to contact fields with AI\n"
            "• Review and adjust the mapping before anything is written\n"
            "• Type 'help' at the review prompt for commands\n\n"
            "[dim]Using Claude-powered field mapping[/dim]",
            title=welcome_text,
            border_style="blue"
        )
        self.console.print(welcome_panel)

    def print_help(self):
        help_table = Table(title="Review Commands")
        help_table.add_column("Command", style="cyan", no_wrap=True)
        help_table.add_column("Description", style="white")

        help_table.add_row("edit <#>", "Point a column at a core field, custom field id, NEW:<label> or unmapped")
        help_table.add_row("new <#> <label>", "Map a column to a new custom field")
        help_table.add_row("skip <#>", "Leave a column unmapped")
        help_table.add_row("reset <#>", "Restore the AI suggestion for a column")
        help_table.add_row("fields", "List existing custom fields")
        help_table.add_row("done", "Accept the mapping and import")
        help_table.add_row("quit", "Exit without importing")

        self.console.print(help_table)

    def show_mapping(self, review: MappingReview, parsed: ParsedFile):
        mapping = review.current
        edited = set(review.edited_headers())

        table = Table(title="Field Mapping")
        table.add_column("#", style="dim", justify="right")
        table.add_column("File Column", style="white")
        table.add_column("Samples", style="dim")
        table.add_column("Contact Field", style="cyan")
        table.add_column("Confidence", style="white")

        for idx, (header, entry) in enumerate(mapping.entries.items(), 1):
            label = target_label(entry.target, self.known_fields)
            if header in edited:
                label = f"{label} [yellow](edited)[/yellow]"
            table.add_row(
                str(idx),
                header,
                ", ".join(sample_values(parsed.rows, header, limit=2)),
                label,
                f"{round(entry.confidence * 100)}% · {confidence_band(entry.confidence)}",
            )
        self.console.print(table)

        summary = summarize_mapping(mapping)
        self.console.print(
            f"[dim]Mapped: {summary.mapped} | High confidence: {summary.high_confidence} | "
            f"Custom: {summary.custom} | New fields: {summary.new_fields} | Unmapped: {summary.unmapped}[/dim]"
        )
        for token, headers in target_conflicts(mapping).items():
            self.console.print(
                f"[yellow]⚠ {', '.join(headers)} all map to {token}; the first non-blank value wins[/yellow]"
            )
        if mapping.notes:
            self.console.print(Panel(mapping.notes, title="AI Notes", border_style="dim"))

    def show_fields(self):
        if not self.known_fields:
            self.console.print("[yellow]No custom fields defined yet.[/yellow]")
            return
        fields_table = Table(title="Custom Fields")
        fields_table.add_column("Id", style="dim")
        fields_table.add_column("Label", style="white")
        fields_table.add_column("Type", style="white")
        for field in self.known_fields:
            fields_table.add_row(field.id, field.label, field.type.value)
        self.console.print(fields_table)
        self.console.print(f"[dim]Core fields: {', '.join(sorted(CORE_ATTRIBUTE_NAMES))}[/dim]")

    def _header_at(self, review: MappingReview, position: str) -> Optional[str]:
        headers = review.current.headers
        if position.isdigit() and 1 <= int(position) <= len(headers):
            return headers[int(position) - 1]
        self.console.print(f"[red]No column #{position}[/red]")
        return None

    def review_mapping(self, review: MappingReview, parsed: ParsedFile) -> Optional[MappingReview]:
        """Let the user edit the mapping. Returns None when the user quits."""
        self.show_mapping(review, parsed)
        known_ids = [field.id for field in self.known_fields]

        while True:
            command = Prompt.ask("\n[bold cyan]Review[/bold cyan]").strip()
            if not command:
                continue
            action, _, rest = command.partition(" ")
            action = action.lower()

            if action in ("quit", "exit", "q"):
                return None
            if action == "done":
                return review
            if action == "help":
                self.print_help()
                continue
            if action == "fields":
                self.show_fields()
                continue

            position, _, argument = rest.strip().partition(" ")
            header = self._header_at(review, position) if position else None
            if header is None:
                if not position:
                    self.console.print("[red]Which column? Try 'help'.[/red]")
                continue

            try:
                if action == "edit":
                    token = argument or Prompt.ask(f"Target for [bold]{header}[/bold]")
                    review = review.set_target(header, target_from_token(token, known_ids))
                elif action == "new":
                    label = argument or Prompt.ask(f"New field label for [bold]{header}[/bold]")
                    review = review.propose_new_field(header, label)
                elif action == "skip":
                    review = review.set_target(header, UNMAPPED)
                elif action == "reset":
                    review = review.reset(header)
                else:
                    self.console.print(f"[red]Unknown command '{action}'. Try 'help'.[/red]")
                    continue
            except (ValueError, ContactImportError) as e:
                self.console.print(f"[red]❌ {e}[/red]")
                continue

            self.show_mapping(review, parsed)

    def format_report(self, report: ImportReport):
        stats = report.stats
        style = "green" if stats.errors == 0 else "yellow"
        self.console.print(Panel(
            f"Total rows: {stats.total}\n"
            f"Created: {stats.created}\n"
            f"Merged: {stats.merged}\n"
            f"Errors: {stats.errors}\n"
            f"Skipped (no usable values): {stats.skipped}",
            title="Import Result",
            border_style=style
        ))
        if report.created_fields:
            self.console.print(
                f"[dim]New custom fields: {', '.join(field.label for field in report.created_fields)}[/dim]"
            )
        if report.row_errors:
            errors_table = Table(title="Row Errors")
            errors_table.add_column("Row", style="dim", justify="right")
            errors_table.add_column("Error", style="red")
            for row_error in report.row_errors[:20]:
                errors_table.add_row(str(row_error.record_number), row_error.message)
            self.console.print(errors_table)

    def run(self, path: Path, assume_yes: bool = False) -> int:
        self.print_welcome(path.name)

        try:
            parsed = parse_contact_file(path.read_bytes(), path.name)
        except (OSError, ValueError) as e:
            self.console.print(f"[red]❌ Could not read file: {e}[/red]")
            return 1

        self.known_fields = self.store.list_fields()
        try:
            with self.console.status(f"[bold green]Mapping {len(parsed.headers)} columns with AI...", spinner="dots"):
                proposal = propose_mapping(parsed.headers, self.known_fields)
        except ContactImportError as e:
            self.console.print(Panel(f"[red]❌ Mapping failed:[/red]\n{e}\n\n[dim]It is safe to retry.[/dim]",
                                     title="Error", border_style="red"))
            return 1

        review = MappingReview.start(proposal)
        if assume_yes:
            self.show_mapping(review, parsed)
        else:
            review = self.review_mapping(review, parsed)
            if review is None:
                self.console.print("[yellow]Import cancelled.[/yellow]")
                return 0
            if not Confirm.ask(f"Import {len(parsed.rows)} rows?", default=True):
                self.console.print("[yellow]Import cancelled.[/yellow]")
                return 0

        executor = ImportExecutor(self.store)
        try:
            with self.console.status("[bold green]Importing contacts...", spinner="dots") as status:
                report = executor.execute(
                    parsed.rows,
                    review.current,
                    self.store.agent_directory(),
                    progress=lambda done, total: status.update(
                        f"[bold green]Processing {done} of {total} contacts..."
                    ),
                )
        except ContactImportError as e:
            self.console.print(f"[red]❌ Import failed: {e}[/red]")
            return 1

        self.format_report(report)
        return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Contact Import Console - AI-mapped contact spreadsheet import",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s contacts.csv             # Review the AI mapping, then import
  %(prog)s contacts.xlsx --yes      # Import with the AI mapping as proposed
        """
    )
    parser.add_argument('file', help='CSV or Excel file to import')
    parser.add_argument('--yes', action='store_true', help='Accept the proposed mapping without review')
    args = parser.parse_args()

    configure_logging(settings.log_level)

    if not settings.anthropic_api_key:
        console = Console()
        console.print("[red]❌ Error: ANTHROPIC_API_KEY environment variable not set[/red]")
        console.print("Please set your Anthropic API key:")
        console.print("  export ANTHROPIC_API_KEY='your-key-here'")
        sys.exit(1)

    init_tables()
    import_console = ImportConsole(get_store())
    sys.exit(import_console.run(Path(args.file), assume_yes=args.yes))


if __name__ == "__main__":
    main()

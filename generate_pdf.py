"""Render invoice snapshots to PDF: jinja2 template, WeasyPrint, save dialog."""

import logging
import tempfile
from pathlib import Path
from typing import Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

import db

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
INVOICE_TEMPLATE = "invoice.html"


def date_display(value: Optional[str]) -> str:
    """Template filter: YYYY-MM-DD as 'January 03, 2024'."""
    if not value:
        return ''
    try:
        return db.format_date_display(value)
    except ValueError:
        return value


def money(value) -> str:
    """Template filter: '1234.5' as '$1,234.50'; non-numbers pass through."""
    try:
        return db.format_currency(float(value))
    except (TypeError, ValueError):
        return str(value)


class InvoiceRenderer:
    """Turns invoice data into PDF bytes and asks where to save them."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR, scratch_dir: Optional[Path] = None):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(['html']),
        )
        self.env.filters['date_display'] = date_display
        self.env.filters['money'] = money
        self.scratch_dir = Path(scratch_dir) if scratch_dir else Path(tempfile.gettempdir())

    def compile(self, template_name: str, data: Dict) -> str:
        """Fill a template with invoice data, return HTML."""
        return self.env.get_template(template_name).render(**data)

    def render(self, html: str) -> bytes:
        """Convert HTML to PDF bytes."""
        from weasyprint import HTML
        return HTML(string=html, base_url=str(TEMPLATES_DIR)).write_pdf()

    def choose_destination(self, default_name: str) -> Optional[Path]:
        """Ask the operator where to save. Returns None if they cancel."""
        import tkinter as tk
        from tkinter import filedialog

        root = tk.Tk()
        root.withdraw()
        try:
            path = filedialog.asksaveasfilename(
                parent=root,
                title="Save Invoice",
                initialfile=default_name,
                defaultextension=".pdf",
                filetypes=[("PDF Files", "*.pdf")]
            )
        finally:
            root.destroy()
        return Path(path) if path else None

    def scratch_path(self, filename: str) -> Path:
        """Location for renders that skip the save dialog."""
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        return self.scratch_dir / filename

    def write(self, path: Path, data: bytes) -> Path:
        path = Path(path)
        path.write_bytes(data)
        logger.debug("Wrote %d bytes to %s", len(data), path)
        return path

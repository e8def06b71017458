"""Create, view, regenerate and delete invoices from time entries."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import db
from errors import CancelledOperation, NotFoundError, ValidationError
from generate_pdf import INVOICE_TEMPLATE, InvoiceRenderer
from invoice_assembler import (
    build_snapshot,
    create_invoice_filename,
    describe_missing_rates,
    find_missing_rates,
)

logger = logging.getLogger(__name__)


class InvoiceManager:
    """Invoice lifecycle: generated -> void, or deleted outright.

    Every render after creation reads the snapshot stored on the invoice,
    so a generated invoice looks the same even after rates change.
    """

    def __init__(self, renderer: Optional[InvoiceRenderer] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.renderer = renderer or InvoiceRenderer()
        self.clock = clock or datetime.now

    # === Generate ===

    def generate(self, client_id: Optional[int] = None, start_date=None, end_date=None,
                 entry_ids: Optional[List[int]] = None, interactive: bool = True) -> Dict:
        """Invoice a client's uninvoiced entries in a date range, or an explicit entry list.

        Returns invoice_id, invoice_number and path. If the save dialog is
        cancelled the invoice stays recorded and CancelledOperation is raised.
        """
        if entry_ids is not None:
            entries = self._selected_entries(entry_ids)
        else:
            entries = self._uninvoiced_entries(client_id, start_date, end_date)

        self._validate(entries)
        invoice = self._record_invoice(entries, db.get_next_invoice_number())
        logger.info("Generated invoice %s (id %s) for client %s",
                    invoice['invoice_number'], invoice['id'], invoice['client_id'])

        path = self.render_invoice(invoice, interactive)
        return {
            'invoice_id': invoice['id'],
            'invoice_number': invoice['invoice_number'],
            'path': str(path),
        }

    def _uninvoiced_entries(self, client_id, start_date, end_date) -> List[Dict]:
        if client_id is None:
            raise ValidationError("A client is required to generate an invoice")
        entries = db.get_time_entries(
            client_id=client_id,
            start_date=start_date,
            end_date=end_date,
            is_invoiced=False,
            is_active=False
        )
        if not entries:
            raise ValidationError("No uninvoiced time entries found for the specified criteria")
        return entries

    def _selected_entries(self, entry_ids: List[int]) -> List[Dict]:
        if not entry_ids:
            raise ValidationError("No time entries selected for invoice generation")
        entries = db.get_time_entries_by_ids(entry_ids)
        if not entries:
            raise ValidationError("No time entries found for the selected IDs")

        found = {entry['id'] for entry in entries}
        missing = sorted({int(entry_id) for entry_id in entry_ids} - found)
        if missing:
            raise ValidationError(
                "Time entries not found",
                details=[{'entry_id': entry_id} for entry_id in missing]
            )

        invoiced = [entry['id'] for entry in entries if entry['is_invoiced']]
        if invoiced:
            raise ValidationError(
                "Some selected time entries have already been invoiced",
                details=[{'entry_id': entry_id} for entry_id in invoiced]
            )
        running = [entry['id'] for entry in entries if entry['is_active']]
        if running:
            raise ValidationError(
                "Stop the running timer before invoicing it",
                details=[{'entry_id': entry_id} for entry_id in running]
            )
        return entries

    def _validate(self, entries: List[Dict]):
        orphans = [entry['id'] for entry in entries if entry['client_id'] is None]
        if orphans:
            raise ValidationError(
                "Assign a client to these time entries before invoicing them",
                details=[{'entry_id': entry_id} for entry_id in orphans]
            )
        client_ids = {entry['client_id'] for entry in entries}
        if len(client_ids) > 1:
            raise ValidationError("Cannot generate invoice for time entries from multiple clients")
        self._check_rates(entries)

    def _check_rates(self, entries: List[Dict]):
        missing = find_missing_rates(entries)
        if missing:
            raise ValidationError(describe_missing_rates(missing), details=missing)

    def _record_invoice(self, entries: List[Dict], invoice_number: str) -> Dict:
        snapshot = build_snapshot(entries, db.get_settings(), invoice_number, self.clock().date())
        return db.mark_as_invoiced([entry['id'] for entry in entries], invoice_number, snapshot)

    # === Render ===

    def render_invoice(self, invoice: Dict, interactive: bool = True) -> Path:
        """Render the invoice's stored snapshot and write the PDF.

        Interactive renders ask for a destination; others go to the
        renderer's scratch directory.
        """
        snapshot = invoice.get('data')
        if not snapshot:
            raise ValidationError("No template data found for this invoice")

        data = dict(snapshot)
        data['invoice_id'] = invoice['id']
        if not data.get('client_name'):
            data['client_name'] = (invoice.get('client') or {}).get('name') or 'Unknown Client'

        html = self.renderer.compile(INVOICE_TEMPLATE, data)
        if interactive:
            filename = create_invoice_filename(data['client_name'], data['invoice_number'], invoice['id'])
            path = self.renderer.choose_destination(filename)
            if path is None:
                logger.info("Save of invoice %s cancelled", data['invoice_number'])
                raise CancelledOperation("PDF generation canceled by user")
        else:
            timestamp = int(self.clock().timestamp() * 1000)
            filename = create_invoice_filename(data['client_name'], data['invoice_number'],
                                               invoice['id'], timestamp)
            path = self.renderer.scratch_path(filename)

        return self.renderer.write(path, self.renderer.render(html))

    def view(self, invoice_id: int, interactive: bool = True) -> Path:
        """Re-render a stored invoice. No database changes."""
        invoice = self._get_invoice(invoice_id)
        logger.debug("Viewing invoice %s", invoice_id)
        return self.render_invoice(invoice, interactive)

    def download(self, invoice_id: int) -> Path:
        """Re-render a stored invoice to a location the operator picks."""
        invoice = self._get_invoice(invoice_id)
        logger.debug("Downloading invoice %s", invoice_id)
        return self.render_invoice(invoice, interactive=True)

    # === Regenerate / delete ===

    def regenerate(self, invoice_id: int, interactive: bool = True) -> Dict:
        """Void an invoice and replace it with one built from the entries
        currently in its client and period. The invoice number is kept.
        """
        invoice = self._get_invoice(invoice_id)
        if invoice['status'] == db.INVOICE_STATUS_VOID:
            raise ValidationError(f"Invoice {invoice['invoice_number']} is void")
        if not invoice.get('period_start') or not invoice.get('period_end'):
            raise ValidationError(f"Invoice {invoice['invoice_number']} has no billing period")

        # Entries of this invoice count as uninvoiced once it is voided
        candidates = [
            entry for entry in db.get_time_entries(
                client_id=invoice['client_id'],
                start_date=invoice['period_start'],
                end_date=invoice['period_end'],
                is_active=False
            )
            if not entry['is_invoiced'] or entry['invoice_id'] == invoice['id']
        ]
        if not candidates:
            raise ValidationError("No uninvoiced time entries found for regeneration")
        self._check_rates(candidates)

        snapshot = build_snapshot(candidates, db.get_settings(), invoice['invoice_number'],
                                  self.clock().date())
        new_invoice = db.replace_invoice(invoice['id'], [entry['id'] for entry in candidates],
                                         invoice['invoice_number'], snapshot)
        logger.info("Regenerated invoice %s: voided id %s, new id %s",
                    invoice['invoice_number'], invoice['id'], new_invoice['id'])

        path = self.render_invoice(new_invoice, interactive)
        return {
            'invoice_id': new_invoice['id'],
            'invoice_number': new_invoice['invoice_number'],
            'voided_invoice_id': invoice['id'],
            'path': str(path),
        }

    def delete(self, invoice_id: int) -> Dict:
        """Release the invoice's entries and remove the invoice."""
        invoice = self._get_invoice(invoice_id)
        db.delete_invoice(invoice['id'])
        released = [entry['id'] for entry in invoice['time_entries']]
        logger.info("Deleted invoice %s (id %s), released %d entries",
                    invoice['invoice_number'], invoice['id'], len(released))
        return {
            'invoice_id': invoice['id'],
            'invoice_number': invoice['invoice_number'],
            'released_entry_ids': released,
        }

    def _get_invoice(self, invoice_id: int) -> Dict:
        invoice = db.get_invoice_by_id(invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

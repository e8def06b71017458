"""Rate resolution, day grouping and totals for invoices. No I/O."""

import re
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

VARIES = 'Varies'
DEFAULT_DESCRIPTION = 'General work'
DEFAULT_TERMS = 'Net 30'
DEFAULT_NET_DAYS = 30


def rate_for(entry: Dict) -> float:
    """Billable hourly rate: project rate, else client rate, else 0.

    Task rates are stored but not consulted.
    """
    project = entry.get('project') or {}
    client = entry.get('client') or {}
    return project.get('hourly_rate') or client.get('hourly_rate') or 0.0


def entry_hours(entry: Dict) -> float:
    return (entry.get('duration') or 0) / 60


def entry_date(entry: Dict) -> date:
    """Calendar date the entry started on."""
    start = entry['start_time']
    if isinstance(start, str):
        start = datetime.fromisoformat(start)
    return start.date() if isinstance(start, datetime) else start


def _unique(values: List) -> List:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _format_rate(rates: List[float]):
    return f"{rates[0]:.2f}" if len(rates) == 1 else VARIES


def group_by_day(entries: List[Dict]) -> List[Dict]:
    """Combine entries into one line item per calendar day, oldest first."""
    days = {}
    for entry in entries:
        day = days.setdefault(entry_date(entry), {
            'descriptions': [],
            'hours': 0.0,
            'amount': 0.0,
            'rates': [],
        })
        rate = rate_for(entry)
        hours = entry_hours(entry)

        description = (entry.get('description') or '').strip()
        if description and description not in day['descriptions']:
            day['descriptions'].append(description)
        if rate not in day['rates']:
            day['rates'].append(rate)
        day['hours'] += hours
        day['amount'] += hours * rate

    line_items = []
    for day_key in sorted(days):
        day = days[day_key]
        line_items.append({
            'date': day_key.isoformat(),
            'description': '; '.join(day['descriptions']) or DEFAULT_DESCRIPTION,
            'hours': f"{day['hours']:.2f}",
            'rate': _format_rate(day['rates']),
            'amount': f"{day['amount']:.2f}",
        })
    return line_items


def compute_totals(entries: List[Dict]) -> Dict:
    """Total hours, total amount and the display rate across all entries."""
    total_hours = sum(entry_hours(entry) for entry in entries)
    total_amount = sum(entry_hours(entry) * rate_for(entry) for entry in entries)
    rates = _unique([rate for rate in (rate_for(entry) for entry in entries) if rate])
    return {
        'total_hours': total_hours,
        'total_amount': total_amount,
        'display_rate': _format_rate(rates) if rates else VARIES,
    }


def period(entries: List[Dict]) -> Tuple[str, str]:
    """First and last start dates as YYYY-MM-DD, no time of day."""
    dates = [entry_date(entry) for entry in entries]
    return min(dates).isoformat(), max(dates).isoformat()


def parse_net_days(terms: Optional[str]) -> int:
    """Parse payment terms into days until due.

    "Due on receipt" is 0 days, "Net 15" is 15; anything else is 30.
    """
    if not terms:
        return DEFAULT_NET_DAYS
    text = str(terms).lower()
    if 'receipt' in text:
        return 0
    match = re.search(r'net\s*(\d+)', text)
    if match:
        return int(match.group(1)) or DEFAULT_NET_DAYS
    return DEFAULT_NET_DAYS


def calculate_due_date(terms: Optional[str], invoice_date: date) -> date:
    """Calculate due date from payment terms."""
    return invoice_date + timedelta(days=parse_net_days(terms))


def find_missing_rates(entries: List[Dict]) -> List[Dict]:
    """Details for every entry that resolves to a zero rate."""
    missing = []
    for entry in entries:
        if rate_for(entry) > 0:
            continue
        client = entry.get('client') or {}
        project = entry.get('project') or {}
        missing.append({
            'entry_id': entry.get('id'),
            'date': entry_date(entry).isoformat(),
            'client_name': client.get('name') or 'Unknown Client',
            'project_name': project.get('name') or 'No Project',
        })
    return missing


def describe_missing_rates(missing: List[Dict]) -> str:
    lines = '\n'.join(f"• {m['date']} - {m['client_name']}/{m['project_name']}" for m in missing)
    return (
        "Cannot generate invoice: The following time entries have no hourly rate set:\n\n"
        f"{lines}\n\n"
        "Please set hourly rates for the client or project before generating an invoice."
    )


def build_snapshot(entries: List[Dict], settings: Dict, invoice_number: str,
                   invoice_date: date) -> Dict:
    """Presentation data stored on the invoice and used for every later render."""
    totals = compute_totals(entries)
    period_start, period_end = period(entries)
    client = entries[0].get('client') or {}
    terms = settings.get('invoice_terms') or DEFAULT_TERMS

    return {
        'company_name': settings.get('company_name') or 'Your Company',
        'company_email': settings.get('company_email') or '',
        'company_phone': settings.get('company_phone') or '',
        'company_website': settings.get('company_website') or '',
        'invoice_number': invoice_number,
        'invoice_date': invoice_date.isoformat(),
        'terms': terms,
        'due_date': calculate_due_date(terms, invoice_date).isoformat(),
        'period_start': period_start,
        'period_end': period_end,
        'client_name': client.get('name') or 'Unknown Client',
        'client_email': client.get('email') or '',
        'line_items': group_by_day(entries),
        'total_hours': f"{totals['total_hours']:.2f}",
        'hourly_rate': totals['display_rate'],
        'total_amount': f"{totals['total_amount']:.2f}",
    }


def create_invoice_filename(client_name: Optional[str], invoice_number: str,
                            invoice_id: Optional[int] = None,
                            timestamp: Optional[int] = None) -> str:
    """Build a filesystem-safe PDF name for an invoice."""
    name = str(client_name or 'Unknown Client').strip()
    name = re.sub(r'[<>:"/\\|?*&]', '', name)
    name = re.sub(r'\s+', '.', name)
    name = name.replace('-', '.')[:30] or 'Unknown.Client'

    identifier = f"{invoice_number}-{invoice_id}" if invoice_id else invoice_number
    suffix = f"-{timestamp}" if timestamp else ''
    return f"Invoice-{name}-{identifier}{suffix}.pdf"


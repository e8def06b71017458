"""Database operations for timer tool: entries, invoices and settings in sqlite."""

import json
import logging
import re
import sqlite3
import sys
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict, Any, Iterable
from pathlib import Path

from errors import NotFoundError, StorageFault, ValidationError

logger = logging.getLogger(__name__)

INVOICE_STATUS_DRAFT = 'draft'
INVOICE_STATUS_GENERATED = 'generated'
INVOICE_STATUS_VOID = 'void'

# Canonical settings and their defaults. Older rows may use camelCase keys.
SETTING_DEFAULTS = {
    'company_name': 'Your Company',
    'company_email': '',
    'company_phone': '',
    'company_website': '',
    'invoice_terms': 'Net 30',
    'timer_rounding': '15',
}

TIME_ENTRY_FIELDS = (
    'client_id', 'project_id', 'task_id', 'description', 'start_time',
    'end_time', 'duration', 'is_active', 'is_invoiced', 'invoice_id',
)


def get_app_dir() -> Path:
    """Get the application directory."""
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def get_data_dir() -> Path:
    """Get the data directory (creates if needed)."""
    data_dir = get_app_dir() / "data"
    data_dir.mkdir(exist_ok=True)
    return data_dir


def get_logs_dir() -> Path:
    """Get the log directory (creates if needed)."""
    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(exist_ok=True)
    return logs_dir


DB_PATH = None


def get_db_path() -> Path:
    """Get the database path."""
    global DB_PATH
    if DB_PATH is None:
        DB_PATH = get_data_dir() / "timer.db"
    return DB_PATH


def get_connection() -> sqlite3.Connection:
    """Get database connection with row factory."""
    try:
        conn = sqlite3.connect(get_db_path())
    except sqlite3.Error as e:
        raise StorageFault(f"Cannot open database {get_db_path()}: {e}") from e
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Initialize all database tables."""
    conn = get_connection()
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS clients (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT,
            hourly_rate REAL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            hourly_rate REAL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (client_id) REFERENCES clients(id)
        )
    """)
    # Default project flag was added after the first release
    cursor.execute("PRAGMA table_info(projects)")
    project_cols = [row[1] for row in cursor.fetchall()]
    if 'is_default' not in project_cols:
        cursor.execute("ALTER TABLE projects ADD COLUMN is_default INTEGER DEFAULT 0")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            hourly_rate REAL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (project_id) REFERENCES projects(id)
        )
    """)

    # Invoice numbers are not unique: a regenerated invoice keeps its number
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS invoices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            invoice_number TEXT NOT NULL,
            client_id INTEGER NOT NULL,
            total_amount REAL NOT NULL,
            period_start TEXT,
            period_end TEXT,
            status TEXT DEFAULT 'draft',
            due_date TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (client_id) REFERENCES clients(id)
        )
    """)
    cursor.execute("PRAGMA table_info(invoices)")
    inv_cols = [row[1] for row in cursor.fetchall()]
    if 'data' not in inv_cols:
        cursor.execute("ALTER TABLE invoices ADD COLUMN data TEXT DEFAULT '{}'")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS time_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id INTEGER,
            project_id INTEGER,
            task_id INTEGER,
            description TEXT DEFAULT '',
            start_time TEXT NOT NULL,
            end_time TEXT,
            duration INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER DEFAULT 0,
            is_invoiced INTEGER DEFAULT 0,
            invoice_id INTEGER,
            created_at TEXT NOT NULL,
            FOREIGN KEY (client_id) REFERENCES clients(id),
            FOREIGN KEY (project_id) REFERENCES projects(id),
            FOREIGN KEY (task_id) REFERENCES tasks(id),
            FOREIGN KEY (invoice_id) REFERENCES invoices(id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)

    conn.commit()
    conn.close()


# === Settings ===

def canonical_setting_key(key: str) -> str:
    """Map companyName / company_name style keys to company_name."""
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


def get_settings() -> Dict[str, str]:
    """Get all settings under canonical keys, defaults filled in.

    When a value is stored under both casings the snake_case one wins
    unless it is empty.
    """
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT key, value FROM settings")
    rows = cursor.fetchall()
    conn.close()

    snake = {}
    aliased = {}
    for row in rows:
        key = canonical_setting_key(row['key'])
        if key == row['key']:
            snake[key] = row['value']
        else:
            aliased[key] = row['value']

    settings = dict(SETTING_DEFAULTS)
    for key in set(snake) | set(aliased):
        value = snake.get(key) or aliased.get(key)
        if value:
            settings[key] = value
        elif key not in settings:
            settings[key] = value or ''
    return settings


def get_setting(key: str, default: str = '') -> str:
    """Get a setting value."""
    return get_settings().get(canonical_setting_key(key), default)


def set_setting(key: str, value: Any):
    """Set a setting value under its canonical key, dropping any alias row."""
    canonical = canonical_setting_key(key)
    if canonical == 'timer_rounding' and not str(value).strip().isdigit():
        raise ValidationError(f"timer_rounding must be a whole number of minutes, got {value!r}")
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT key FROM settings")
    aliases = [row['key'] for row in cursor.fetchall()
               if row['key'] != canonical and canonical_setting_key(row['key']) == canonical]
    for alias in aliases:
        cursor.execute("DELETE FROM settings WHERE key = ?", (alias,))
    cursor.execute(
        "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
        (canonical, str(value))
    )
    conn.commit()
    conn.close()


# === Clients ===

CLIENT_COLUMNS = "id, name, email, COALESCE(hourly_rate, 0) as hourly_rate"


def get_clients() -> List[Dict]:
    """Get all clients ordered by name."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f"SELECT {CLIENT_COLUMNS} FROM clients ORDER BY name")
    rows = cursor.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def get_client(client_id: int) -> Optional[Dict]:
    """Get client by ID."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f"SELECT {CLIENT_COLUMNS} FROM clients WHERE id = ?", (client_id,))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def save_client(name: str, hourly_rate: float = 0, email: Optional[str] = None) -> int:
    """Save new client, return ID."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO clients (name, email, hourly_rate, created_at)
        VALUES (?, ?, ?, ?)
    """, (name, email or None, hourly_rate or 0, datetime.now().isoformat()))
    client_id = cursor.lastrowid
    conn.commit()
    conn.close()
    return client_id


def update_client(client_id: int, name: str, hourly_rate: float, email: Optional[str] = None):
    """Update existing client."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(
        "UPDATE clients SET name = ?, hourly_rate = ?, email = ? WHERE id = ?",
        (name, hourly_rate or 0, email or None, client_id)
    )
    conn.commit()
    conn.close()


def delete_client(client_id: int):
    """Permanently delete a client (only if no time entries)."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT COUNT(*) FROM time_entries WHERE client_id = ?", (client_id,))
    count = cursor.fetchone()[0]
    if count > 0:
        conn.close()
        raise ValueError(f"Cannot delete: has {count} time entries.")
    cursor.execute("DELETE FROM tasks WHERE project_id IN (SELECT id FROM projects WHERE client_id = ?)",
                   (client_id,))
    cursor.execute("DELETE FROM projects WHERE client_id = ?", (client_id,))
    cursor.execute("DELETE FROM clients WHERE id = ?", (client_id,))
    conn.commit()
    conn.close()


# === Projects ===

PROJECT_COLUMNS = "id, client_id, name, hourly_rate, COALESCE(is_default, 0) as is_default"


def _project_dict(row) -> Dict:
    project = dict(row)
    project['is_default'] = bool(project['is_default'])
    return project


def get_projects(client_id: Optional[int] = None) -> List[Dict]:
    """Get projects, optionally for one client."""
    conn = get_connection()
    cursor = conn.cursor()
    if client_id is not None:
        cursor.execute(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE client_id = ? ORDER BY name",
                       (client_id,))
    else:
        cursor.execute(f"SELECT {PROJECT_COLUMNS} FROM projects ORDER BY name")
    rows = cursor.fetchall()
    conn.close()
    return [_project_dict(row) for row in rows]


def get_project(project_id: int) -> Optional[Dict]:
    """Get project by ID."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,))
    row = cursor.fetchone()
    conn.close()
    return _project_dict(row) if row else None


def save_project(client_id: int, name: str, hourly_rate: Optional[float] = None,
                 is_default: bool = False) -> int:
    """Save new project, return ID. A default project replaces the client's previous default."""
    conn = get_connection()
    cursor = conn.cursor()
    if is_default:
        cursor.execute("UPDATE projects SET is_default = 0 WHERE client_id = ?", (client_id,))
    cursor.execute("""
        INSERT INTO projects (client_id, name, hourly_rate, is_default, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (client_id, name, hourly_rate or None, 1 if is_default else 0, datetime.now().isoformat()))
    project_id = cursor.lastrowid
    conn.commit()
    conn.close()
    return project_id


def get_default_project(client_id: int) -> Optional[Dict]:
    """Get the client's default project, if any."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(f"""
        SELECT {PROJECT_COLUMNS} FROM projects
        WHERE client_id = ? AND is_default = 1
        LIMIT 1
    """, (client_id,))
    row = cursor.fetchone()
    conn.close()
    return _project_dict(row) if row else None


# === Tasks ===

TASK_COLUMNS = "id, project_id, name, description, hourly_rate"


def get_tasks(project_id: Optional[int] = None) -> List[Dict]:
    """Get tasks, optionally for one project."""
    conn = get_connection()
    cursor = conn.cursor()
    if project_id is not None:
        cursor.execute(f"SELECT {TASK_COLUMNS} FROM tasks WHERE project_id = ? ORDER BY name",
                       (project_id,))
    else:
        cursor.execute(f"SELECT {TASK_COLUMNS} FROM tasks ORDER BY name")
    rows = cursor.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def save_task(project_id: int, name: str, description: Optional[str] = None,
              hourly_rate: Optional[float] = None) -> int:
    """Save new task, return ID."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO tasks (project_id, name, description, hourly_rate, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (project_id, name, description, hourly_rate, datetime.now().isoformat()))
    task_id = cursor.lastrowid
    conn.commit()
    conn.close()
    return task_id


# === Time Entries ===

def _to_iso(value) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _entry_dict(row) -> Dict:
    entry = dict(row)
    entry['is_active'] = bool(entry['is_active'])
    entry['is_invoiced'] = bool(entry['is_invoiced'])
    entry['description'] = entry['description'] or ''
    return entry


def _attach_relations(cursor: sqlite3.Cursor, entries: List[Dict]) -> List[Dict]:
    """Resolve client, project and task for each entry."""
    lookups = {
        'client': (f"SELECT {CLIENT_COLUMNS} FROM clients WHERE id = ?", dict, {}),
        'project': (f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", _project_dict, {}),
        'task': (f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?", dict, {}),
    }
    for entry in entries:
        for name, (query, convert, cache) in lookups.items():
            ref = entry.get(f'{name}_id')
            if ref is None:
                entry[name] = None
                continue
            if ref not in cache:
                cursor.execute(query, (ref,))
                row = cursor.fetchone()
                cache[ref] = convert(row) if row else None
            entry[name] = cache[ref]
    return entries


def _duration_between(start_time, end_time) -> int:
    start = datetime.fromisoformat(_to_iso(start_time))
    end = datetime.fromisoformat(_to_iso(end_time))
    return max(0, int((end - start).total_seconds() // 60))


def create_time_entry(
    start_time,
    client_id: Optional[int] = None,
    project_id: Optional[int] = None,
    task_id: Optional[int] = None,
    description: str = '',
    end_time=None,
    duration: Optional[int] = None,
    is_active: bool = False
) -> Dict:
    """Save a time entry and return it with relations.

    When both start and end are given and no duration, the duration is the
    whole minutes between them.
    """
    if start_time is None:
        raise ValueError("start_time is required")
    if duration is None:
        duration = _duration_between(start_time, end_time) if end_time is not None else 0

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO time_entries
        (client_id, project_id, task_id, description, start_time, end_time,
         duration, is_active, is_invoiced, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
    """, (
        client_id or None,
        project_id or None,
        task_id or None,
        description or '',
        _to_iso(start_time),
        _to_iso(end_time),
        duration,
        1 if is_active else 0,
        datetime.now().isoformat()
    ))
    entry_id = cursor.lastrowid
    conn.commit()
    conn.close()
    return get_time_entry(entry_id)


def update_time_entry(entry_id: int, **fields) -> Dict:
    """Update the given columns of a time entry and return it.

    Passing a field as None clears it. If start and end are both set and no
    duration is given, the duration is recomputed.
    """
    if not fields:
        raise ValueError("Update data is required")
    unknown = set(fields) - set(TIME_ENTRY_FIELDS)
    if unknown:
        raise ValueError(f"Unknown time entry fields: {', '.join(sorted(unknown))}")

    if ('duration' not in fields and fields.get('start_time') is not None
            and fields.get('end_time') is not None):
        fields['duration'] = _duration_between(fields['start_time'], fields['end_time'])

    updates = []
    values = []
    for name, value in fields.items():
        if isinstance(value, bool):
            value = 1 if value else 0
        updates.append(f"{name} = ?")
        values.append(_to_iso(value))

    conn = get_connection()
    cursor = conn.cursor()
    values.append(entry_id)
    cursor.execute(
        f"UPDATE time_entries SET {', '.join(updates)} WHERE id = ?",
        values
    )
    updated = cursor.rowcount
    conn.commit()
    conn.close()
    if not updated:
        raise NotFoundError(f"Time entry {entry_id} not found")
    return get_time_entry(entry_id)


def delete_time_entry(entry_id: int) -> bool:
    """Delete a time entry. Returns False if it does not exist."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT is_invoiced FROM time_entries WHERE id = ?", (entry_id,))
    row = cursor.fetchone()
    if not row:
        conn.close()
        return False
    if row['is_invoiced']:
        conn.close()
        raise ValueError("Cannot delete invoiced time entry")
    cursor.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))
    conn.commit()
    conn.close()
    return True


def get_time_entry(entry_id: int) -> Optional[Dict]:
    """Get a single time entry by ID, with relations."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM time_entries WHERE id = ?", (entry_id,))
    row = cursor.fetchone()
    if not row:
        conn.close()
        return None
    entry = _attach_relations(cursor, [_entry_dict(row)])[0]
    conn.close()
    return entry


def get_time_entries(
    client_id: Optional[int] = None,
    start_date=None,
    end_date=None,
    is_invoiced: Optional[bool] = None,
    is_active: Optional[bool] = None
) -> List[Dict]:
    """Get time entries with optional filters, most recently started first.

    The date range is inclusive on calendar days and tested against start_time.
    """
    conn = get_connection()
    cursor = conn.cursor()

    query = "SELECT * FROM time_entries WHERE 1=1"
    params = []

    if client_id is not None:
        query += " AND client_id = ?"
        params.append(client_id)
    if start_date is not None:
        query += " AND start_time >= ?"
        params.append(datetime.combine(_as_date(start_date), datetime.min.time()).isoformat())
    if end_date is not None:
        query += " AND start_time < ?"
        next_day = _as_date(end_date) + timedelta(days=1)
        params.append(datetime.combine(next_day, datetime.min.time()).isoformat())
    if is_invoiced is not None:
        query += " AND is_invoiced = ?"
        params.append(1 if is_invoiced else 0)
    if is_active is not None:
        query += " AND is_active = ?"
        params.append(1 if is_active else 0)

    query += " ORDER BY start_time DESC, id DESC"

    cursor.execute(query, params)
    entries = _attach_relations(cursor, [_entry_dict(row) for row in cursor.fetchall()])
    conn.close()
    logger.debug("Retrieved %d time entries", len(entries))
    return entries


def get_time_entries_by_ids(entry_ids: Iterable[int]) -> List[Dict]:
    """Get the given time entries, oldest first. Unknown IDs are skipped."""
    entry_ids = [int(entry_id) for entry_id in entry_ids]
    if not entry_ids:
        return []
    conn = get_connection()
    cursor = conn.cursor()
    placeholders = ','.join('?' * len(entry_ids))
    cursor.execute(f"""
        SELECT * FROM time_entries
        WHERE id IN ({placeholders})
        ORDER BY start_time, id
    """, entry_ids)
    entries = _attach_relations(cursor, [_entry_dict(row) for row in cursor.fetchall()])
    conn.close()
    return entries


# === Invoices ===

def _load_snapshot(raw: Optional[str]) -> Dict:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        raise StorageFault(f"Invoice data is not valid JSON: {e}") from e


def _invoice_dict(row) -> Dict:
    invoice = dict(row)
    invoice['data'] = _load_snapshot(invoice.get('data'))
    return invoice


def get_next_invoice_number() -> str:
    """Generate next invoice number."""
    conn = get_connection()
    cursor = conn.cursor()
    # sqlite_sequence keeps counting after deletes, so numbers are never reused
    cursor.execute("SELECT seq FROM sqlite_sequence WHERE name = 'invoices'")
    row = cursor.fetchone()
    conn.close()
    next_num = (row['seq'] if row else 0) + 1
    return f"INV-{next_num:04d}"


def _insert_invoice(cursor: sqlite3.Cursor, entry_ids: List[int], invoice_number: str,
                    snapshot: Dict) -> int:
    """Insert a generated invoice and bill the entries to it. Caller commits."""
    placeholders = ','.join('?' * len(entry_ids))
    cursor.execute(
        f"SELECT DISTINCT client_id FROM time_entries WHERE id IN ({placeholders})",
        entry_ids
    )
    client_ids = [row['client_id'] for row in cursor.fetchall()]
    if not client_ids:
        raise ValidationError("No time entries provided to mark as invoiced")
    if None in client_ids:
        raise ValidationError("Cannot create invoice for time entries without a client")
    if len(client_ids) > 1:
        raise ValidationError("Cannot create invoice for multiple clients at once")

    cursor.execute("""
        INSERT INTO invoices
        (invoice_number, client_id, total_amount, period_start, period_end,
         status, due_date, data, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        invoice_number,
        client_ids[0],
        round(float(snapshot.get('total_amount') or 0), 2),
        snapshot.get('period_start'),
        snapshot.get('period_end'),
        INVOICE_STATUS_GENERATED,
        snapshot.get('due_date'),
        json.dumps(snapshot, sort_keys=True),
        datetime.now().isoformat()
    ))
    invoice_id = cursor.lastrowid

    cursor.execute(f"""
        UPDATE time_entries
        SET is_invoiced = 1, invoice_id = ?
        WHERE id IN ({placeholders})
    """, [invoice_id] + entry_ids)
    return invoice_id


def mark_as_invoiced(entry_ids: List[int], invoice_number: str, snapshot: Dict) -> Dict:
    """Create a generated invoice holding `snapshot` and bill the entries to it.

    The invoice insert and the entry update share one transaction.
    """
    entry_ids = [int(entry_id) for entry_id in entry_ids]
    if not entry_ids:
        raise ValidationError("No time entries provided to mark as invoiced")

    conn = get_connection()
    cursor = conn.cursor()
    try:
        invoice_id = _insert_invoice(cursor, entry_ids, invoice_number, snapshot)
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise StorageFault(f"Could not record invoice {invoice_number}: {e}") from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    logger.info("Invoice %s (id %s) recorded for %d entries", invoice_number, invoice_id, len(entry_ids))
    return get_invoice_by_id(invoice_id)


def replace_invoice(old_invoice_id: int, entry_ids: List[int], invoice_number: str,
                    snapshot: Dict) -> Dict:
    """Void an invoice, release its entries and record its replacement.

    All three writes share one transaction: on failure the old invoice
    keeps its status and entries.
    """
    entry_ids = [int(entry_id) for entry_id in entry_ids]
    if not entry_ids:
        raise ValidationError("No time entries provided to mark as invoiced")

    conn = get_connection()
    cursor = conn.cursor()
    try:
        cursor.execute("UPDATE invoices SET status = ? WHERE id = ?",
                       (INVOICE_STATUS_VOID, old_invoice_id))
        if not cursor.rowcount:
            raise NotFoundError(f"Invoice {old_invoice_id} not found")
        cursor.execute("""
            UPDATE time_entries SET is_invoiced = 0, invoice_id = NULL
            WHERE invoice_id = ?
        """, (old_invoice_id,))
        invoice_id = _insert_invoice(cursor, entry_ids, invoice_number, snapshot)
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise StorageFault(f"Could not replace invoice {invoice_number}: {e}") from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    logger.info("Invoice %s (id %s) replaced by id %s", invoice_number, old_invoice_id, invoice_id)
    return get_invoice_by_id(invoice_id)


def unmark_as_invoiced(entry_ids: List[int]):
    """Release time entries from their invoice."""
    entry_ids = [int(entry_id) for entry_id in entry_ids]
    if not entry_ids:
        return
    conn = get_connection()
    cursor = conn.cursor()
    placeholders = ','.join('?' * len(entry_ids))
    cursor.execute(f"""
        UPDATE time_entries
        SET is_invoiced = 0, invoice_id = NULL
        WHERE id IN ({placeholders})
    """, entry_ids)
    conn.commit()
    conn.close()


def void_invoice(invoice_id: int):
    """Mark an invoice as void. The snapshot is left untouched."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("UPDATE invoices SET status = ? WHERE id = ?", (INVOICE_STATUS_VOID, invoice_id))
    updated = cursor.rowcount
    conn.commit()
    conn.close()
    if not updated:
        raise NotFoundError(f"Invoice {invoice_id} not found")


def get_invoice_by_id(invoice_id: int) -> Optional[Dict]:
    """Get invoice by ID with its client and time entries."""
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,))
    row = cursor.fetchone()
    if not row:
        conn.close()
        return None
    invoice = _invoice_dict(row)

    cursor.execute(f"SELECT {CLIENT_COLUMNS} FROM clients WHERE id = ?", (invoice['client_id'],))
    client = cursor.fetchone()
    invoice['client'] = dict(client) if client else None

    cursor.execute("SELECT * FROM time_entries WHERE invoice_id = ? ORDER BY start_time, id",
                   (invoice_id,))
    invoice['time_entries'] = _attach_relations(cursor, [_entry_dict(r) for r in cursor.fetchall()])
    conn.close()
    return invoice


def get_invoices(limit: Optional[int] = None) -> List[Dict]:
    """Get invoices newest first, with client name."""
    conn = get_connection()
    cursor = conn.cursor()
    query = """
        SELECT i.*, c.name as client_name
        FROM invoices i
        LEFT JOIN clients c ON i.client_id = c.id
        ORDER BY i.created_at DESC, i.id DESC
    """
    params = []
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    cursor.execute(query, params)
    rows = cursor.fetchall()
    conn.close()
    return [_invoice_dict(row) for row in rows]


def delete_invoice(invoice_id: int) -> Dict:
    """Release the invoice's entries, then delete the invoice row."""
    invoice = get_invoice_by_id(invoice_id)
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")

    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("""
        UPDATE time_entries SET is_invoiced = 0, invoice_id = NULL
        WHERE invoice_id = ?
    """, (invoice_id,))
    cursor.execute("DELETE FROM invoices WHERE id = ?", (invoice_id,))
    conn.commit()
    conn.close()
    return invoice


# === Helpers ===

def format_currency(amount: float) -> str:
    """Format amount as currency."""
    return f"${amount:,.2f}"


def format_date_display(iso_date: str) -> str:
    """Format ISO date for display (Month DD, YYYY)."""
    dt = datetime.fromisoformat(iso_date)
    return dt.strftime("%B %d, %Y")


# Initialize on import
init_db()

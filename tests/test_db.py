"""Tests for database operations."""

import pytest
import tempfile
import sys
from datetime import date, datetime
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import db
from errors import NotFoundError, StorageFault, ValidationError


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    temp_dir = tempfile.mkdtemp()
    original_get_app_dir = db.get_app_dir
    db.get_app_dir = lambda: Path(temp_dir)
    db.DB_PATH = None
    db.init_db()
    yield temp_dir
    db.get_app_dir = original_get_app_dir
    db.DB_PATH = None
    import shutil
    shutil.rmtree(temp_dir, ignore_errors=True)


def raw_setting(key, value):
    conn = db.get_connection()
    conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))
    conn.commit()
    conn.close()


class TestSettings:
    """Test settings storage and key normalization."""

    def test_defaults(self, temp_db):
        settings = db.get_settings()
        assert settings['company_name'] == 'Your Company'
        assert settings['invoice_terms'] == 'Net 30'
        assert settings['timer_rounding'] == '15'

    def test_set_and_get(self, temp_db):
        db.set_setting('company_name', 'Studio')
        assert db.get_setting('company_name') == 'Studio'
        assert db.get_setting('companyName') == 'Studio'

    def test_camel_case_row_is_read(self, temp_db):
        raw_setting('companyEmail', 'hi@studio.test')
        assert db.get_settings()['company_email'] == 'hi@studio.test'

    def test_snake_case_wins_unless_empty(self, temp_db):
        raw_setting('companyName', 'Camel')
        raw_setting('company_name', 'Snake')
        assert db.get_settings()['company_name'] == 'Snake'

        raw_setting('company_name', '')
        assert db.get_settings()['company_name'] == 'Camel'

    def test_set_drops_alias_rows(self, temp_db):
        raw_setting('invoiceTerms', 'Net 10')
        db.set_setting('invoiceTerms', 'Net 20')

        conn = db.get_connection()
        keys = [row['key'] for row in conn.execute("SELECT key FROM settings")]
        conn.close()
        assert keys == ['invoice_terms']
        assert db.get_setting('invoice_terms') == 'Net 20'

    def test_timer_rounding_must_be_minutes(self, temp_db):
        with pytest.raises(ValidationError):
            db.set_setting('timerRounding', '15 minutes')
        assert db.get_setting('timer_rounding') == '15'
        db.set_setting('timerRounding', '30')
        assert db.get_setting('timer_rounding') == '30'

    def test_unknown_setting_default(self, temp_db):
        assert db.get_setting('nothing', 'fallback') == 'fallback'

    def test_canonical_setting_key(self):
        assert db.canonical_setting_key('companyWebsite') == 'company_website'
        assert db.canonical_setting_key('timer_rounding') == 'timer_rounding'


class TestClients:
    """Test client operations."""

    def test_save_and_get_client(self, temp_db):
        client_id = db.save_client("Test Client", 150.0, "a@b.test")
        client = db.get_client(client_id)
        assert client['name'] == "Test Client"
        assert client['hourly_rate'] == 150.0
        assert client['email'] == "a@b.test"

    def test_get_clients_ordered(self, temp_db):
        db.save_client("Zebra Corp", 100.0)
        db.save_client("Alpha Inc", 100.0)
        names = [c['name'] for c in db.get_clients()]
        assert names == ["Alpha Inc", "Zebra Corp"]

    def test_update_client(self, temp_db):
        client_id = db.save_client("Old Name", 100.0)
        db.update_client(client_id, "New Name", 200.0)
        client = db.get_client(client_id)
        assert client['name'] == "New Name"
        assert client['hourly_rate'] == 200.0

    def test_delete_client_with_entries_blocked(self, temp_db):
        client_id = db.save_client("Busy", 100.0)
        db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id, duration=30)
        with pytest.raises(ValueError):
            db.delete_client(client_id)

    def test_delete_client(self, temp_db):
        client_id = db.save_client("Idle", 100.0)
        db.save_project(client_id, "Site")
        db.delete_client(client_id)
        assert db.get_client(client_id) is None
        assert db.get_projects(client_id) == []


class TestProjects:
    """Test projects and tasks."""

    def test_project_rate_optional(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        project = db.get_project(db.save_project(client_id, "No rate"))
        assert project['hourly_rate'] is None
        assert project['is_default'] is False

    def test_single_default_project(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        first = db.save_project(client_id, "First", is_default=True)
        second = db.save_project(client_id, "Second", is_default=True)

        assert db.get_default_project(client_id)['id'] == second
        assert db.get_project(first)['is_default'] is False

    def test_tasks(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        project_id = db.save_project(client_id, "Site")
        db.save_task(project_id, "Design", "Mockups", 90.0)
        tasks = db.get_tasks(project_id)
        assert len(tasks) == 1
        assert tasks[0]['hourly_rate'] == 90.0


class TestTimeEntries:
    """Test time entry operations."""

    def test_create_with_relations(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        project_id = db.save_project(client_id, "Site", 120.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id,
                                     project_id=project_id, duration=45, description="Work")
        assert entry['client']['name'] == "Client"
        assert entry['project']['hourly_rate'] == 120.0
        assert entry['task'] is None
        assert entry['is_active'] is False
        assert entry['is_invoiced'] is False
        assert entry['duration'] == 45

    def test_duration_from_start_and_end(self, temp_db):
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), end_time=datetime(2024, 1, 3, 10, 30, 40))
        assert entry['duration'] == 90

    def test_start_time_required(self, temp_db):
        with pytest.raises(ValueError):
            db.create_time_entry(None)

    def test_update_entry(self, temp_db):
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), duration=10)
        updated = db.update_time_entry(entry['id'], description="Changed",
                                       start_time=datetime(2024, 1, 3, 9),
                                       end_time=datetime(2024, 1, 3, 11))
        assert updated['description'] == "Changed"
        assert updated['duration'] == 120

    def test_update_rejects_bad_input(self, temp_db):
        entry = db.create_time_entry(datetime(2024, 1, 3, 9))
        with pytest.raises(ValueError):
            db.update_time_entry(entry['id'])
        with pytest.raises(ValueError):
            db.update_time_entry(entry['id'], colour='red')
        with pytest.raises(NotFoundError):
            db.update_time_entry(999, description="x")

    def test_date_range_is_inclusive(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        before = db.create_time_entry(datetime(2024, 1, 2, 23, 59), client_id=client_id)
        first = db.create_time_entry(datetime(2024, 1, 3, 0, 0), client_id=client_id)
        last = db.create_time_entry(datetime(2024, 1, 5, 23, 59), client_id=client_id)
        after = db.create_time_entry(datetime(2024, 1, 6, 0, 0), client_id=client_id)

        entries = db.get_time_entries(client_id=client_id, start_date=date(2024, 1, 3),
                                      end_date='2024-01-05')
        ids = [e['id'] for e in entries]

        assert ids == [last['id'], first['id']]
        assert before['id'] not in ids and after['id'] not in ids

    def test_filters(self, temp_db):
        a = db.save_client("A", 100.0)
        b = db.save_client("B", 100.0)
        running = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=a, is_active=True)
        done = db.create_time_entry(datetime(2024, 1, 3, 8), client_id=a, duration=60)
        db.create_time_entry(datetime(2024, 1, 3, 8), client_id=b, duration=60)

        assert [e['id'] for e in db.get_time_entries(client_id=a)] == [running['id'], done['id']]
        assert [e['id'] for e in db.get_time_entries(client_id=a, is_active=False)] == [done['id']]
        assert len(db.get_time_entries(is_invoiced=False)) == 3

    def test_get_by_ids_oldest_first(self, temp_db):
        late = db.create_time_entry(datetime(2024, 1, 9, 9))
        early = db.create_time_entry(datetime(2024, 1, 2, 9))
        entries = db.get_time_entries_by_ids([late['id'], early['id'], 999])
        assert [e['id'] for e in entries] == [early['id'], late['id']]
        assert db.get_time_entries_by_ids([]) == []

    def test_delete_entry(self, temp_db):
        entry = db.create_time_entry(datetime(2024, 1, 3, 9))
        assert db.delete_time_entry(entry['id']) is True
        assert db.get_time_entry(entry['id']) is None
        assert db.delete_time_entry(entry['id']) is False

    def test_delete_invoiced_entry_blocked(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id, duration=60)
        db.mark_as_invoiced([entry['id']], "INV-0001", {'total_amount': '100.00'})
        with pytest.raises(ValueError):
            db.delete_time_entry(entry['id'])


class TestInvoices:
    """Test invoice records."""

    SNAPSHOT = {
        'invoice_number': 'INV-0001',
        'total_amount': '150.00',
        'period_start': '2024-01-03',
        'period_end': '2024-01-04',
        'due_date': '2024-02-03',
        'line_items': [],
    }

    def test_next_invoice_number(self, temp_db):
        assert db.get_next_invoice_number() == "INV-0001"
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        db.mark_as_invoiced([entry['id']], "INV-0001", self.SNAPSHOT)
        assert db.get_next_invoice_number() == "INV-0002"

    def test_mark_as_invoiced(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        e1 = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id, duration=60)
        e2 = db.create_time_entry(datetime(2024, 1, 4, 9), client_id=client_id, duration=30)

        invoice = db.mark_as_invoiced([e1['id'], e2['id']], "INV-0001", self.SNAPSHOT)

        assert invoice['status'] == db.INVOICE_STATUS_GENERATED
        assert invoice['client_id'] == client_id
        assert invoice['client']['name'] == "Client"
        assert invoice['total_amount'] == 150.0
        assert invoice['period_start'] == '2024-01-03'
        assert invoice['due_date'] == '2024-02-03'
        assert invoice['data'] == self.SNAPSHOT
        assert [e['id'] for e in invoice['time_entries']] == [e1['id'], e2['id']]
        assert all(e['invoice_id'] == invoice['id'] for e in invoice['time_entries'])

    def test_mark_as_invoiced_mixed_clients(self, temp_db):
        a = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=db.save_client("A", 100.0))
        b = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=db.save_client("B", 100.0))

        with pytest.raises(ValidationError):
            db.mark_as_invoiced([a['id'], b['id']], "INV-0001", self.SNAPSHOT)
        assert db.get_invoices() == []
        assert db.get_time_entry(a['id'])['is_invoiced'] is False

    def test_mark_as_invoiced_needs_entries(self, temp_db):
        with pytest.raises(ValidationError):
            db.mark_as_invoiced([], "INV-0001", self.SNAPSHOT)
        with pytest.raises(ValidationError):
            db.mark_as_invoiced([404], "INV-0001", self.SNAPSHOT)

    def test_void_and_list(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        invoice = db.mark_as_invoiced([entry['id']], "INV-0001", self.SNAPSHOT)

        db.void_invoice(invoice['id'])

        listed = db.get_invoices()
        assert len(listed) == 1
        assert listed[0]['status'] == db.INVOICE_STATUS_VOID
        assert listed[0]['client_name'] == "Client"
        with pytest.raises(NotFoundError):
            db.void_invoice(999)

    def test_mark_as_invoiced_without_client(self, temp_db):
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), duration=60)
        with pytest.raises(ValidationError):
            db.mark_as_invoiced([entry['id']], "INV-0001", self.SNAPSHOT)
        assert db.get_invoices() == []

    def test_unmark_as_invoiced(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        db.mark_as_invoiced([entry['id']], "INV-0001", self.SNAPSHOT)

        db.unmark_as_invoiced([entry['id']])

        released = db.get_time_entry(entry['id'])
        assert released['is_invoiced'] is False
        assert released['invoice_id'] is None

    def test_replace_invoice(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        e1 = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        e2 = db.create_time_entry(datetime(2024, 1, 4, 9), client_id=client_id)
        old = db.mark_as_invoiced([e1['id']], "INV-0001", self.SNAPSHOT)

        new = db.replace_invoice(old['id'], [e1['id'], e2['id']], "INV-0001", self.SNAPSHOT)

        assert db.get_invoice_by_id(old['id'])['status'] == db.INVOICE_STATUS_VOID
        assert db.get_invoice_by_id(old['id'])['time_entries'] == []
        assert new['status'] == db.INVOICE_STATUS_GENERATED
        assert [e['id'] for e in new['time_entries']] == [e1['id'], e2['id']]

    def test_failed_replace_rolls_back(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        orphan = db.create_time_entry(datetime(2024, 1, 4, 9))
        old = db.mark_as_invoiced([entry['id']], "INV-0001", self.SNAPSHOT)

        with pytest.raises(ValidationError):
            db.replace_invoice(old['id'], [orphan['id']], "INV-0001", self.SNAPSHOT)

        kept = db.get_invoice_by_id(old['id'])
        assert kept['status'] == db.INVOICE_STATUS_GENERATED
        assert [e['id'] for e in kept['time_entries']] == [entry['id']]
        assert len(db.get_invoices()) == 1

    def test_replace_unknown_invoice(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        with pytest.raises(NotFoundError):
            db.replace_invoice(999, [entry['id']], "INV-0001", self.SNAPSHOT)
        assert db.get_time_entry(entry['id'])['is_invoiced'] is False

    def test_delete_invoice(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        invoice = db.mark_as_invoiced([entry['id']], "INV-0001", self.SNAPSHOT)

        db.delete_invoice(invoice['id'])

        assert db.get_invoice_by_id(invoice['id']) is None
        assert db.get_time_entry(entry['id'])['invoice_id'] is None
        with pytest.raises(NotFoundError):
            db.delete_invoice(invoice['id'])

    def test_corrupt_snapshot(self, temp_db):
        client_id = db.save_client("Client", 100.0)
        entry = db.create_time_entry(datetime(2024, 1, 3, 9), client_id=client_id)
        invoice = db.mark_as_invoiced([entry['id']], "INV-0001", self.SNAPSHOT)
        conn = db.get_connection()
        conn.execute("UPDATE invoices SET data = ? WHERE id = ?", ("{not json", invoice['id']))
        conn.commit()
        conn.close()

        with pytest.raises(StorageFault):
            db.get_invoice_by_id(invoice['id'])


class TestFormatting:
    """Test helpers."""

    def test_format_currency(self):
        assert db.format_currency(1234.5) == "$1,234.50"

    def test_format_date_display(self):
        assert db.format_date_display("2024-01-03") == "January 03, 2024"


if __name__ == '__main__':
    pytest.main([__file__, '-v'])

"""Named actions for the front end: timer and invoice operations as result dicts.

Every action returns {'success': True, 'result': ...} or
{'success': False, 'error': str, 'error_type': str}.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

import db
from errors import CancelledOperation, NotFoundError, StorageFault, ValidationError
from generate_pdf import InvoiceRenderer
from invoice_manager import InvoiceManager
from timer_engine import TimerEngine

logger = logging.getLogger(__name__)

_engine: Optional[TimerEngine] = None
_manager: Optional[InvoiceManager] = None


def configure(renderer: Optional[InvoiceRenderer] = None,
              clock: Optional[Callable[[], datetime]] = None):
    """Rebuild the shared engine and manager (renderer and clock are injectable)."""
    global _engine, _manager
    _engine = TimerEngine(clock=clock)
    _manager = InvoiceManager(renderer=renderer, clock=clock)


def get_engine() -> TimerEngine:
    global _engine
    if _engine is None:
        _engine = TimerEngine()
    return _engine


def get_manager() -> InvoiceManager:
    global _manager
    if _manager is None:
        _manager = InvoiceManager()
    return _manager


def _failure(error: Exception, error_type: str, **extra) -> Dict:
    result = {'success': False, 'error': str(error), 'error_type': error_type}
    result.update(extra)
    return result


def _run(name: str, action: Callable, *args, **kwargs) -> Dict:
    logger.debug("%s called with %s %s", name, args, kwargs)
    try:
        result = action(*args, **kwargs)
    except ValidationError as e:
        logger.debug("%s rejected: %s", name, e)
        return _failure(e, 'validation', details=e.details)
    except CancelledOperation as e:
        logger.info("%s cancelled by user", name)
        return _failure(e, 'cancelled')
    except NotFoundError as e:
        logger.warning("%s: %s", name, e)
        return _failure(e, 'not_found')
    except StorageFault as e:
        logger.error("%s: storage error: %s", name, e)
        return _failure(e, 'storage')
    except Exception as e:
        logger.exception("%s failed", name)
        return _failure(e, 'unexpected')
    return {'success': True, 'result': result}


# === Timer ===

def _start(client_id, project_id, task_id, description, use_default_project):
    if project_id is None and client_id is not None and use_default_project:
        default = db.get_default_project(client_id)
        project_id = default['id'] if default else None
    return get_engine().start_timer(client_id=client_id, project_id=project_id,
                                    task_id=task_id, description=description)


def start_timer(client_id: Optional[int] = None, project_id: Optional[int] = None,
                task_id: Optional[int] = None, description: str = '',
                use_default_project: bool = False) -> Dict:
    """Start a timer; with use_default_project, a missing project is the client's default."""
    return _run('start_timer', _start, client_id, project_id, task_id, description,
                use_default_project)


def stop_timer(entry_id: Optional[int] = None, round_to: Optional[int] = None) -> Dict:
    return _run('stop_timer', get_engine().stop_timer, entry_id, round_to)


def resume_timer(entry_id: int) -> Dict:
    return _run('resume_timer', get_engine().resume_timer, entry_id)


def get_active_timer() -> Dict:
    return _run('get_active_timer', get_engine().get_active_timer)


# === Clients, projects, settings ===

def add_client(name: str, hourly_rate: float = 0, email: Optional[str] = None) -> Dict:
    return _run('add_client', lambda: db.get_client(db.save_client(name, hourly_rate, email)))


def add_project(client_id: int, name: str, hourly_rate: Optional[float] = None,
                is_default: bool = False) -> Dict:
    def add():
        if db.get_client(client_id) is None:
            raise NotFoundError(f"Client {client_id} not found")
        return db.get_project(db.save_project(client_id, name, hourly_rate, is_default))
    return _run('add_project', add)


def set_setting(key: str, value) -> Dict:
    return _run('set_setting', db.set_setting, key, value)


# === Invoices ===

def generate_invoice(client_id: int, start_date=None, end_date=None,
                     interactive: bool = True) -> Dict:
    """Invoice a client's uninvoiced entries between two dates (inclusive)."""
    return _run('generate_invoice', get_manager().generate,
                client_id=client_id, start_date=start_date, end_date=end_date,
                interactive=interactive)


def generate_invoice_from_selected(entry_ids: List[int], interactive: bool = True) -> Dict:
    return _run('generate_invoice_from_selected', get_manager().generate,
                entry_ids=entry_ids, interactive=interactive)


def view_invoice(invoice_id: int, interactive: bool = True) -> Dict:
    return _run('view_invoice', lambda: str(get_manager().view(invoice_id, interactive)))


def download_invoice(invoice_id: int) -> Dict:
    return _run('download_invoice', lambda: str(get_manager().download(invoice_id)))


def regenerate_invoice(invoice_id: int, interactive: bool = True) -> Dict:
    return _run('regenerate_invoice', get_manager().regenerate, invoice_id, interactive)


def delete_invoice(invoice_id: int) -> Dict:
    return _run('delete_invoice', get_manager().delete, invoice_id)


def list_invoices(limit: Optional[int] = None) -> Dict:
    return _run('list_invoices', db.get_invoices, limit)

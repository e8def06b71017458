"""Main entry point for Timer Tool."""

import argparse
import logging
import logging.handlers
import os
import sys
from datetime import date

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import db
import invoice_bridge
import timer_engine

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
FILE_HANDLER_NAME = 'timertool.file'
CONSOLE_HANDLER_NAME = 'timertool.console'


def configure_logging(verbose: bool = False):
    """Log to data/logs/app.log, and to stderr for warnings (or everything with -v)."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(root.handlers):
        if handler.get_name() in (FILE_HANDLER_NAME, CONSOLE_HANDLER_NAME):
            root.removeHandler(handler)
            handler.close()

    file_handler = logging.handlers.RotatingFileHandler(
        db.get_logs_dir() / 'app.log', maxBytes=5 * 1024 * 1024, backupCount=5, encoding='utf-8'
    )
    file_handler.set_name(FILE_HANDLER_NAME)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    console.set_name(CONSOLE_HANDLER_NAME)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    root.addHandler(console)


def _print_entry(entry):
    client = (entry.get('client') or {}).get('name') or 'No client'
    project = (entry.get('project') or {}).get('name') or 'No project'
    state = 'running' if entry['is_active'] else timer_engine.format_minutes(entry['duration'])
    print(f"#{entry['id']}  {entry['start_time'][:16]}  {client}/{project}  {state}  {entry['description']}")


def _report(response, show=None) -> int:
    if not response['success']:
        print(f"Error: {response['error']}", file=sys.stderr)
        return 1
    if show:
        show(response['result'])
    return 0


def cmd_start(args):
    response = invoice_bridge.start_timer(args.client, args.project, args.task, args.description,
                                          use_default_project=True)
    return _report(response, _print_entry)


def cmd_stop(args):
    def show(entry):
        if entry is None:
            print("No timer running.")
        else:
            _print_entry(entry)
    return _report(invoice_bridge.stop_timer(args.entry, args.round_to), show)


def cmd_resume(args):
    return _report(invoice_bridge.resume_timer(args.entry), _print_entry)


def cmd_status(args):
    def show(entry):
        if entry is None:
            print("No timer running.")
            return
        _print_entry(entry)
        elapsed = invoice_bridge.get_engine().get_elapsed_minutes(entry)
        print(f"Elapsed: {timer_engine.format_seconds(elapsed * 60)}")
    return _report(invoice_bridge.get_active_timer(), show)


def cmd_client_add(args):
    def show(client):
        print(f"Client #{client['id']} {client['name']}")
    return _report(invoice_bridge.add_client(args.name, args.rate, args.email), show)


def cmd_project_add(args):
    def show(project):
        print(f"Project #{project['id']} {project['name']}")
    return _report(invoice_bridge.add_project(args.client, args.name, args.rate, args.default), show)


def cmd_setting_set(args):
    return _report(invoice_bridge.set_setting(args.key, args.value))


def _print_invoice_result(result):
    print(f"Invoice {result['invoice_number']} (id {result['invoice_id']}) saved to {result['path']}")


def cmd_invoice_generate(args):
    response = invoice_bridge.generate_invoice(args.client, args.start, args.end,
                                               interactive=not args.no_dialog)
    return _report(response, _print_invoice_result)


def cmd_invoice_generate_selected(args):
    response = invoice_bridge.generate_invoice_from_selected(args.entries, interactive=not args.no_dialog)
    return _report(response, _print_invoice_result)


def cmd_invoice_view(args):
    return _report(invoice_bridge.view_invoice(args.invoice, interactive=not args.no_dialog), print)


def cmd_invoice_download(args):
    return _report(invoice_bridge.download_invoice(args.invoice), print)


def cmd_invoice_regenerate(args):
    response = invoice_bridge.regenerate_invoice(args.invoice, interactive=not args.no_dialog)
    return _report(response, _print_invoice_result)


def cmd_invoice_delete(args):
    def show(result):
        print(f"Deleted invoice {result['invoice_number']}, "
              f"released {len(result['released_entry_ids'])} entries")
    return _report(invoice_bridge.delete_invoice(args.invoice), show)


def cmd_invoice_list(args):
    def show(invoices):
        for inv in invoices:
            print(f"#{inv['id']}  {inv['invoice_number']}  {inv['client_name'] or 'Unknown Client'}  "
                  f"{inv['period_start']}..{inv['period_end']}  "
                  f"{timer_engine.format_currency(inv['total_amount'])}  {inv['status']}")
    return _report(invoice_bridge.list_invoices(args.limit), show)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='timertool', description='Track time and invoice clients')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging on stderr')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('start', help='Start a timer (stops any running one)')
    p.add_argument('--client', type=int)
    p.add_argument('--project', type=int)
    p.add_argument('--task', type=int)
    p.add_argument('-d', '--description', default='')
    p.set_defaults(func=cmd_start)

    p = sub.add_parser('stop', help='Stop the running timer')
    p.add_argument('--entry', type=int, help='Entry to stop (default: the running one)')
    p.add_argument('--round-to', type=int, help='Round up to N minutes (0 = exact)')
    p.set_defaults(func=cmd_stop)

    p = sub.add_parser('resume', help='Restart a stopped entry')
    p.add_argument('entry', type=int)
    p.set_defaults(func=cmd_resume)

    p = sub.add_parser('status', help='Show the running timer')
    p.set_defaults(func=cmd_status)

    client = sub.add_parser('client').add_subparsers(dest='action', required=True)
    p = client.add_parser('add')
    p.add_argument('name')
    p.add_argument('--rate', type=float, default=0)
    p.add_argument('--email')
    p.set_defaults(func=cmd_client_add)

    project = sub.add_parser('project').add_subparsers(dest='action', required=True)
    p = project.add_parser('add')
    p.add_argument('client', type=int)
    p.add_argument('name')
    p.add_argument('--rate', type=float)
    p.add_argument('--default', action='store_true')
    p.set_defaults(func=cmd_project_add)

    setting = sub.add_parser('setting').add_subparsers(dest='action', required=True)
    p = setting.add_parser('set')
    p.add_argument('key')
    p.add_argument('value')
    p.set_defaults(func=cmd_setting_set)

    invoice = sub.add_parser('invoice').add_subparsers(dest='action', required=True)
    p = invoice.add_parser('generate', help='Invoice uninvoiced entries for a client')
    p.add_argument('--client', type=int, required=True)
    p.add_argument('--from', dest='start', type=date.fromisoformat)
    p.add_argument('--to', dest='end', type=date.fromisoformat)
    p.add_argument('--no-dialog', action='store_true', help='Write to the temp directory')
    p.set_defaults(func=cmd_invoice_generate)

    p = invoice.add_parser('generate-selected', help='Invoice specific entries')
    p.add_argument('entries', type=int, nargs='+')
    p.add_argument('--no-dialog', action='store_true')
    p.set_defaults(func=cmd_invoice_generate_selected)

    p = invoice.add_parser('view')
    p.add_argument('invoice', type=int)
    p.add_argument('--no-dialog', action='store_true')
    p.set_defaults(func=cmd_invoice_view)

    p = invoice.add_parser('download')
    p.add_argument('invoice', type=int)
    p.set_defaults(func=cmd_invoice_download)

    p = invoice.add_parser('regenerate')
    p.add_argument('invoice', type=int)
    p.add_argument('--no-dialog', action='store_true')
    p.set_defaults(func=cmd_invoice_regenerate)

    p = invoice.add_parser('delete')
    p.add_argument('invoice', type=int)
    p.set_defaults(func=cmd_invoice_delete)

    p = invoice.add_parser('list')
    p.add_argument('--limit', type=int)
    p.set_defaults(func=cmd_invoice_list)

    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    db.init_db()
    sys.exit(args.func(args))


if __name__ == '__main__':
    main()

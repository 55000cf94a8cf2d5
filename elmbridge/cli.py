#!/usr/bin/env python3
import argparse
import sys

from elmbridge.coding import CodingRunner
from elmbridge.coding_functions import CATEGORY_LABELS, get_function, list_functions
from elmbridge.connection import ConnectionManager
from elmbridge.logger import configure_logging, get_logger
from elmbridge.monitor import LiveMonitor
from elmbridge.settings import load_settings
from elmbridge.transport import find_device, open_transport

logger = get_logger(__name__)


def _fmt(value, unit='', digits=1):
    if value is None:
        return '-'
    return f'{value:.{digits}f}{unit}'


def print_vehicle_data(data):
    print(f'RPM: {_fmt(data.rpm, digits=0)}  speed: {_fmt(data.speed, " km/h", 0)}  '
          f'coolant: {_fmt(data.coolant_temp, " C", 0)}  load: {_fmt(data.engine_load, "%")}  '
          f'throttle: {_fmt(data.throttle_position, "%")}  fuel: {_fmt(data.fuel_level, "%")}  '
          f'battery: {data.battery_voltage or "-"}')


def connect(args):
    """Build a manager for the CLI arguments and initialize it, or exit 2."""
    settings = load_settings(args.settings)
    if args.simulate:
        target = None
    else:
        target = args.device or find_device()
        if not target:
            print('No adapter found; pass --device or --simulate')
            sys.exit(2)
    transport = open_transport(target, baud=args.baud,
                               connect_timeout=settings.connection_timeout_seconds)
    mgr = ConnectionManager(transport=transport, settings=settings)
    if not mgr.initialize('OBD2 Adapter', target or ''):
        print('Connection failed:', mgr.get_connection_info().error)
        mgr.disconnect()
        sys.exit(2)
    return mgr


def cmd_info(mgr, args):
    info = mgr.get_connection_info()
    print('Device:', info.device_address or 'simulator')
    print('Protocol:', info.protocol)
    print('Voltage:', info.voltage)
    print('Simulated:', 'yes' if info.is_simulated else 'no')
    return 0


def _print_dtcs(result):
    if not result.success:
        print('Read failed:', result.error)
        return 1
    if not result.parsed_dtcs:
        print('No DTCs')
    for dtc in result.parsed_dtcs:
        print(f' - {dtc.code}  {dtc.system} / {dtc.category}')
    return 0


def cmd_read_dtc(mgr, args):
    result = mgr.read_dtc_codes()
    rc = _print_dtcs(result)
    if result.vehicle_data is not None:
        print_vehicle_data(result.vehicle_data)
    return rc


def cmd_pending(mgr, args):
    return _print_dtcs(mgr.read_pending_dtc_codes())


def cmd_live(mgr, args):
    monitor = LiveMonitor(mgr)
    try:
        monitor.run(cycles=args.cycles, duration=args.duration, callback=print_vehicle_data)
    except KeyboardInterrupt:
        print()
    return 0


def cmd_vin(mgr, args):
    vin = mgr.read_vin()
    print('VIN:', vin or 'not available')
    return 0 if vin else 1


def cmd_clear_dtc(mgr, args):
    ok = mgr.clear_dtc_codes()
    print('Clear DTCs:', 'success' if ok else 'failed')
    if ok:
        from elmbridge.audit import audit_write
        audit_write('clear_dtc', {'device': mgr.device_address or 'simulator', 'cleared': ok})
    return 0 if ok else 1


def cmd_coding_run(mgr, args):
    fn = get_function(args.function_id)
    runner = CodingRunner(mgr)
    ok, reason = runner.can_execute(fn, args.pro)
    if not ok:
        print('Cannot execute:', reason)
        return 2

    def progress(step, total, message):
        print(f'[{step}/{total}] {message}')

    result = runner.execute(fn, on_progress=progress)
    print(result.message)
    if result.details:
        print(result.details)
    from elmbridge.audit import audit_write
    audit_write('coding', {'function_id': fn.id, 'success': result.success, 'message': result.message})
    return 0 if result.success else 1


def coding_list():
    current = None
    for fn in list_functions():
        if fn.category != current:
            current = fn.category
            print(CATEGORY_LABELS[current]['name'])
        flags = []
        if fn.requires_engine_off:
            flags.append('engine off')
        if fn.requires_pro:
            flags.append('pro')
        print(f' - {fn.id:32} {fn.risk_level:7} {fn.name} ({", ".join(flags)})')


def build_parser():
    p = argparse.ArgumentParser(prog='elmbridge')
    p.add_argument('--device', default=None, help='Serial device or tcp://host:port (default: autodetect)')
    p.add_argument('--baud', type=int, default=38400)
    p.add_argument('--simulate', action='store_true', help='Use the built-in simulated adapter')
    p.add_argument('--settings', default=None, help='JSON settings file')
    p.add_argument('--log-level', default=None)
    sub = p.add_subparsers(dest='cmd')
    sub.add_parser('detect')
    sub.add_parser('info')
    sub.add_parser('read-dtc')
    sub.add_parser('pending')
    live_p = sub.add_parser('live')
    live_p.add_argument('--cycles', type=int, default=None)
    live_p.add_argument('--duration', type=float, default=None)
    sub.add_parser('vin')
    clear_p = sub.add_parser('clear-dtc')
    clear_p.add_argument('--force', action='store_true', help='Required: clearing erases stored codes')

    cp = sub.add_parser('coding')
    csub = cp.add_subparsers(dest='cact')
    csub.add_parser('list')
    run_p = csub.add_parser('run')
    run_p.add_argument('function_id')
    run_p.add_argument('--pro', action='store_true')
    run_p.add_argument('--yes', action='store_true', help='Confirm functions that require it')
    return p


_HANDLERS = {
    'info': cmd_info,
    'read-dtc': cmd_read_dtc,
    'pending': cmd_pending,
    'live': cmd_live,
    'vin': cmd_vin,
    'clear-dtc': cmd_clear_dtc,
}


def main(argv=None):
    p = build_parser()
    args = p.parse_args(argv)
    configure_logging(args.log_level)

    if args.cmd is None:
        p.print_help()
        return 0
    if args.cmd == 'detect':
        dev = find_device()
        print(dev or 'No adapter found')
        return 0 if dev else 1
    if args.cmd == 'clear-dtc' and not args.force:
        p.error('clear-dtc requires --force')

    handler = _HANDLERS.get(args.cmd)
    if args.cmd == 'coding':
        if args.cact == 'list':
            coding_list()
            return 0
        if args.cact != 'run':
            p.error('coding requires a subcommand: list or run')
        fn = get_function(args.function_id)
        if fn is None:
            print('Unknown function:', args.function_id)
            return 2
        if fn.confirmation_required and not args.yes:
            p.error(f'{fn.id} changes vehicle behaviour; pass --yes to confirm')
        handler = cmd_coding_run

    mgr = connect(args)
    try:
        return handler(mgr, args)
    finally:
        mgr.disconnect()


if __name__ == '__main__':
    sys.exit(main())

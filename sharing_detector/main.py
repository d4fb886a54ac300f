# sharing_detector/main.py
import argparse
import json
import logging
import signal
import sys

from sharing_detector import __version__
from sharing_detector.api.server import SharingAPI
from sharing_detector.app import build_context
from sharing_detector.exceptions import (
    SharingDetectionError, PartialRuleApplication, ScanAlreadyRunning
)
from sharing_detector.utils.helpers import load_config, setup_logging, safe_json_dumps

logger = logging.getLogger('sharing_detector')

# Set while `serve` is running so the signal handler can stop the scheduler
context = None


def signal_handler(sig, frame):
    """Handle SIGTERM by stopping the scheduler and exiting"""
    logger.info("Interrupt received, shutting down...")
    if context is not None:
        context.scheduler.stop()
    sys.exit(0)


def build_parser():
    parser = argparse.ArgumentParser(description='TTL-based connection sharing detector')
    parser.add_argument('-c', '--config', type=str, default='config.yaml', help='Path to the YAML configuration file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--log-file', type=str, help='Also write logs to this file')
    parser.add_argument('--version', action='version', version=f'sharing-detector {__version__}')

    subparsers = parser.add_subparsers(dest='command')

    serve = subparsers.add_parser('serve', help='Run the HTTP API and the nightly scan scheduler')
    serve.add_argument('--host', type=str, help='Address to listen on (overrides api.host)')
    serve.add_argument('--port', type=int, help='Port to listen on (overrides api.port)')
    serve.add_argument('--no-scheduler', action='store_true', help='Do not run automatic scans')

    subparsers.add_parser('scan', help='Run one manual scan and print the summary')

    rules = subparsers.add_parser('rules', help='Manage the TTL marking rules on NAS routers')
    rules.add_argument('action', choices=['status', 'generate', 'remove'])
    rules.add_argument('--nas', type=int, help='NAS id (default: every configured NAS)')

    return parser


def run_serve(args, ctx):
    global context
    context = ctx

    api_cfg = ctx.config.get('api', {})
    host = args.host or api_cfg.get('host', '0.0.0.0')
    port = args.port or api_cfg.get('port', 8060)

    if not args.no_scheduler:
        ctx.scheduler.start()

    api = SharingAPI(ctx)
    try:
        api.run_server(host=host, port=port, debug=api_cfg.get('debug', False))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    finally:
        ctx.scheduler.stop()
    return 0


def run_scan(ctx):
    try:
        summary = ctx.scheduler.run_scan('manual')
    except ScanAlreadyRunning as e:
        logger.error(str(e))
        return 1

    print(safe_json_dumps(summary.to_dict()))
    if summary.unreachable_nas:
        for entry in summary.unreachable_nas:
            logger.warning(f"NAS {entry['nas_name']} ({entry['nas_id']}) unreachable: {entry['error']}")
    return 1 if summary.error else 0


def run_rules(args, ctx):
    if args.nas is not None:
        devices = [ctx.nas_registry.get(args.nas)]
    else:
        devices = ctx.nas_registry.all()

    if not devices:
        logger.error("No NAS devices configured")
        return 1

    if args.action == 'status':
        statuses = ctx.rule_manager.get_all_statuses(devices, max_workers=ctx.max_workers)
        for status in statuses:
            if status.error:
                state = f"error: {status.error}"
            else:
                state = 'configured' if status.rules_configured else 'not configured'
            print(f"• {status.nas_name} ({status.nas_ip_address}) - {status.rule_count} rules, {state}")
        return 0

    exit_code = 0
    for nas in devices:
        try:
            if args.action == 'generate':
                result = ctx.rule_manager.generate_rules(nas)
            else:
                result = ctx.rule_manager.remove_rules(nas)
            print(json.dumps(result.to_dict()))
            if not result.success:
                exit_code = 1
        except PartialRuleApplication as e:
            logger.error(str(e))
            print(json.dumps(e.result.to_dict()))
            exit_code = 1
        except SharingDetectionError as e:
            logger.error(str(e))
            exit_code = 1
    return exit_code


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)
    log_cfg = config.get('logging', {})
    setup_logging(log_cfg.get('level', 'INFO'), args.log_file or log_cfg.get('file'))

    # Configure logging based on verbosity
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled.")

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        ctx = build_context(config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        if args.command == 'serve':
            return run_serve(args, ctx)
        if args.command == 'scan':
            return run_scan(ctx)
        return run_rules(args, ctx)
    except SharingDetectionError as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    exit_code = main()
    sys.exit(exit_code)

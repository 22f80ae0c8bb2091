"""Converge Keycloak and Wekan with the desired-state file.

This module is the CLI wrapper around updater.core.runner.
"""
from __future__ import annotations
import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from updater.config.settings import Settings, configure_logging, load_settings
from updater.core.desired_state import load_stock
from updater.core.exceptions import ConfigError, DesiredStateError, UpdaterError
from updater.core.keycloak import KeycloakClient, KeycloakDirectory
from updater.core.pipeline import RunReport
from updater.core.runner import KeycloakContext, WekanContext, resolve_stage, update_all
from updater.core.wekan import Wekan, WekanClient
from scripts import audit

logger = logging.getLogger(__name__)


def build_directory(settings: Settings) -> KeycloakDirectory:
    """Authenticate against Keycloak and bind the managed realm."""
    config = settings.keycloak
    client = KeycloakClient(config.address)
    client.authenticate_admin(config.username, config.password, config.admin_realm)
    return KeycloakDirectory(client, config.realm)


def build_board_system(settings: Settings) -> Wekan:
    client = WekanClient(settings.mongo.url, settings.mongo.database)
    client.ping()
    return Wekan(client, settings.wekan.admin_username, settings.wekan.slug_domain_regexp)


def _install_signal_handlers(cancel: threading.Event) -> None:
    def handler(signum, frame):
        print(f"[sync] Signal {signum} received, stopping at next entity", file=sys.stderr)
        cancel.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_sync(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(args.config, args.override)
    except ConfigError as e:
        print(f"[sync] Error: {e}", file=sys.stderr)
        return 1

    configure_logging(settings.logger.level, settings.logger.filename)
    audit.configure(settings.audit.log_dir)

    stop_section = None
    if args.stop_after:
        try:
            stop_section, _ = resolve_stage(args.stop_after)
        except ValueError as e:
            print(f"[sync] Error: {e}", file=sys.stderr)
            return 1

    run_keycloak = args.only in (None, "keycloak")
    run_wekan = args.only in (None, "wekan")
    if run_keycloak and settings.keycloak is None:
        if args.only == "keycloak":
            print("[sync] Error: keycloak section missing from configuration", file=sys.stderr)
            return 1
        run_keycloak = False
    if run_wekan and settings.wekan is None:
        if args.only == "wekan":
            print("[sync] Error: wekan section missing from configuration", file=sys.stderr)
            return 1
        run_wekan = False
    if stop_section and not {"keycloak": run_keycloak, "wekan": run_wekan}[stop_section]:
        print(
            f"[sync] Error: --stop-after {args.stop_after} belongs to the {stop_section} section, which is not run",
            file=sys.stderr,
        )
        return 1

    users_file = args.users or settings.stock.users_and_roles_filename
    if not users_file:
        print("[sync] Error: no desired-state file (stock.users_and_roles_filename or --users)", file=sys.stderr)
        return 1
    try:
        users, composite_roles = load_stock(users_file)
    except (OSError, DesiredStateError) as e:
        print(f"[sync] Error: {e}", file=sys.stderr)
        return 1

    report = RunReport()
    cancel = threading.Event()
    _install_signal_handlers(cancel)

    keycloak_context = None
    if run_keycloak:
        try:
            directory = build_directory(settings)
        except UpdaterError as e:
            report.add("keycloak", "connect", e)
        else:
            keycloak_context = KeycloakContext(
                directory=directory,
                users=users,
                client=settings.stock.client_for_roles,
                report=report,
                realm_settings=dict(settings.realm),
                clients=[dict(c.representation) for c in settings.clients],
                composite_roles=composite_roles,
                protected_usernames=(settings.keycloak.username,) + settings.keycloak.protected_usernames,
                max_changes=settings.stock.max_changes_to_accept,
                cancel=cancel,
            )

    boards = None
    if run_wekan:
        try:
            boards = build_board_system(settings)
        except UpdaterError as e:
            report.add("wekan", "connect", e)

    try:
        wekan_context = WekanContext(boards=boards, users=users, report=report, cancel=cancel) if boards else None
        contexts = {"keycloak": keycloak_context, "wekan": wekan_context}
        # a stop section that failed to connect is already in the report
        if (keycloak_context or wekan_context) and not (stop_section and contexts[stop_section] is None):
            update_all(keycloak_context, wekan_context, stop_after=args.stop_after)
    finally:
        if boards is not None:
            boards.close()

    if not report.ok:
        print(f"[sync] {len(report.errors)} error(s):", file=sys.stderr)
        print(report.format(), file=sys.stderr)
        return 1
    print("[sync] Done, no error reported")
    return 0


def run_verify_audit(args: argparse.Namespace) -> int:
    if args.log_dir:
        audit.configure(args.log_dir)
    total, valid = audit.verify_audit_log()
    print(f"Audit log: {valid}/{total} events with valid signatures")
    return 0 if total == valid else 1


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Keycloak and Wekan updater")
    parser.add_argument("-c", "--config", default="config.yml")
    parser.add_argument("--override", default=None, help="configuration merged over --config")
    parser.add_argument("--users", default=None, help="desired-state file, overrides the configuration")
    parser.add_argument("--only", choices=["keycloak", "wekan"], default=None)
    parser.add_argument("--stop-after", default=None, metavar="STAGE",
                        help="stop after this stage (use section.stage when ambiguous)")

    sub = parser.add_subparsers(dest="cmd")
    sub.add_parser("sync", help="converge both systems (default)")
    va = sub.add_parser("verify-audit", help="check audit log signatures")
    va.add_argument("--log-dir", default=None)

    args = parser.parse_args()

    if args.cmd == "verify-audit":
        sys.exit(run_verify_audit(args))
    sys.exit(run_sync(args))


if __name__ == "__main__":
    main()

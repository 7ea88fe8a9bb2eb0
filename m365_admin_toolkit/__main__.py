"""
M365 Admin Toolkit: Main Orchestrator

Usage:
    python -m m365_admin_toolkit collect accounts --domain contoso.com
    python -m m365_admin_toolkit collect teams --config config.json
    python -m m365_admin_toolkit collect subscriptions --auth-mode delegated
    python -m m365_admin_toolkit collect usage --domain contoso.com --period D90
    python -m m365_admin_toolkit mutate disable --domain contoso.com --skip-disabled
    python -m m365_admin_toolkit mutate revoke --input-csv leavers.csv --yes

Credentials come from --config, the M365_* environment variables, or the
--tenant-id/--client-id/--cert-path flags (highest precedence). Client
secrets are only read from M365_CLIENT_SECRET.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import functools
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, Optional

from . import __version__
from .config import (
    AUTH_MODES,
    GRAPH,
    ApiSurface,
    REQUIRED_SCOPES,
    CertificateAuth,
    DelegatedAuth,
    SecretAuth,
    ToolkitConfig,
)
from .actions import BulkMutationExecutor
from .actions.targets import targets_from_query, targets_from_upns
from .auth.authenticator import AuthCancelled, AuthenticationError, Authenticator
from .collectors import COLLECTORS
from .graph.client import GraphClient
from .graph.paginator import PaginationLoopSuspected
from .graph.retry import PermanentApiError, RetryLimitExceeded
from .models import RunContext
from .query import (
    COLLECTION_KINDS,
    MUTATION_ACTIONS,
    REPORT_PERIODS,
    QueryValidationError,
    build_query,
)
from .reporting import (
    ExportError,
    build_output_path,
    export_mutation_outcomes,
    export_records_csv,
    export_run_summary,
    read_user_list,
)
from .run_log import log_success, setup_logging
from .safety.guardian import SafetyGuardian, SafetyViolation
from .safety.preflight import SetupError, check_environment

logger = logging.getLogger("m365_admin_toolkit")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument("--auth-mode", choices=AUTH_MODES, default=None,
                        help="Authentication mode (default: certificate, or from config)")
    common.add_argument("--tenant-id", default=None, help="Tenant ID (GUID) or primary domain")
    common.add_argument("--client-id", default=None, help="App registration client ID (GUID)")
    common.add_argument("--cert-path", type=Path, default=None,
                        help="Path to base64-encoded PFX (certificate mode)")
    common.add_argument("--output-dir", "-o", type=Path, default=None,
                        help="Output directory for CSV/JSON/log files")
    common.add_argument("--page-size", type=int, default=None,
                        help="Page size hint (bounded by the API maximum)")
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return common


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="m365_admin_toolkit",
        description="M365 tenant inventory and bulk account actions",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    collect_p = subparsers.add_parser("collect", parents=[common], help="Collect inventory to CSV")
    collect_p.add_argument("kind", choices=COLLECTION_KINDS, help="What to collect")
    collect_p.add_argument("--domain", "-d", default=None,
                           help="Only records for this domain (e.g. contoso.com)")
    collect_p.add_argument("--period", choices=REPORT_PERIODS, default=None,
                           help="Reporting period for the usage report (default D30)")

    mutate_p = subparsers.add_parser("mutate", parents=[common], help="Apply a bulk account action")
    mutate_p.add_argument("action", choices=MUTATION_ACTIONS, help="Action to apply")
    targets = mutate_p.add_mutually_exclusive_group(required=True)
    targets.add_argument("--domain", "-d", default=None, help="Target every account in this domain")
    targets.add_argument("--input-csv", type=Path, default=None,
                         help="CSV with a UserPrincipalName column, or one UPN per line")
    mutate_p.add_argument("--skip-disabled", action="store_true",
                          help="With 'disable': skip accounts that are already disabled")
    mutate_p.add_argument("--yes", "-y", action="store_true",
                          help="Do not prompt for confirmation")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ToolkitConfig:
    """Defaults < config file < environment < CLI flags."""
    if args.config:
        if not args.config.exists():
            raise SetupError(f"Config file not found: {args.config}",
                             remedy="Check the --config path")
        config = ToolkitConfig.from_file(str(args.config))
    else:
        config = ToolkitConfig()

    if args.auth_mode:
        config.auth.mode = args.auth_mode
    config.apply_environment()

    if args.tenant_id and args.client_id:
        mode = config.auth.mode
        if mode == "certificate":
            cert_path = str(args.cert_path) if args.cert_path else (
                config.auth.certificate.certificate_path if config.auth.certificate else "./base64.txt"
            )
            password = config.auth.certificate.certificate_password if config.auth.certificate else ""
            config.auth.certificate = CertificateAuth(
                tenant_id=args.tenant_id,
                client_id=args.client_id,
                certificate_path=cert_path,
                certificate_password=password,
            )
        elif mode == "secret":
            secret = config.auth.secret.client_secret if config.auth.secret else ""
            config.auth.secret = SecretAuth(args.tenant_id, args.client_id, secret)
        else:
            config.auth.delegated = DelegatedAuth(args.tenant_id, args.client_id)
    elif args.cert_path and config.auth.certificate:
        config.auth.certificate.certificate_path = str(args.cert_path)

    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
        config.output.log_file = str(args.output_dir / Path(config.output.log_file).name)
    if args.page_size:
        config.fetch.page_size = args.page_size
    config.verbose = config.verbose or args.verbose
    return config


# ---------------------------------------------------------------------------
# Operator interaction
# ---------------------------------------------------------------------------

def confirm_action(action: str, count: int, tenant: str,
                   input_fn: Optional[Callable[[str], str]] = None) -> bool:
    """Ask the operator to type the action name to proceed."""
    print(f"\n  ⚠  About to {action.upper()} {count} account(s) in {tenant}.")
    try:
        with keyboard_interrupts():
            answer = (input_fn or input)(f"  Type '{action}' to continue: ")
    except (KeyboardInterrupt, EOFError):
        return False
    return answer.strip().lower() == action


@contextlib.contextmanager
def keyboard_interrupts():
    """
    Let Ctrl+C raise KeyboardInterrupt inside a blocking call made from the
    event loop (sign-in, confirmation prompt). asyncio.run() otherwise only
    cancels the main task, which a blocking call never notices.
    """
    try:
        previous = signal.signal(signal.SIGINT, signal.default_int_handler)
    except ValueError:
        # Not the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, signal.default_int_handler if previous is None else previous)


@contextlib.contextmanager
def cancel_on_sigint(context: RunContext):
    """Ctrl+C requests a clean stop; the partial result is still exported."""
    loop = asyncio.get_running_loop()
    previous = signal.getsignal(signal.SIGINT)
    try:
        loop.add_signal_handler(signal.SIGINT, context.cancel)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handlers; Ctrl+C aborts instead
        logger.debug("Signal handlers unsupported; cooperative cancel disabled")
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


async def sign_in(authenticator: Authenticator, surface: ApiSurface = GRAPH,
                  force_refresh: bool = False) -> str:
    """Token acquisition with Ctrl+C mapped to AuthCancelled."""
    with keyboard_interrupts():
        try:
            return await authenticator.acquire_token(surface, force_refresh=force_refresh)
        except KeyboardInterrupt:
            raise AuthCancelled("Sign-in interrupted.") from None


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

async def run_collect(args, config: ToolkitConfig, authenticator: Authenticator,
                      guardian: SafetyGuardian, context: RunContext) -> Optional[GraphClient]:
    query = build_query(
        args.kind,
        domain=args.domain,
        period=args.period,
        page_size=min(config.fetch.page_size, 999),
    )
    collector_cls, surface = COLLECTORS[query.kind]
    logger.info(f"Required permissions: {', '.join(REQUIRED_SCOPES[query.kind])}")

    token = await sign_in(authenticator, surface)
    context.tenant = authenticator.tenant_context()

    async with GraphClient(token, guardian, surface=surface, fetch=config.fetch,
                           token_provider=functools.partial(sign_in, authenticator)) as client:
        with cancel_on_sigint(context):
            result = await collector_cls(client, query).execute(context)

    label = query.domain or context.tenant.tenant_id
    path = build_output_path(
        config.output.output_dir, collector_cls.output_prefix, label,
        style=config.output.timestamp_style,
    )
    export_records_csv(result.rows(), path)
    context.report.finalize(str(path))
    print(f"  📊 CSV:        {path}")
    return client


async def run_mutate(args, config: ToolkitConfig, authenticator: Authenticator,
                     guardian: SafetyGuardian, context: RunContext):
    logger.info(f"Required permissions: {', '.join(REQUIRED_SCOPES[args.action])}")
    token = await sign_in(authenticator, GRAPH)
    context.tenant = authenticator.tenant_context()
    outcomes = []

    async with GraphClient(token, guardian, surface=GRAPH, fetch=config.fetch,
                           token_provider=functools.partial(sign_in, authenticator)) as client:
        with cancel_on_sigint(context):
            if args.domain:
                query = build_query("accounts", domain=args.domain,
                                    page_size=min(config.fetch.page_size, 999))
                users = await targets_from_query(client, query, context)
                label = query.domain
            else:
                upns = read_user_list(args.input_csv)
                users, _ = await targets_from_upns(client, upns, context)
                label = context.tenant.tenant_id

        if not users:
            logger.warning("No target accounts found; nothing to do.")
        elif context.cancel_requested:
            logger.warning("Cancelled before any change was made.")
        elif args.yes or confirm_action(args.action, len(users), label):
            guardian.arm([args.action])
            executor = BulkMutationExecutor(client, args.action, skip_disabled=args.skip_disabled)
            with cancel_on_sigint(context):
                outcomes = await executor.run(users, context)
            guardian.disarm()
        else:
            logger.warning(f"{args.action} cancelled by operator; no changes made.")
            context.report.skipped += len(users)
            context.report.found += len(users)

    path = build_output_path(
        config.output.output_dir, f"Bulk{args.action.capitalize()}", label,
        style=config.output.timestamp_style,
    )
    if outcomes:
        export_mutation_outcomes(outcomes, path)
        print(f"  📊 Outcomes:   {path}")
    context.report.finalize(str(path) if outcomes else "")
    return client, outcomes


async def main_async(args: argparse.Namespace) -> int:
    """Async entry point; returns the process exit code."""
    config = build_config(args)

    print("=" * 70)
    print(f" M365 Admin Toolkit v{__version__}")
    print("=" * 70)

    # Preflight first: the log file lives in the output directory
    check_environment(config)
    try:
        setup_logging("DEBUG" if config.verbose else "INFO", config.output.log_file)
    except OSError as e:
        raise SetupError(f"Cannot open log file {config.output.log_file}: {e}",
                         remedy="Choose another --output-dir") from e

    operation = args.kind if args.command == "collect" else args.action
    context = RunContext(operation=operation)

    guardian = SafetyGuardian()
    authenticator = Authenticator(config.auth)
    print("\n🔐 Authenticating...")

    outcomes = []
    client = None
    try:
        if args.command == "collect":
            client = await run_collect(args, config, authenticator, guardian, context)
        else:
            client, outcomes = await run_mutate(args, config, authenticator, guardian, context)
    finally:
        authenticator.disconnect()

    report = context.report
    summary = report.summary_line()
    if report.partial:
        logger.warning(f"Run was cancelled; results are partial. {summary}")
    elif report.errored:
        logger.warning(summary)
    else:
        log_success(logger, summary)

    summary_path = build_output_path(
        config.output.output_dir, "RunSummary", operation,
        style="second", extension="json",
    )
    export_run_summary(
        context,
        summary_path,
        guardian=guardian,
        client_stats=[client.get_stats()] if client else [],
        outcomes=outcomes,
    )

    print("\n" + "=" * 70)
    print(" RUN COMPLETE")
    print("=" * 70)
    print(f"\n  {summary}")
    print(f"  Elapsed: {report.elapsed_seconds}s")
    print(f"  Summary: {summary_path}")
    print()
    return 0


FATAL_ERRORS = (
    SetupError,
    AuthenticationError,
    ExportError,
    SafetyViolation,
    QueryValidationError,
    PermanentApiError,
    RetryLimitExceeded,
    PaginationLoopSuspected,
)


def _remedy(error: Exception) -> str:
    if isinstance(error, SetupError):
        return error.remedy
    if isinstance(error, AuthCancelled):
        return "Sign-in was cancelled; run again when ready."
    if isinstance(error, AuthenticationError):
        return "Check tenant ID, client ID, credential and admin consent."
    if isinstance(error, ExportError):
        return "Check free space and permissions on the output directory."
    if isinstance(error, PermanentApiError) and error.status_code in (401, 403):
        return "Grant the app the permissions listed above and retry."
    if isinstance(error, RetryLimitExceeded):
        return "The service is throttling heavily; retry later."
    return ""


def main(argv: Optional[list[str]] = None) -> int:
    """Synchronous entry point for `python -m m365_admin_toolkit`."""
    args = parse_args(argv)
    try:
        return asyncio.run(main_async(args))
    except FATAL_ERRORS as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"\n❌ {e}")
        remedy = _remedy(e)
        if remedy:
            print(f"   ➜ {remedy}")
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        print("\n❌ Interrupted")
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Azure Key Vault Certificate Rotation - Main Entry Point.

Evaluates the certificates of one Key Vault against an expiry threshold and
rotates those that are due through Key Vault's own issuer. Runs either as a
scheduled sweep or as a single on-demand action.

Usage:
    # One sweep over the whole vault
    python main.py --sweep

    # Run the sweep every day at settings.schedule_time (UTC)
    python main.py --schedule

    # On-demand actions
    python main.py --action list --days-before-expiry 45
    python main.py --action check
    python main.py --action rotate --certificate-name api-cert
    python main.py --action create --certificate-name new-cert

    # Dry run (no rotations submitted)
    python main.py --sweep --dry-run
"""

import argparse
import json
import sys

from certrotation.logger import setup_logger
from certrotation.config_loader import load_config, Config, ConfigurationError
from certrotation.keyvault import KeyVaultClient, KeyVaultError, connect
from certrotation.poller import PollPolicy, RotationOperationPoller
from certrotation.sweep import BatchRotationSweep
from certrotation.handler import Action, OnDemandRequestHandler, error_envelope
from certrotation.notification import NotificationManager
from certrotation.scheduler import run_daily


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Azure Key Vault Certificate Rotation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --sweep                               # Rotate everything due now
  %(prog)s --schedule                            # Sweep daily at schedule_time
  %(prog)s --action check --days-before-expiry 14
  %(prog)s --action rotate --certificate-name api-cert
        """,
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--sweep",
        action="store_true",
        help="Run one sweep over all certificates in the vault",
    )
    mode_group.add_argument(
        "--schedule",
        action="store_true",
        help="Run the sweep daily at settings.schedule_time (UTC)",
    )
    mode_group.add_argument(
        "--action",
        type=str,
        choices=[a.value for a in Action],
        default=None,
        help="On-demand action (default: list)",
    )

    parser.add_argument(
        "--certificate-name",
        "--cert-name",
        type=str,
        dest="certificate_name",
        help="Certificate name for rotate and create",
    )
    parser.add_argument(
        "--days-before-expiry",
        type=str,
        default=None,
        help="Threshold override for list and check",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "--vault-name",
        type=str,
        default=None,
        help="Key Vault name (overrides the configuration file)",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        help="Override expiration threshold (days) for sweeps",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Sweep without submitting rotations",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    parser.add_argument(
        "--json-summary",
        action="store_true",
        help="Print the sweep summary as JSON at the end of execution",
    )

    return parser.parse_args(argv)


def run_sweep(
    sweep: BatchRotationSweep,
    config: Config,
    notification_manager: NotificationManager,
    output_json: bool = False,
) -> int:
    """
    Run one sweep and report it.

    Returns:
        Exit code
    """
    summary = sweep.run(
        threshold_days=config.settings.expiration_threshold_days,
        poll=PollPolicy.from_config(config.polling.sweep),
        dry_run=config.settings.dry_run,
    )
    notification_manager.notify(summary)

    if output_json:
        print(summary.to_json())

    return EXIT_FAILURE if summary.has_failures else EXIT_SUCCESS


def main(argv=None) -> int:
    """
    Main entry point.

    Exit Codes:
        0 - All operations succeeded
        1 - One or more operations failed
        2 - Configuration error

    Returns:
        Exit code
    """
    args = parse_arguments(argv)

    logger = setup_logger(
        verbose=args.verbose,
        use_colors=not args.no_color,
    )

    logger.info("Azure Key Vault Certificate Rotation")
    logger.info("=" * 50)

    try:
        config = load_config(args.config, vault_name=args.vault_name)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        if not (args.sweep or args.schedule):
            action = args.action or Action.LIST.value
            print(json.dumps(error_envelope(action, args.vault_name or "", str(e)), indent=2))
        return EXIT_CONFIG_ERROR

    if config.settings.log_file:
        logger = setup_logger(
            verbose=args.verbose,
            use_colors=not args.no_color,
            log_file=config.settings.log_file,
        )

    if args.threshold is not None:
        if not 0 <= args.threshold <= 365:
            logger.error(f"Configuration error: --threshold must be between 0 and 365, got {args.threshold}")
            return EXIT_CONFIG_ERROR
        config.settings.expiration_threshold_days = args.threshold
        logger.info(f"Expiration threshold overridden to {args.threshold} days")
    if args.dry_run:
        config.settings.dry_run = True
        logger.warning("DRY RUN MODE - No rotations will be submitted")

    # The authorized client is created once and shared by every component.
    vault = KeyVaultClient(connect(config.vault.url), vault_name=config.vault.name)
    poller = RotationOperationPoller(vault)

    if args.sweep or args.schedule:
        sweep = BatchRotationSweep(vault, poller)
        notification_manager = NotificationManager(config.notifications)

        if args.schedule:
            logger.info(f"Scheduled mode: daily at {config.settings.schedule_time} UTC")
            run_daily(
                lambda: run_sweep(sweep, config, notification_manager, args.json_summary),
                config.settings.schedule_time,
            )
            return EXIT_SUCCESS

        try:
            return run_sweep(sweep, config, notification_manager, args.json_summary)
        except KeyVaultError as e:
            logger.error(f"Sweep aborted: {e}")
            return EXIT_FAILURE

    handler = OnDemandRequestHandler(
        vault,
        poller,
        poll=PollPolicy.from_config(config.polling.interactive),
        default_threshold=config.settings.expiration_threshold_days,
        create_policy=config.create_policy,
    )
    params = {"action": args.action or Action.LIST.value}
    if args.certificate_name is not None:
        params["certificateName"] = args.certificate_name
    if args.days_before_expiry is not None:
        params["daysBeforeExpiry"] = args.days_before_expiry

    status_code, envelope = handler.handle(params)
    print(json.dumps(envelope, indent=2))
    return EXIT_SUCCESS if status_code < 400 else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

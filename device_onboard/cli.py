"""CLI entrypoint for uploading device identities to the registry."""

from __future__ import annotations

import argparse
import json
import shlex
import sys
from pathlib import Path

from device_onboard.common.config_loader import ConfigBundle, load_config
from device_onboard.common.constants import COMMANDS, EXIT_BLOCKED, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from device_onboard.common.errors import OnboardError
from device_onboard.common.http import HttpClient, RetryConfig, TimeoutConfig
from device_onboard.common.ids import generate_run_id
from device_onboard.common.logging import build_logger, log_event
from device_onboard.common.models import RunOutcome
from device_onboard.engine.orchestrator import FailedRecordStore, OnboardingOrchestrator
from device_onboard.engine.reports import write_run_report
from device_onboard.registry.client import RegistryClient
from device_onboard.registry.credentials import EnvCredentialProvider
from device_onboard.source.local_identity import CommandIdentitySource


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("target", nargs="?", default=None, help="serial for check, import id for import-status")
    parser.add_argument("--input", default=None)
    parser.add_argument("--serial", default=None)
    parser.add_argument("--group-tag", default=None)
    parser.add_argument("--assigned-user", default=None)
    parser.add_argument("--computer-name", default=None)
    parser.add_argument("--identity-command", default=None)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--token-env", default="GRAPH_ACCESS_TOKEN")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    return parser.parse_args(argv)


def cli_defaults(args: argparse.Namespace) -> dict[str, str]:
    values = {
        "group_tag": args.group_tag,
        "assigned_user_principal_name": args.assigned_user,
        "assigned_computer_name": args.computer_name,
    }
    return {key: value for key, value in values.items() if value}


def build_orchestrator(
    args: argparse.Namespace,
    bundle: ConfigBundle,
    http: HttpClient,
    credentials: EnvCredentialProvider,
    data_dir: Path,
    run_id: str,
    logger,
) -> OnboardingOrchestrator:
    identity_source = None
    if args.identity_command:
        identity_source = CommandIdentitySource(shlex.split(args.identity_command))
    return OnboardingOrchestrator(
        RegistryClient(http, bundle.registry),
        credentials,
        settings=bundle.engine,
        defaults=bundle.defaults,
        identity_source=identity_source,
        generated_dir=data_dir / "generated",
        failed_store=FailedRecordStore(data_dir / "state" / "failed_records.json"),
        logger=logger,
        run_id=run_id,
    )


def exit_code_for(outcome: RunOutcome) -> int:
    if outcome.blocked:
        return EXIT_BLOCKED
    if outcome.success:
        return EXIT_SUCCESS
    if outcome.results:
        return EXIT_PARTIAL
    return EXIT_HARD_FAIL


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    data_dir = Path(args.data_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None

    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    bundle = load_config(Path(args.config_dir), overlay_config_dir=overlay_config_dir)
    credentials = EnvCredentialProvider(args.token_env)
    http = HttpClient(
        timeout=TimeoutConfig(connect=bundle.http.connect_timeout, read=bundle.http.read_timeout),
        retry=RetryConfig(max_attempts=bundle.http.max_attempts),
        rate_per_sec=bundle.http.rate_per_sec,
        token_provider=credentials.get_valid_credential,
    )

    with http:
        orchestrator = build_orchestrator(args, bundle, http, credentials, data_dir, run_id, logger)

        if args.command == "clear-failed":
            orchestrator.clear_failed()
            log_event(logger, "retained failed records cleared", run_id=run_id, stage="cli", event="CLEAR_FAILED")
            return EXIT_SUCCESS

        if args.command in ("check", "import-status", "delete-import"):
            if not args.target:
                raise OnboardError(f"{args.command} needs a target argument")
            if args.command == "check":
                check = orchestrator.check_serial(args.target)
                print(json.dumps(check.to_dict(), indent=2))
                return EXIT_BLOCKED if check.blocking else EXIT_SUCCESS
            if args.command == "delete-import":
                orchestrator.delete_import(args.target)
                return EXIT_SUCCESS
            status = orchestrator.import_status(args.target)
            print(json.dumps({"import_id": args.target, **vars(status)}, indent=2))
            return EXIT_SUCCESS

        if args.command == "retry":
            outcome = orchestrator.retry_failed()
        else:
            outcome = orchestrator.run(args.input, fallback_serial=args.serial, defaults=cli_defaults(args))

    write_run_report(data_dir / "out" / "reports", run_id, outcome)
    print(json.dumps(outcome.to_dict(), indent=2))
    return exit_code_for(outcome)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        return run_command(args)
    except OnboardError as exc:
        print(f"error [{exc.error_code}]: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL
    except Exception as exc:
        print(f"unexpected error: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())

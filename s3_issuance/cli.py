"""
S3 issuance command-line tools.

Usage:
    s3-issuance init                                    # deploy CapTables (once per desk)
    s3-issuance issue-offline --stage 1                 # stage cap table initialization
    s3-issuance publish-issuance --stage 1              # broadcast it, record securityIds
    s3-issuance issue-offline --stage 2                 # stage distribution + deployment
    s3-issuance publish-issuance --stage 2              # broadcast and audit it
    s3-issuance audit-report --output transcript.csv    # review a report before broadcasting
    s3-issuance new-resolver --logic 0x... --nonce 7    # stage a resolver rotation
    s3-issuance publish-new-resolver                    # broadcast it
    s3-issuance monitor --logic 0x... --start-index 0   # resolve pending transfers
    s3-issuance new-administration                      # deploy the multisig Administration
    s3-issuance audit-administration                    # check its logic, front and cosigners

Runtime settings come from the environment / .env (WEB3_HTTP_URL,
ISSUANCE_CHAIN_ID, ISSUANCE_ARTIFACTS_DIR, ISSUANCE_CONTROLLER_KEY,
ISSUANCE_RESOLVER_KEY, ISSUANCE_OWNER_KEY).
"""

import argparse
import logging
import sys
from pathlib import Path

from eth_utils import is_address, to_checksum_address

from .config import load_settings
from .config.issuance_config import (
    ADMINISTRATION_ARTIFACT,
    CAP_TABLES_ARTIFACT,
    DEFAULT_ADMINISTRATION_FILE,
    DEFAULT_ADMINISTRATION_REPORT_FILE,
    DEFAULT_DECLARATION_FILE,
    DEFAULT_GAP_SIZE,
    DEFAULT_INIT_FILE,
    DEFAULT_NEW_RESOLVER_FILE,
    DEFAULT_REPORT_FILE,
    MONITOR_POLL_INTERVAL,
    WEI_PER_GWEI,
)
from .errors import IssuanceError, TranscriptFormatError
from .logging_config import setup_logging
from .services.audit import verify_administration, verify_deployment
from .services.codec import private_key_to_address
from .services.contracts import load_artifact, load_artifacts
from .services.gas_report import safe_low_gwei
from .services.ledger import Web3Ledger
from .services.monitor import TransferMonitor
from .services.publisher import ConsoleOperator, InteractivePublisher, publish_stage1, publish_stage2
from .services.staging import (
    encode_key,
    fee_levels_from_gwei,
    offline_stage1,
    offline_stage2,
    stage_administration,
    stage_cap_tables,
    stage_new_resolver,
)
from .services.transcript import (
    OfflineReport,
    check_output,
    load_administration,
    load_declaration,
    load_report,
    load_securities,
    load_step,
    read_json,
    save_report,
    save_security,
    save_step,
    transcript_frame,
    validate_nonce_chain,
    write_json,
)

logger = logging.getLogger(__name__)


def print_header(title: str, char: str = "="):
    print(f"\n{char * 70}")
    print(f" {title}")
    print(f"{char * 70}")


def _address_arg(value: str) -> str:
    if not is_address(value):
        raise argparse.ArgumentTypeError(f"not an address: {value}")
    return to_checksum_address(value)


def _require_owner_key(settings, purpose: str) -> bytes:
    if settings.owner_key is None:
        raise IssuanceError(f"ISSUANCE_OWNER_KEY is required to {purpose}")
    return settings.owner_key


# ============================================================================
# OFFLINE
# ============================================================================

def cmd_issue_offline(args, settings):
    declaration = load_declaration(args.declaration)
    securities = [security for _, security in load_securities(declaration)]
    fee_levels = fee_levels_from_gwei(safe_low_gwei(args.gas_report))

    if args.stage == 1:
        check_output(args.report)
        nonce, stage1, controller_key = offline_stage1(
            securities, declaration.cap_tables, fee_levels, settings.chain_id,
            controller_key=settings.controller_key,
        )
        save_report(args.report, OfflineReport(nonce=nonce, stage1=stage1))
        print_header("Stage 1 staged")
        print(f"Report: {args.report}")
        print("Fund the controller, then keep this key for stage 2 (ISSUANCE_CONTROLLER_KEY):")
        print(encode_key(controller_key))
        return 0

    if settings.controller_key is None:
        raise IssuanceError("ISSUANCE_CONTROLLER_KEY is required for stage 2")
    report = load_report(args.report)
    artifacts = load_artifacts(settings.artifacts_dir)
    nonce, stage2 = offline_stage2(
        securities, declaration.cap_tables, declaration.resolver, fee_levels, settings.chain_id,
        settings.controller_key, report.nonce, artifacts,
    )
    report = OfflineReport(nonce=nonce, stage1=report.stage1, stage2=stage2)
    validate_nonce_chain(report)

    output = args.output or args.report
    save_report(output, report, overwrite=Path(output) == Path(args.report))
    print_header("Stage 2 staged")
    print(f"Report: {output} (next nonce {nonce})")
    return 0


def cmd_audit_report(args, settings):
    report = load_report(args.report)
    next_nonce = validate_nonce_chain(report)
    frame = transcript_frame(report)
    if args.output:
        check_output(args.output)
        frame.to_csv(args.output, index=False)
        print(f"Wrote {len(frame)} rows to {args.output}")
    else:
        print(frame.to_string(index=False))
    print(f"Next nonce: {next_nonce}")
    return 0


def cmd_new_resolver(args, settings):
    owner_key = _require_owner_key(settings, "sign setResolver")
    check_output(args.output)
    fee_levels = fee_levels_from_gwei(safe_low_gwei(args.gas_report))
    _, step, resolver_key, resolver_address = stage_new_resolver(
        args.logic, owner_key, args.nonce, fee_levels, settings.chain_id,
    )
    save_step(args.output, step)
    print_header("Resolver rotation staged")
    print(f"New resolver: {resolver_address}")
    print("Resolver key (ISSUANCE_RESOLVER_KEY):")
    print(encode_key(resolver_key))
    return 0


# ============================================================================
# ONLINE
# ============================================================================

def _ledger(settings):
    return Web3Ledger(settings.rpc_url)


def _operator():
    return ConsoleOperator()


def _publisher(ledger) -> InteractivePublisher:
    return InteractivePublisher(ledger, _operator())


def cmd_init(args, settings):
    owner_key = _require_owner_key(settings, "deploy CapTables")
    check_output(args.output)
    artifact = load_artifact(str(settings.artifacts_dir), CAP_TABLES_ARTIFACT)
    ledger = _ledger(settings)
    nonce = ledger.get_transaction_count(private_key_to_address(owner_key), 'pending')
    _, step = stage_cap_tables(
        owner_key, nonce, fee_levels_from_gwei(safe_low_gwei(args.gas_report)), settings.chain_id, artifact,
    )

    publisher = _publisher(ledger)
    publisher.publish(step)
    cap_tables = step.predicted_address
    write_json(args.output, {
        'capTables': cap_tables,
        'transcript': [record.to_dict() for record in publisher.records],
    })
    print_header("CapTables deployed")
    print(f"capTables: {cap_tables} (use it in {DEFAULT_DECLARATION_FILE})")
    return 0


def _deployed_pair(security_name: str, steps):
    """The SimplifiedTokenLogic and TokenFront deployment steps of one security."""
    deployments = [s for s in steps if s.predicted_address is not None]
    if len(deployments) != 2 or 'resolverAddress' not in deployments[0].params:
        raise TranscriptFormatError(
            f"stage 2 of {security_name} should deploy SimplifiedTokenLogic and TokenFront, "
            f"found {len(deployments)} deployments"
        )
    return deployments[0], deployments[1]


def cmd_publish_issuance(args, settings):
    report = load_report(args.report)

    if args.stage == 1:
        declaration = load_declaration(args.declaration)
        paths = {security.name: (path, security) for path, security in load_securities(declaration)}

        def record_security_id(security_name, security_id):
            if security_name not in paths:
                logger.warning(f"{security_name} is not in {args.declaration}; securityId {security_id} not saved")
                return
            path, security = paths[security_name]
            save_security(path, security.with_security_id(security_id))
            print(f"{security_name}: securityId {security_id} -> {path}")

        publish_stage1(_publisher(_ledger(settings)), report.stage1, record_security_id)
        return 0

    if not report.stage2:
        raise TranscriptFormatError(f"{args.report} has no stage 2; run issue-offline --stage 2 first")
    deployed = [(name, *_deployed_pair(name, steps)) for name, steps in report.stage2]

    publisher = _publisher(_ledger(settings))
    records = publish_stage2(publisher, report.stage2)
    for security_name, deploy_logic, deploy_front in deployed:
        records.extend(verify_deployment(
            publisher.ledger,
            deploy_logic.predicted_address,
            deploy_front.predicted_address,
            deploy_logic.params['resolverAddress'],
        ))
        print(f"{security_name}: SimplifiedTokenLogic {deploy_logic.predicted_address}, "
              f"TokenFront {deploy_front.predicted_address}")
    if args.records:
        write_json(args.records, [record.to_dict() for record in records])
    return 0


def cmd_publish_new_resolver(args, settings):
    step = load_step(args.input)
    tx_hash = _publisher(_ledger(settings)).publish(step)
    print(f"Resolver rotated: {tx_hash}")
    return 0


def cmd_monitor(args, settings):
    if settings.resolver_key is None:
        raise IssuanceError("ISSUANCE_RESOLVER_KEY is required to resolve transfers")
    gas_price = args.gas_price * WEI_PER_GWEI if args.gas_price else None
    monitor = TransferMonitor(_ledger(settings), settings.resolver_key, settings.chain_id, gas_price=gas_price)

    if args.list:
        for request in monitor.active_requests(args.logic, gap_size=args.gap_size, start=args.start_index):
            print(request.to_dict())
        return 0

    # fixed-code policy
    def decision(request):
        return args.code

    def finalize(tx_hash, extra):
        print(f"resolved: {tx_hash}")

    if args.once:
        cursor = monitor.resolve_range(args.logic, args.start_index, decision, finalize)
    else:
        try:
            cursor = monitor.run(args.logic, args.start_index, decision, finalize, poll_interval=args.interval)
        except KeyboardInterrupt:
            logger.warning("Interrupted")
            return 130
    print(f"Next index: {cursor}")
    return 0


# ============================================================================
# ADMINISTRATION
# ============================================================================

def cmd_new_administration(args, settings):
    owner_key = _require_owner_key(settings, "deploy Administration")
    check_output(args.output)
    definition = load_administration(args.definition)
    artifact = load_artifact(str(settings.artifacts_dir), ADMINISTRATION_ARTIFACT)
    ledger = _ledger(settings)
    nonce = ledger.get_transaction_count(private_key_to_address(owner_key), 'pending')
    _, step = stage_administration(
        definition, owner_key, nonce, fee_levels_from_gwei(safe_low_gwei(args.gas_report)),
        settings.chain_id, artifact,
    )

    _publisher(ledger).publish(step)
    admin_address = step.predicted_address
    write_json(args.output, {'adminAddress': admin_address})
    print(f"Administration deployed to: {admin_address}")
    return 0


def cmd_audit_administration(args, settings):
    definition = load_administration(args.definition)
    try:
        admin_address = read_json(args.input)['adminAddress']
    except (KeyError, TypeError) as e:
        raise TranscriptFormatError(f"{args.input} has no adminAddress") from e
    verify_administration(_ledger(settings), admin_address, definition)
    print(f"Administration {admin_address}: tokenLogic, tokenFront and cosigners match")
    return 0


# ============================================================================
# ENTRY POINT
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='s3-issuance', description='Stage, publish and administer S3 securities')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--env-file', type=str, help='Read settings from this .env file')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('issue-offline', help='Stage signed issuance transactions without network access')
    p.add_argument('--stage', type=int, choices=(1, 2), required=True)
    p.add_argument('--declaration', default=DEFAULT_DECLARATION_FILE, help='Issuance declaration JSON')
    p.add_argument('--report', default=DEFAULT_REPORT_FILE, help='Offline report JSON')
    p.add_argument('--output', help='Stage 2 output (default: rewrite --report)')
    p.add_argument('--gas-report', help='Gas report path or URL with safeLow (default: 5 gwei)')
    p.set_defaults(func=cmd_issue_offline)

    p = sub.add_parser('init', help='Deploy the CapTables contract with the owner key')
    p.add_argument('--output', default=DEFAULT_INIT_FILE, help='Where to write {capTables, transcript}')
    p.add_argument('--gas-report')
    p.set_defaults(func=cmd_init)

    p = sub.add_parser('publish-issuance', help='Broadcast a staged report interactively')
    p.add_argument('--stage', type=int, choices=(1, 2), required=True)
    p.add_argument('--declaration', default=DEFAULT_DECLARATION_FILE)
    p.add_argument('--report', default=DEFAULT_REPORT_FILE)
    p.add_argument('--records', help='Write publish records JSON here (stage 2)')
    p.set_defaults(func=cmd_publish_issuance)

    p = sub.add_parser('audit-report', help='Show or export a staged report as a table')
    p.add_argument('--report', default=DEFAULT_REPORT_FILE)
    p.add_argument('--output', '-o', help='Output CSV file path')
    p.set_defaults(func=cmd_audit_report)

    p = sub.add_parser('new-resolver', help='Stage setResolver with a fresh resolver key')
    p.add_argument('--logic', required=True, type=_address_arg, help='SimplifiedTokenLogic address')
    p.add_argument('--nonce', type=int, required=True, help="Owner's next nonce")
    p.add_argument('--output', default=DEFAULT_NEW_RESOLVER_FILE)
    p.add_argument('--gas-report')
    p.set_defaults(func=cmd_new_resolver)

    p = sub.add_parser('publish-new-resolver', help='Broadcast a staged resolver rotation')
    p.add_argument('--input', default=DEFAULT_NEW_RESOLVER_FILE)
    p.set_defaults(func=cmd_publish_new_resolver)

    p = sub.add_parser('monitor', help='Resolve pending transfer requests')
    p.add_argument('--logic', required=True, type=_address_arg, help='SimplifiedTokenLogic address')
    p.add_argument('--start-index', type=int, default=0)
    p.add_argument('--code', type=int, default=0, help='Resolution code to apply (0 approves)')
    p.add_argument('--gas-price', type=int, help='Gas price in gwei')
    p.add_argument('--interval', type=float, default=MONITOR_POLL_INTERVAL, help='Seconds between polls')
    p.add_argument('--once', action='store_true', help='Resolve the current run and exit')
    p.add_argument('--list', action='store_true', help='Only list active requests')
    p.add_argument('--gap-size', type=int, default=DEFAULT_GAP_SIZE)
    p.set_defaults(func=cmd_monitor)

    p = sub.add_parser('new-administration', help='Deploy a multisig Administration over logic and front')
    p.add_argument('--definition', default=DEFAULT_ADMINISTRATION_FILE,
                   help='JSON with tokenLogic, tokenFront, cosignerA, cosignerB, cosignerC')
    p.add_argument('--output', default=DEFAULT_ADMINISTRATION_REPORT_FILE)
    p.add_argument('--gas-report')
    p.set_defaults(func=cmd_new_administration)

    p = sub.add_parser('audit-administration', help='Check a deployed Administration against its definition')
    p.add_argument('--definition', default=DEFAULT_ADMINISTRATION_FILE)
    p.add_argument('--input', default=DEFAULT_ADMINISTRATION_REPORT_FILE, help='Output of new-administration')
    p.set_defaults(func=cmd_audit_administration)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = load_settings(args.env_file)

    try:
        return args.func(args, settings)
    except IssuanceError as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())

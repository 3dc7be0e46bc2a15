"""
gumdrop/cli.py

Command-line front end.

Usage:
    gumdrop create --keypair ~/.config/solana/id.json \\
        --claim-integration transfer --transfer-mint <mint> \\
        --distribution-method manual --manual-otp-auth default \\
        --distribution-list claimants.json

    gumdrop create ... --distribution-list claimants.state.json --resend-only
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

import trio
from solders.keypair import Keypair

from .config import (
    CLUSTER_URLS,
    DEFAULT_CLAIM_HOST,
    DEFAULT_CLUSTER,
    DEFAULT_MAX_ATTEMPTS,
    ClaimIntegration,
    DistributionMethod,
    GumdropConfig,
    resolve_temporal_signer,
)
from .delivery import ManualSender, WalletListSender, create_sender
from .errors import ConfigurationError, GumdropError
from .ledger.client import SolanaLedgerClient
from .pipeline import GumdropPipeline

logger = logging.getLogger("gumdrop.cli")


def load_wallet_key(path: Optional[str]) -> Keypair:
    """Load a keypair from a JSON array secret key file."""
    if not path:
        raise ConfigurationError("Keypair is required!")
    try:
        with open(path) as f:
            secret = json.load(f)
        wallet = Keypair.from_bytes(bytes(secret))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not load keypair {path}: {e}")
    logger.info(f"wallet public key: {wallet.pubkey()}")
    return wallet


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="gumdrop", description="Merkle-committed claim distribution")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a distributor and distribute claim URLs")
    create.add_argument("-e", "--env", default=DEFAULT_CLUSTER, choices=sorted(CLUSTER_URLS),
                        help="Solana cluster env name")
    create.add_argument("-k", "--keypair", help="Solana wallet location")
    create.add_argument("-r", "--rpc-url", help="Custom rpc url")
    create.add_argument("--host", default=DEFAULT_CLAIM_HOST, help="Website to claim gumdrop")
    create.add_argument("-l", "--log-level", default="INFO", help="log level")

    create.add_argument("--claim-integration", required=True,
                        help="Backend for claims: 'transfer', 'candy' or 'edition'")
    create.add_argument("--transfer-mint", help="transfer: public key of mint")
    create.add_argument("--candy-config", help="candy: public key of the candy machine config")
    create.add_argument("--candy-uuid", help="candy: uuid used to construct the candy machine")
    create.add_argument("--edition-mint", help="edition: mint of the master edition")

    create.add_argument("--distribution-method", required=True,
                        help="Off-chain distribution of claims: 'aws', 'manual' or 'wallets'")
    create.add_argument("--aws-otp-auth", default="default",
                        help="aws: 'default' for the OTP endpoint or 'none' to skip OTP")
    create.add_argument("--aws-ses-access-key-id", help="Access Key Id")
    create.add_argument("--aws-ses-secret-access-key", help="Secret Access Key")
    create.add_argument("--manual-otp-auth", default="default",
                        help="manual: 'default' for the OTP endpoint or 'none' to skip OTP")
    create.add_argument("--distribution-list", required=True, help="Claimant list (JSON or CSV)")
    create.add_argument("--state-file",
                        help="Where to save claimant pins and URLs (default: <distribution-list>.state.json)")
    create.add_argument("--output", help="Where to write the manual or wallet claim list")
    create.add_argument("--max-attempts", type=int, default=DEFAULT_MAX_ATTEMPTS,
                        help="Transaction submission attempts")
    create.add_argument("--resend-only", action="store_true",
                        help="Distribute list with off-chain method only; assumes urls already exist")

    return parser.parse_args(argv)


def _integration_refs(args: argparse.Namespace, integration: ClaimIntegration) -> dict:
    if integration == ClaimIntegration.TRANSFER:
        return {"mint": args.transfer_mint}
    if integration == ClaimIntegration.CANDY:
        return {"config": args.candy_config, "uuid": args.candy_uuid}
    return {"master_mint": args.edition_mint}


def default_state_path(distribution_list: str) -> str:
    return os.path.splitext(distribution_list)[0] + ".state.json"


def run_create(args: argparse.Namespace) -> int:
    integration = ClaimIntegration.parse(args.claim_integration)
    method = DistributionMethod.parse(args.distribution_method)
    otp_auth = args.aws_otp_auth if method == DistributionMethod.AWS else args.manual_otp_auth
    temporal_signer = resolve_temporal_signer(method, otp_auth)
    logger.info(f"temporal signer: {temporal_signer}")

    sender = create_sender(
        method,
        access_key_id=args.aws_ses_access_key_id,
        secret_access_key=args.aws_ses_secret_access_key,
    )

    try:
        with open(args.distribution_list) as f:
            text = f.read()
    except OSError as e:
        raise ConfigurationError(f"Could not read distribution list {e}")

    state_path = args.state_file
    if state_path is None and not args.resend_only:
        state_path = default_state_path(args.distribution_list)

    wallet = load_wallet_key(args.keypair)
    config = GumdropConfig.for_cluster(
        args.env,
        rpc_url=args.rpc_url,
        claim_host=args.host,
        max_attempts=args.max_attempts,
        state_path=state_path,
    )
    ledger = SolanaLedgerClient(config.rpc_url, commitment=config.commitment)
    pipeline = GumdropPipeline(config, ledger, sender, wallet, temporal_signer)
    refs = _integration_refs(args, integration)

    if args.resend_only:
        summary = trio.run(pipeline.resend, text, integration, refs)
    else:
        result = trio.run(pipeline.create, text, integration, refs)
        print(f"Distributor creation succeeded {config.explorer_link(result.outcome.txid)}")
        print(f"distributor {result.distributor}")
        summary = result.summary

    if args.output and isinstance(sender, (ManualSender, WalletListSender)):
        sender.dump(args.output)

    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return run_create(args)
    except GumdropError as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Scan a wallet across supported blockchain networks.

This script discovers a wallet's fungible holdings on every configured
chain, enriches them with token-security data, classifies each holding
(PREMIUM, DUST, MICRO, RISK) and writes a CSV report. RISK tokens go to a
separate file and can optionally be added to the hidden-token set.
"""

import argparse
import logging
import sys
from typing import List, Optional

from vortex.lib.chains import SUPPORTED_CHAINS
from vortex.lib.config import CACHE_BACKENDS, Settings
from vortex.lib.errors import InvalidAddress, UnsupportedChain
from vortex.lib.factory import build_batch_engine, build_scanner
from vortex.lib.formatters import format_summary, split_risk_tokens, write_csv
from vortex.lib.models import Action, Category, ChainScanStatus, ChainStatus
from vortex.lib.scanner import ScanOptions

logger = logging.getLogger(__name__)


def log(chain: str, message: str) -> None:
    """Log a message with chain prefix."""
    logger.info("[%s] %s", chain, message)


def report_progress(status: ChainScanStatus) -> None:
    if status.status == ChainStatus.SCANNING:
        log(status.chain, "Starting wallet scan...")
    elif status.status == ChainStatus.COMPLETE:
        log(status.chain, f"Done, {status.tokens_found} token(s)")
    elif status.status == ChainStatus.ERROR:
        log(status.chain, f"ERROR: {status.error}. Skipping chain.")


def validate_chains(chains: List[str]) -> List[str]:
    """
    Validate and normalize chain names.

    Raises:
        ValueError: If any chain is not supported
    """
    validated = []
    for chain in chains:
        chain_lower = chain.lower()
        if chain_lower not in SUPPORTED_CHAINS:
            raise ValueError(f"Unsupported chain: {chain}. Supported: {', '.join(SUPPORTED_CHAINS)}")
        validated.append(chain_lower)
    return validated


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = argparse.ArgumentParser(
        description="Scan a wallet across multiple chains, classify holdings and generate a CSV report.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan every supported chain, output to stdout
  %(prog)s --wallet 0x...

  # Scan Base and Ethereum only, bypass the cache, save to file
  %(prog)s --wallet 0x... --chains base ethereum --no-cache --output wallet_scan.csv
        """,
    )

    parser.add_argument(
        "--wallet",
        required=True,
        help="Wallet address to scan",
    )
    parser.add_argument(
        "--chains",
        nargs="+",
        help=f"Chains to scan (default: all). Supported: {', '.join(SUPPORTED_CHAINS)}",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Ignore any cached result for this wallet (the fresh result is still cached)",
    )
    parser.add_argument(
        "--output",
        help="Output file path (timestamp auto-appended). If not specified, outputs to stdout.",
    )
    parser.add_argument(
        "--cache-backend",
        choices=CACHE_BACKENDS,
        help="Override VORTEX_CACHE_BACKEND",
    )
    parser.add_argument(
        "--hide-risk",
        action="store_true",
        help="Add RISK tokens to the hidden-token set and leave them out of the report",
    )
    parser.add_argument(
        "--env-file",
        help="Path to a .env file (default: search from the working directory)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    parsed_args = parser.parse_args(args)

    logging.basicConfig(stream=sys.stderr, level=parsed_args.log_level, format="%(message)s")

    try:
        chains = validate_chains(parsed_args.chains) if parsed_args.chains else None
        settings = Settings.from_env(dotenv_path=parsed_args.env_file)
        if parsed_args.cache_backend:
            settings.cache_backend = parsed_args.cache_backend
        scanner = build_scanner(settings)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        result = scanner.scan(
            parsed_args.wallet,
            ScanOptions(chains=chains, use_cache=not parsed_args.no_cache),
            on_progress=report_progress,
        )
    except (InvalidAddress, UnsupportedChain) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for line in format_summary(result):
        print(line, file=sys.stderr)

    tokens = result.tokens
    if parsed_args.hide_risk:
        engine = build_batch_engine(settings)
        risk_tokens = [token for token in tokens if token.category == Category.RISK]
        if risk_tokens:
            outcome = engine.execute(Action.HIDE, risk_tokens)
            if outcome.success:
                print(f"Hid {outcome.tokens_processed} RISK token(s)", file=sys.stderr)
            else:
                print(f"Could not hide RISK tokens: {outcome.error}", file=sys.stderr)
        tokens = engine.filter_visible(tokens)

    regular_tokens, risk_tokens = split_risk_tokens(tokens)
    main_file, risk_file = write_csv(regular_tokens, risk_tokens, parsed_args.output)

    if main_file:
        print(f"\nResults written to: {main_file}", file=sys.stderr)
        if risk_file:
            print(f"RISK tokens written to: {risk_file}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    sys.exit(main())

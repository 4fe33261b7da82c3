"""
Output formatters for wallet scan reports.

This module handles CSV file generation with timestamp-based filenames,
separation of RISK tokens into their own file, and the plain-text scan
summary printed by the CLI.
"""

import csv
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TextIO, Tuple

from .models import CSV_COLUMNS, Category, ChainStatus, ScanResult, Token, format_decimal


def generate_timestamp() -> str:
    """
    Generate a timestamp string for filenames.

    Returns:
        Timestamp in YYYYMMDD_HHMMSS format
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def generate_filenames(base_path: str, timestamp: Optional[str] = None) -> Tuple[str, str]:
    """
    Generate timestamped filenames for the main and RISK CSV files.

    Examples:
        generate_filenames("wallet_scan.csv", "20241214_153022")
        -> ("wallet_scan_20241214_153022.csv", "wallet_scan_20241214_153022_risk.csv")
    """
    if timestamp is None:
        timestamp = generate_timestamp()

    path = Path(base_path)
    stem = path.stem
    suffix = path.suffix or ".csv"
    parent = path.parent

    main_file = parent / f"{stem}_{timestamp}{suffix}"
    risk_file = parent / f"{stem}_{timestamp}_risk{suffix}"

    return str(main_file), str(risk_file)


def write_csv_to_stream(tokens: List[Token], stream: TextIO) -> None:
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMNS)

    for token in tokens:
        writer.writerow(token.to_csv_row())


def split_risk_tokens(tokens: List[Token]) -> Tuple[List[Token], List[Token]]:
    """Split tokens into (everything else, RISK tokens), preserving order."""
    regular = [token for token in tokens if token.category != Category.RISK]
    risky = [token for token in tokens if token.category == Category.RISK]
    return regular, risky


def write_csv(
    tokens: List[Token],
    risk_tokens: List[Token],
    output_path: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Write tokens to CSV files or stdout.

    Args:
        tokens: Non-RISK tokens
        risk_tokens: RISK tokens, written to a separate file
        output_path: Base output path. If None, writes the non-RISK tokens to stdout.

    Returns:
        Tuple of (main_file_path, risk_file_path) if output_path provided,
        otherwise (None, None). The risk path is None when there are no RISK tokens.
    """
    if output_path is None:
        write_csv_to_stream(tokens, sys.stdout)
        return None, None

    main_file, risk_file = generate_filenames(output_path)

    with open(main_file, "w", newline="", encoding="utf-8") as f:
        write_csv_to_stream(tokens, f)

    if risk_tokens:
        with open(risk_file, "w", newline="", encoding="utf-8") as f:
            write_csv_to_stream(risk_tokens, f)
        return main_file, risk_file

    return main_file, None


def format_summary(result: ScanResult) -> List[str]:
    """Human-readable lines describing a scan, one per chain then per category."""
    source = "cache" if result.from_cache else "fresh scan"
    lines = [f"Scan of {result.address} ({source})"]

    for status in result.chains:
        if status.status == ChainStatus.ERROR:
            lines.append(f"  [{status.chain}] ERROR: {status.error}")
        else:
            lines.append(f"  [{status.chain}] {status.status.value}, {status.tokens_found} token(s)")

    for category in Category:
        bucket = result.summary.for_category(category)
        lines.append(f"  {category.value:<8} {bucket.count:>4}  ${format_decimal(bucket.value)}")

    lines.append(
        f"  {'TOTAL':<8} {result.summary.total_tokens:>4}  ${format_decimal(result.summary.total_value)}"
    )
    return lines

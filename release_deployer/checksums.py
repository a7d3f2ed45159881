"""
Checksum manifest parsing and SHA-256 verification.

Manifests use the sha256sum layout: one "<hex digest>  <file name>" per line.
"""

import hashlib
import logging
from pathlib import Path
from typing import Dict

from release_deployer.exceptions import IntegrityFailure

logger = logging.getLogger(__name__)


def calculate_sha256(file_path: Path, chunk_size: int = 8192) -> str:
    """Return the lowercase hex SHA-256 of a file."""
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def parse_checksums(path: Path) -> Dict[str, str]:
    """
    Parse a checksum manifest.

    Blank lines and lines with fewer than two fields are skipped. A leading
    "*" on the file name (binary mode marker) is dropped.

    Args:
        path: Manifest file

    Returns:
        Mapping of file name to hex digest
    """
    checksums: Dict[str, str] = {}
    with open(path, "r") as f:
        for line in f:
            parts = line.strip().split()
            if len(parts) < 2:
                continue
            digest, name = parts[0], parts[1]
            checksums[name.lstrip("*")] = digest
    return checksums


def verify_file_sha256(file_path: Path, expected_hex: str) -> None:
    """
    Verify a file's SHA-256 digest (hex comparison is case-insensitive).

    Raises:
        IntegrityFailure: If the digests differ
    """
    actual = calculate_sha256(file_path)
    expected = expected_hex.strip().lower()
    if actual != expected:
        raise IntegrityFailure(
            f"Checksum mismatch for {Path(file_path).name}: expected {expected} got {actual}",
            expected=expected,
            actual=actual,
        )
    logger.debug(f"Checksum verified for {Path(file_path).name}")

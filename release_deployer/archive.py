"""
Archive extraction for release assets.

Supports tar+gzip and zip archives. Anything else is treated as a raw binary
and left as downloaded. Only directories and regular files are extracted;
members that would land outside the destination are rejected.
"""

import logging
import os
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Optional

from release_deployer.exceptions import ExtractError

logger = logging.getLogger(__name__)

TAR_GZ_SUFFIXES = (".tar.gz", ".tgz")
ZIP_SUFFIXES = (".zip",)


def archive_kind(name: str) -> Optional[str]:
    """
    Classify an asset name by extension family.

    Returns:
        "tar.gz", "zip", or None for anything that is not an archive
    """
    lowered = name.lower()
    if lowered.endswith(TAR_GZ_SUFFIXES):
        return "tar.gz"
    if lowered.endswith(ZIP_SUFFIXES):
        return "zip"
    return None


def strip_archive_extension(name: str) -> str:
    """Base name of an asset without its archive extension (app.tar.gz -> app)."""
    lowered = name.lower()
    for suffix in TAR_GZ_SUFFIXES + ZIP_SUFFIXES:
        if lowered.endswith(suffix):
            return name[: -len(suffix)]
    return os.path.splitext(name)[0]


def _safe_target(dest: Path, member_name: str) -> Path:
    target = (dest / member_name).resolve()
    if target != dest and dest not in target.parents:
        raise ExtractError(f"Archive member escapes destination: {member_name}")
    return target


def extract_tar_gz(src: Path, dest: Path) -> None:
    """Extract a tar.gz archive into dest."""
    dest = Path(dest).resolve()
    try:
        with tarfile.open(src, "r:gz") as tar:
            for member in tar:
                target = _safe_target(dest, member.name)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isreg():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    extracted = tar.extractfile(member)
                    if extracted is None:
                        continue
                    with extracted, open(target, "wb") as out:
                        shutil.copyfileobj(extracted, out)
                    os.chmod(target, (member.mode & 0o777) or 0o644)
                else:
                    logger.debug(f"Skipping non-regular tar member {member.name}")
    except ExtractError:
        raise
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ExtractError(f"Failed to extract {src}: {e}") from e


def extract_zip(src: Path, dest: Path) -> None:
    """Extract a zip archive into dest."""
    dest = Path(dest).resolve()
    try:
        with zipfile.ZipFile(src) as archive:
            for info in archive.infolist():
                target = _safe_target(dest, info.filename)
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as extracted, open(target, "wb") as out:
                    shutil.copyfileobj(extracted, out)
                mode = (info.external_attr >> 16) & 0o777
                if mode:
                    os.chmod(target, mode)
    except ExtractError:
        raise
    except (zipfile.BadZipFile, OSError) as e:
        raise ExtractError(f"Failed to extract {src}: {e}") from e


def extract_archive(archive_path: Path, dest_dir: Path) -> bool:
    """
    Unpack an archive into dest_dir based on its extension.

    Args:
        archive_path: Downloaded asset
        dest_dir: Slot directory to unpack into

    Returns:
        True if the asset was extracted, False if it is not an archive

    Raises:
        ExtractError: If the archive is corrupt or unsafe
    """
    archive_path = Path(archive_path)
    kind = archive_kind(archive_path.name)
    if kind is None:
        logger.info(f"{archive_path.name} is not an archive, skipping extraction")
        return False

    logger.info(f"Extracting {archive_path.name} ({kind}) into {dest_dir}")
    if kind == "tar.gz":
        extract_tar_gz(archive_path, dest_dir)
    else:
        extract_zip(archive_path, dest_dir)
    return True

"""
Artifact layout helpers.

Artifacts are sharded two levels deep so that no directory holds more than
BUCKET_SIZE files:

    {(cid // 1_000_000 + 1) * 1_000_000}/{((cid % 1_000_000) // 1000 + 1) * 1000}/{cid}.json

e.g. CID 42 lives at ``1000000/1000/42.json`` and CID 2_345_678 at
``3000000/346000/2345678.json``.
"""

import logging
import shutil
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

BLOCK_SIZE = 1_000_000
BUCKET_SIZE = 1000
ARTIFACT_SUFFIX = ".json"
DEFAULT_MIN_BYTES = 1024


def path_for(cid: int) -> str:
    """Relative artifact path for ``cid``.

    Raises:
        ValueError: If cid is negative
    """
    if cid < 0:
        raise ValueError(f"cid must be non-negative, got {cid}")

    block = cid // BLOCK_SIZE
    bucket = (cid - block * BLOCK_SIZE) // BUCKET_SIZE
    return f"{(block + 1) * BLOCK_SIZE}/{(bucket + 1) * BUCKET_SIZE}/{cid}{ARTIFACT_SUFFIX}"


def id_from_path(path: str | Path) -> int:
    """Re-derive the CID from an artifact path.

    When the path still carries its two shard directories they must agree
    with :func:`path_for`; a file filed under the wrong bucket is rejected.

    Raises:
        ValueError: If the leaf name is not ``{cid}.json`` or the shards disagree
    """
    p = Path(path)
    if p.suffix != ARTIFACT_SUFFIX or not p.stem.isdigit():
        raise ValueError(f"Not an artifact path: {path}")

    cid = int(p.stem)
    parts = p.parts
    if len(parts) >= 3 and parts[-2].isdigit() and parts[-3].isdigit():
        expected = path_for(cid)
        if "/".join(parts[-3:]) != expected:
            raise ValueError(f"Artifact {path} is not filed under {expected}")
    return cid


def is_present(path: str | Path, min_bytes: int = DEFAULT_MIN_BYTES) -> bool:
    """Whether ``path`` already holds a usable artifact.

    A regular file strictly larger than ``min_bytes`` counts as present.
    Directories left behind by failed writes are removed recursively and
    undersized files are deleted; both report absent.
    """
    p = Path(path)
    try:
        if p.is_file():
            size = p.stat().st_size
            if size > min_bytes:
                return True
            logger.info("Removing undersized artifact: path=%s, size=%d", p, size)
            p.unlink(missing_ok=True)
            return False

        if p.is_dir():
            logger.info("Removing directory in place of artifact: path=%s", p)
            shutil.rmtree(p, ignore_errors=True)
    except OSError as e:
        logger.warning("Could not inspect artifact: path=%s, error=%s", p, e)
    return False


def _numeric_dirs(root: Path) -> list[Path]:
    dirs = [d for d in root.iterdir() if d.is_dir() and d.name.isdigit()]
    return sorted(dirs, key=lambda d: int(d.name))


def iter_artifacts(root: str | Path, min_bytes: int = DEFAULT_MIN_BYTES) -> Iterator[Path]:
    """Walk the shard tree in ascending CID order, yielding present artifacts.

    Undersized files are reclaimed on the way, the same as :func:`is_present`.
    """
    root = Path(root)
    if not root.is_dir():
        return

    for block in _numeric_dirs(root):
        for bucket in _numeric_dirs(block):
            files = [
                f for f in bucket.iterdir()
                if f.suffix == ARTIFACT_SUFFIX and f.stem.isdigit()
            ]
            for f in sorted(files, key=lambda f: int(f.stem)):
                if is_present(f, min_bytes):
                    yield f


def count_artifacts(root: str | Path) -> int:
    """Count ``*.json`` files anywhere under ``root`` without validating them."""
    root = Path(root)
    if not root.is_dir():
        return 0
    return sum(1 for _ in root.rglob(f"*{ARTIFACT_SUFFIX}"))

"""
Delta-copy collaborator used to build snapshots and mirrors.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .process import run_command

logger = logging.getLogger(__name__)

_TRANSFERRED_RE = re.compile(r"Total transferred file size: ([\d,.]+)")


@dataclass
class CopyResult:
    bytes_transferred: int = 0


class DeltaCopier(ABC):
    """Copies a source tree, hard-linking unchanged files against a base."""

    @abstractmethod
    async def copy(self, source: Path, target: Path, link_base: Optional[Path] = None,
                   delete: bool = True) -> CopyResult:
        """Make ``target`` an exact copy of ``source``.

        Files unchanged relative to ``link_base`` must be hard-linked, not
        duplicated. Raises CommandFailed or CommandTimeout on failure.
        """
        pass


class RsyncCopier(DeltaCopier):
    """DeltaCopier backed by rsync --link-dest."""

    def __init__(self, timeout: float = 3600, binary: str = "rsync",
                 extra_args: Optional[List[str]] = None):
        self.timeout = timeout
        self.binary = binary
        self.extra_args = extra_args or []

    def build_args(self, source: Path, target: Path, link_base: Optional[Path] = None,
                   delete: bool = True) -> List[str]:
        args = [self.binary, "-a", "--stats"]
        if delete:
            args.append("--delete")
        if link_base is not None:
            args.append(f"--link-dest={link_base}")
        args.extend(self.extra_args)
        # Trailing slash copies the contents of source, not the directory itself
        args.extend([f"{source}/", f"{target}/"])
        return args

    async def copy(self, source: Path, target: Path, link_base: Optional[Path] = None,
                   delete: bool = True) -> CopyResult:
        if link_base is not None:
            logger.info(f"Using hard-link base: {link_base}")
        result = await run_command(
            self.build_args(source, target, link_base, delete), timeout=self.timeout
        )
        return CopyResult(bytes_transferred=parse_transferred(result.stdout))


def parse_transferred(stats: str) -> int:
    """Extract the transferred byte count from rsync --stats output."""
    match = _TRANSFERRED_RE.search(stats)
    if not match:
        return 0
    digits = match.group(1).replace(",", "").split(".")[0]
    return int(digits) if digits else 0

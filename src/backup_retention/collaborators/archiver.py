"""
Archival collaborator used to build weekly and monthly archives.
"""
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Sequence

from ..errors import CommandFailed, CommandTimeout
from .process import run_command

logger = logging.getLogger(__name__)


class Archiver(ABC):
    """Creates and verifies compressed archives."""

    @abstractmethod
    async def create(self, source: Path, target: Path, excludes: Sequence[str] = ()) -> int:
        """Archive ``source`` into ``target`` and return the archive size in bytes."""
        pass

    @abstractmethod
    async def verify(self, target: Path) -> bool:
        """Return True if the archive's contents can be listed."""
        pass


class TarArchiver(Archiver):
    """Archiver backed by tar with gzip compression."""

    def __init__(self, timeout: float = 3600, binary: str = "tar"):
        self.timeout = timeout
        self.binary = binary

    def build_create_args(self, source: Path, target: Path,
                          excludes: Sequence[str] = ()) -> List[str]:
        # Archive members are stored relative to the source's parent, e.g. prj/...
        name = source.name
        args = [self.binary, "-czf", str(target), "-C", str(source.parent)]
        for pattern in excludes:
            args.append(f"--exclude={name}/{pattern}")
        args.append(f"{name}/")
        return args

    async def create(self, source: Path, target: Path, excludes: Sequence[str] = ()) -> int:
        await run_command(self.build_create_args(source, target, excludes), timeout=self.timeout)
        return os.path.getsize(target)

    async def verify(self, target: Path) -> bool:
        try:
            result = await run_command([self.binary, "-tzf", str(target)], timeout=self.timeout)
        except (CommandFailed, CommandTimeout) as e:
            logger.error(f"Archive integrity check failed for {target}: {e.message}")
            return False
        return bool(result.stdout.strip())

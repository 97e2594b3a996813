"""Version-control scan: counts repositories with pending changes."""
import logging
from pathlib import Path
from typing import List, Optional

from ..errors import CommandFailed, CommandTimeout
from .process import run_blocking, run_command

logger = logging.getLogger(__name__)


class GitRepositoryScanner:
    """Counts Git working trees under a root that have uncommitted changes."""

    def __init__(self, timeout: float = 30, max_depth: int = 3, binary: str = "git"):
        self.timeout = timeout
        self.max_depth = max_depth
        self.binary = binary

    def find_repositories(self, root: Path) -> List[Path]:
        repositories = []

        def walk(directory: Path, depth: int):
            if (directory / ".git").exists():
                repositories.append(directory)
                return
            if depth >= self.max_depth:
                return
            try:
                children = sorted(p for p in directory.iterdir() if p.is_dir())
            except OSError:
                return
            for child in children:
                if not child.name.startswith("."):
                    walk(child, depth + 1)

        if root.is_dir():
            walk(root, 0)
        return repositories

    async def count_pending(self, root: Path) -> Optional[int]:
        """Number of repositories with uncommitted changes, None if unknown."""
        try:
            found = await run_blocking(self._scan, root, timeout=self.timeout,
                                       operation=f"repository scan of {root}")
        except CommandTimeout as e:
            logger.warning(f"Could not scan {root} for repositories: {e.message}")
            return None
        if found is None:
            return None
        pending = 0
        for repository in found:
            try:
                result = await run_command(
                    [self.binary, "status", "--porcelain"],
                    timeout=self.timeout, cwd=str(repository)
                )
            except (CommandFailed, CommandTimeout) as e:
                logger.warning(f"Could not read status of {repository}: {e.message}")
                continue
            if result.stdout.strip():
                pending += 1
        return pending

    def _scan(self, root: Path) -> Optional[List[Path]]:
        if not root.is_dir():
            return None
        return self.find_repositories(root)

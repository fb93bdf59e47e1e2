"""Workspace collaborator: the only way the indexer touches files."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..config import Config
from ..indexing.file_finder import FileFinder
from ..indexing.types import FileStats
from ..utils.git_runner import get_current_branch, get_remote_url, repo_name_from_url

logger = logging.getLogger(__name__)

NO_BRANCH = "NONE"


class Workspace(ABC):
    """Lists, stats and reads files for the indexer."""

    @abstractmethod
    def get_workspace_dirs(self) -> List[str]:
        pass

    @abstractmethod
    def list_files(self, directory: str) -> Iterable[str]:
        """Yield indexable file paths under ``directory`` honoring ignore rules."""
        pass

    @abstractmethod
    def stat_files(self, paths: List[str]) -> Dict[str, FileStats]:
        """Stats for the given paths; paths that vanished are omitted."""
        pass

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Read a file's raw content; cache keys are computed over these bytes.

        Raises:
            FileNotFoundError: If the file no longer exists
        """
        pass

    @abstractmethod
    def get_branch(self, directory: str) -> str:
        pass

    @abstractmethod
    def get_repo_name(self, directory: str) -> Optional[str]:
        pass


class LocalWorkspace(Workspace):
    """Workspace backed by the local filesystem and git."""

    def __init__(self, config: Config):
        self.config = config

    def get_workspace_dirs(self) -> List[str]:
        return [str(Path(d).resolve()) for d in self.config.workspace_dirs]

    def list_files(self, directory: str) -> Iterable[str]:
        finder = FileFinder(self.config, Path(directory))
        for file_path in finder.find_files():
            yield str(file_path)

    def stat_files(self, paths: List[str]) -> Dict[str, FileStats]:
        stats: Dict[str, FileStats] = {}
        for path in paths:
            try:
                st = Path(path).stat()
            except FileNotFoundError:
                logger.debug(f"{path} vanished before it could be stat'ed")
                continue
            stats[path] = FileStats(last_modified=st.st_mtime, size=st.st_size)
        return stats

    def read_bytes(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def get_branch(self, directory: str) -> str:
        return get_current_branch(Path(directory)) or NO_BRANCH

    def get_repo_name(self, directory: str) -> Optional[str]:
        url = get_remote_url(Path(directory))
        return repo_name_from_url(url) if url else None

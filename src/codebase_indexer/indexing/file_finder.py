"""File discovery and filtering for indexing."""

import logging
import os
from pathlib import Path
from typing import Iterator, List

import pathspec

from ..config import Config

logger = logging.getLogger(__name__)


class FileFinder:
    """Finds and filters files under one workspace directory."""

    def __init__(self, config: Config, root_dir: Path):
        self.config = config
        self.root_dir = Path(root_dir)
        self._create_gitignore_spec()

    def _create_gitignore_spec(self) -> None:
        """Create pathspec for excluded directories and ignore files."""
        patterns: List[str] = []

        for exclude_dir in self.config.exclude_dirs:
            # Matches the directory at the root and at any depth
            patterns.append(f"{exclude_dir}/**")
            patterns.append(f"**/{exclude_dir}/**")

        patterns.extend(
            [
                "*.pyc",
                "*.pyo",
                "*.so",
                "*.dylib",
                "*.dll",
                ".DS_Store",
                "*.tmp",
                "*.swp",
                "*~",
                ".git/",
            ]
        )

        self._add_gitignore_patterns(self.root_dir, patterns)

        self.exclude_spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def _add_gitignore_patterns(self, directory: Path, patterns: List[str]) -> None:
        """Add patterns from the root .gitignore and those one level below it."""
        gitignore_path = directory / ".gitignore"
        if gitignore_path.exists():
            try:
                with open(gitignore_path, "r", encoding="utf-8", errors="ignore") as f:
                    for line in f:
                        line = line.strip()
                        if line and not line.startswith("#"):
                            if directory != self.root_dir and not line.startswith("/"):
                                relative_dir = directory.relative_to(self.root_dir)
                                line = f"{relative_dir}/{line}"
                            patterns.append(line)
            except OSError as e:
                logger.debug(f"Skipping unreadable {gitignore_path}: {e}")

        if directory != self.root_dir:
            return

        try:
            for subdir in directory.iterdir():
                if subdir.is_dir() and subdir.name not in {".git", "node_modules"}:
                    self._add_gitignore_patterns(subdir, patterns)
        except OSError as e:
            logger.debug(f"Could not list {directory}: {e}")

    def _is_text_file(self, file_path: Path) -> bool:
        """Null bytes in the first KiB mean binary."""
        try:
            with open(file_path, "rb") as f:
                chunk = f.read(1024)
        except OSError:
            return False
        return b"\x00" not in chunk

    def _should_include_file(self, file_path: Path) -> bool:
        try:
            if file_path.stat().st_size > self.config.indexing.max_file_size:
                return False

            extension = file_path.suffix.lstrip(".")
            if extension not in self.config.file_extensions:
                return False

            relative_path = file_path.relative_to(self.root_dir)
            if self.exclude_spec.match_file(relative_path.as_posix()):
                return False

            return self._is_text_file(file_path)
        except (OSError, ValueError):
            return False

    def find_files(self) -> Iterator[Path]:
        """Find all files that should be indexed."""
        if not self.root_dir.is_dir():
            raise ValueError(f"Workspace path is not a directory: {self.root_dir}")

        for root, dirs, files in os.walk(self.root_dir):
            root_path = Path(root)

            dirs[:] = sorted(
                d
                for d in dirs
                if not self.exclude_spec.match_file(
                    (root_path / d).relative_to(self.root_dir).as_posix() + "/"
                )
            )

            for file_name in sorted(files):
                file_path = root_path / file_name
                if self._should_include_file(file_path):
                    yield file_path

import os
from pathlib import Path
from typing import Generator, Iterable, List


class FileScanner:
    """Expands files and directories into the video files to process."""

    def __init__(self, extensions: List[str], skip_dir_suffix: str = "_out"):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.skip_dir_suffix = skip_dir_suffix

    def accepts(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Recursively scans the directory and yields matching files in sorted order."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Skip output directories written by previous runs
            if self.skip_dir_suffix and root_path.name.endswith(self.skip_dir_suffix):
                dirs[:] = []
                continue

            # Ensure deterministic traversal: sort directories and files
            dirs[:] = sorted(d for d in dirs if not (self.skip_dir_suffix and d.endswith(self.skip_dir_suffix)))
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if self.accepts(file_path) and file_path.is_file():
                    yield file_path

    def expand(self, paths: Iterable[Path]) -> List[Path]:
        """Files are kept if their extension matches; directories are scanned. Order is preserved."""
        found: List[Path] = []
        seen = set()
        for path in paths:
            path = Path(path)
            candidates = self.scan(path) if path.is_dir() else ([path] if path.is_file() and self.accepts(path) else [])
            for candidate in candidates:
                if candidate not in seen:
                    seen.add(candidate)
                    found.append(candidate)
        return found

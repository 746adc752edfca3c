"""Locate rule documents: explicit paths, the user-wide directory, and the project."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

RULE_SUFFIXES: frozenset[str] = frozenset({".yml", ".yaml", ".toml"})
PROJECT_RULE_DIRS: tuple[str, ...] = (".checklists", "checklists", ".checks", "checks")
PROJECT_RULE_FILES: tuple[str, ...] = (
    ".checklist.yml",
    "checklist.yml",
    ".checklist.toml",
    "checklist.toml",
)


def rule_files_in_dir(directory: Path) -> list[Path]:
    """Return the YAML and TOML rule documents directly inside *directory*, sorted by name."""
    return sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and path.suffix in RULE_SUFFIXES
    )


def discover_rule_files(
    project_dir: Path,
    *,
    extra: Iterable[Path] = (),
    user_dir: Path | None = None,
) -> list[Path]:
    """Collect rule documents in precedence order without duplicates.

    Order: explicit *extra* paths (files, or directories of documents), the
    user-wide *user_dir*, then the project's conventional rule directories
    and files.
    """
    candidates: list[Path] = []

    for path in extra:
        if path.is_dir():
            candidates.extend(rule_files_in_dir(path))
        else:
            candidates.append(path)

    if user_dir is not None:
        if user_dir.is_dir():
            candidates.extend(rule_files_in_dir(user_dir))
        else:
            logger.debug("User checklists dir %s does not exist, skipping", user_dir)

    for name in PROJECT_RULE_DIRS:
        directory = project_dir / name
        if directory.is_dir():
            candidates.extend(rule_files_in_dir(directory))

    for name in PROJECT_RULE_FILES:
        path = project_dir / name
        if path.is_file():
            candidates.append(path)

    seen: set[Path] = set()
    result: list[Path] = []
    for path in candidates:
        resolved = path.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        logger.debug("Discovered rule document %s", path)
        result.append(path)
    return result

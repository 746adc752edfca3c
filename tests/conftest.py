"""Shared test fixtures for checklints."""

from __future__ import annotations

import os
import shlex
import sys
from typing import TYPE_CHECKING

import pytest

from checklints.engine.cache import MemoryCacheStore

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def repo(tmp_path: Path) -> Path:
    """Create an empty repository root for testing."""
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture()
def rust_repo(repo: Path) -> Path:
    """A small Rust-like project with a manifest, sources, and a README."""
    (repo / "Cargo.toml").write_text('[package]\nname = "checklints"\nversion = "0.2.1"\n')
    (repo / "src").mkdir()
    (repo / "src" / "main.rs").write_text("fn main() {}\n")
    (repo / "README.md").write_text("# checklints\n\nRepository checks.\n")
    return repo


@pytest.fixture()
def memory_cache() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture(autouse=True)
def _isolated_xdg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep user config, checklists, and the cache out of the real home directory."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    for name in list(os.environ):
        if name.startswith("CHECKLINTS_"):
            monkeypatch.delenv(name)


def python_command(code: str) -> str:
    """Return a command line running *code* with the current interpreter."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def counting_command(counter: Path, output: str) -> str:
    """Return a command line that appends a line to *counter* and prints *output*."""
    code = (
        f"open({str(counter)!r}, 'a').write('x\\n'); "
        f"print({output!r})"
    )
    return python_command(code)

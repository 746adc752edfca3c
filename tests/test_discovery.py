"""Tests for checklints.rules.discovery."""

from __future__ import annotations

from typing import TYPE_CHECKING

from checklints.rules.discovery import discover_rule_files, rule_files_in_dir

if TYPE_CHECKING:
    from pathlib import Path


def _write(path: Path, text: str = "check: []\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_rule_files_in_dir_filters_and_sorts(tmp_path: Path) -> None:
    _write(tmp_path / "b.yml")
    _write(tmp_path / "a.yaml")
    _write(tmp_path / "notes.txt")
    (tmp_path / "nested.yml").mkdir()
    assert [p.name for p in rule_files_in_dir(tmp_path)] == ["a.yaml", "b.yml"]


def test_project_locations(repo: Path) -> None:
    _write(repo / ".checklists" / "one.yml")
    _write(repo / "checks" / "two.yml")
    _write(repo / "checklist.yml")
    found = discover_rule_files(repo)
    assert [p.relative_to(repo).as_posix() for p in found] == [
        ".checklists/one.yml",
        "checks/two.yml",
        "checklist.yml",
    ]


def test_precedence_explicit_then_user_then_project(repo: Path, tmp_path: Path) -> None:
    explicit = _write(tmp_path / "explicit.yml")
    user_dir = tmp_path / "user"
    user = _write(user_dir / "user.yml")
    project = _write(repo / ".checklist.yml")

    found = discover_rule_files(repo, extra=[explicit], user_dir=user_dir)
    assert found == [explicit, user, project]


def test_explicit_directory_is_expanded(repo: Path, tmp_path: Path) -> None:
    bundle = tmp_path / "bundle"
    _write(bundle / "x.yml")
    _write(bundle / "y.yml")
    found = discover_rule_files(repo, extra=[bundle])
    assert [p.name for p in found] == ["x.yml", "y.yml"]


def test_duplicates_are_dropped(repo: Path) -> None:
    rules = _write(repo / "checks" / "rules.yml")
    found = discover_rule_files(repo, extra=[rules])
    assert found == [rules]


def test_missing_user_dir_is_skipped(repo: Path, tmp_path: Path) -> None:
    assert discover_rule_files(repo, user_dir=tmp_path / "nope") == []


def test_toml_documents_are_discovered(repo: Path) -> None:
    _write(repo / ".checks" / "rust.toml", "check = []\n")
    _write(repo / ".checks" / "python.yml")
    _write(repo / "checklist.toml", "check = []\n")
    _write(repo / ".checklist.toml", "check = []\n")
    found = discover_rule_files(repo)
    assert [p.relative_to(repo).as_posix() for p in found] == [
        ".checks/python.yml",
        ".checks/rust.toml",
        ".checklist.toml",
        "checklist.toml",
    ]

import os
from pathlib import Path

import pytest

from repo_packer.file_manipulation import (
    add_line_numbers,
    build_tree_lines,
    decode_text,
    expand_glob,
    glob_base,
    is_binary_content,
    is_glob,
    normalize_globs,
    walk_files,
)
from repo_packer.ignore import IgnoreMatcher


@pytest.mark.unit
def test_normalize_globs_strips_and_normalizes() -> None:
    globs = ["  src/**/*.py ", "\\tests\\*.py", ""]

    assert normalize_globs(globs) == ["src/**/*.py", "/tests/*.py"]


@pytest.mark.unit
def test_glob_helpers() -> None:
    assert is_glob("src/**/*.py")
    assert not is_glob("src/app.py")
    assert glob_base("src/**/*.py") == Path("src")
    assert glob_base("*.py") == Path()
    assert glob_base("/abs/dir/*.md") == Path("/abs/dir")


@pytest.mark.unit
def test_expand_glob_returns_sorted_files(tmp_path: Path) -> None:
    (tmp_path / "src" / "pkg").mkdir(parents=True)
    (tmp_path / "src" / "b.py").write_text("", encoding="utf-8")
    (tmp_path / "src" / "pkg" / "a.py").write_text("", encoding="utf-8")
    (tmp_path / "src" / "notes.md").write_text("", encoding="utf-8")

    found = expand_glob(str(tmp_path / "src" / "**" / "*.py"))

    assert found == [tmp_path / "src" / "b.py", tmp_path / "src" / "pkg" / "a.py"]


@pytest.mark.unit
def test_walk_files_prunes_ignored_directories(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("x", encoding="utf-8")
    (tmp_path / "node_modules" / "dep").mkdir(parents=True)
    (tmp_path / "node_modules" / "dep" / "index.js").write_text("x", encoding="utf-8")
    (tmp_path / "linked").symlink_to(tmp_path / "src", target_is_directory=True)
    matcher = IgnoreMatcher.for_root(tmp_path)

    assert list(walk_files(tmp_path, matcher.is_ignored)) == [tmp_path / "src" / "app.py"]


@pytest.mark.unit
def test_binary_sniffing_and_lossy_decoding() -> None:
    assert is_binary_content(b"abc\x00def")
    assert not is_binary_content(b"a" * 10 + b"\x00", sniff_bytes=5)

    assert decode_text("héllo".encode(), 0.3) == ("héllo", None)

    text, warning = decode_text(b"hello \xff world", 0.3)
    assert text == "hello \ufffd world"
    assert warning is not None

    assert decode_text(b"\xff\xfe\xfd\xfc", 0.3) == (None, None)


@pytest.mark.unit
def test_add_line_numbers_pads_to_at_least_three_digits() -> None:
    assert add_line_numbers("a\nb\n") == "  1 | a\n  2 | b"
    numbered = add_line_numbers("\n".join(["x"] * 1000))
    assert numbered.splitlines()[0] == "   1 | x"
    assert numbered.splitlines()[-1] == "1000 | x"


@pytest.mark.unit
def test_build_tree_lines_lists_directories_first() -> None:
    lines = build_tree_lines("Directory structure:", ["src/b.py", "README.md", "src/a.py", "docs/x/y.md"])

    assert lines == [
        "Directory structure:",
        "├── docs/",
        "│   └── x/",
        "│       └── y.md",
        "├── src/",
        "│   ├── a.py",
        "│   └── b.py",
        "└── README.md",
    ]


@pytest.mark.unit
@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="named pipes are not supported")
def test_walk_files_skips_special_files(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "alias.txt").symlink_to(tmp_path / "a.txt")
    os.mkfifo(tmp_path / "notes.txt")

    assert list(walk_files(tmp_path, lambda _: False)) == [tmp_path / "a.txt", tmp_path / "alias.txt"]

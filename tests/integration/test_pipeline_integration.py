import io
import os
import shutil
import subprocess
from pathlib import Path

import pytest

from repo_packer.config import ContentStatus
from repo_packer.exceptions import ConfigurationError, OutsideBaseError
from repo_packer.output_construction import render_text
from repo_packer.pipeline import InputKind, resolve_inputs, run_pipeline
from repo_packer.settings import Settings
from repo_packer.tokenizer import count_tokens

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(repo: Path, *args: str, date: str = "2020-01-01T00:00:00+0000") -> None:
    env = {
        **os.environ,
        "GIT_AUTHOR_DATE": date,
        "GIT_COMMITTER_DATE": date,
        "GIT_CONFIG_NOSYSTEM": "1",
        "GIT_CONFIG_GLOBAL": os.devnull,
    }
    subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", "-c", "commit.gpgsign=false", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        env=env,
    )


def _write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.integration
@requires_git
def test_recently_committed_files_come_last(tmp_path: Path) -> None:
    _git(tmp_path, "init", "-q")
    _write(tmp_path, "old.txt", "old")
    _git(tmp_path, "add", "old.txt")
    _git(tmp_path, "commit", "-q", "-m", "old", date="2020-01-01T00:00:00+0000")
    _write(tmp_path, "new.txt", "new")
    _git(tmp_path, "add", "new.txt")
    _git(tmp_path, "commit", "-q", "-m", "new", date="2024-01-01T00:00:00+0000")
    _write(tmp_path, "aaa.txt", "untracked")

    result = run_pipeline(Settings(input_paths=[str(tmp_path)], git_boost_max=100), write=False)

    assert [f.normalized_path for f in result.ranked] == ["aaa.txt", "old.txt", "new.txt"]
    assert [f.priority_score for f in result.ranked] == [1, 1, 101]
    assert [c.paths for c in result.chunks] == [["aaa.txt", "old.txt"], ["new.txt"]]


@pytest.mark.integration
def test_pipeline_applies_rules_ignores_and_skips(tmp_path: Path) -> None:
    _write(tmp_path, "src/app.py", "print('hi')\n")
    _write(tmp_path, "README.md", "# readme\n")
    _write(tmp_path, "notes.secret", "hidden")
    _write(tmp_path, ".gitignore", "*.secret\n")
    _write(tmp_path, "node_modules/dep/index.js", "ignored")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00")
    settings = Settings(
        input_paths=[str(tmp_path)],
        max_git_depth=0,
        priority_rules=[{"pattern": "src/**", "score": 100}],
    )

    result = run_pipeline(settings, write=False)

    assert [f.normalized_path for f in result.ranked] == [".gitignore", "README.md", "logo.png", "src/app.py"]
    assert [c.paths for c in result.chunks] == [[".gitignore", "README.md"], ["src/app.py"]]
    assert result.report.files_discovered == 4
    assert result.report.files_emitted == 3
    assert result.report.skipped == {"skipped_binary": 1}


@pytest.mark.integration
def test_symlink_loops_are_recorded_and_outside_links_are_fatal(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    _write(repo, "a.txt", "a")
    (repo / "loop1").symlink_to(repo / "loop2")
    (repo / "loop2").symlink_to(repo / "loop1")

    result = run_pipeline(Settings(input_paths=[str(repo)], max_git_depth=0), write=False)

    statuses = {f.normalized_path: f.status for f in result.loaded}
    assert statuses == {
        "a.txt": ContentStatus.TEXT,
        "loop1": ContentStatus.SKIPPED_SYMLINK_LOOP,
        "loop2": ContentStatus.SKIPPED_SYMLINK_LOOP,
    }
    assert [c.paths for c in result.chunks] == [["a.txt"]]

    _write(tmp_path, "secret.txt", "secret")
    (repo / "escape.txt").symlink_to(tmp_path / "secret.txt")
    with pytest.raises(OutsideBaseError):
        run_pipeline(Settings(input_paths=[str(repo)], max_git_depth=0), write=False)


@pytest.mark.integration
def test_multiple_roots_files_and_globs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write(tmp_path, "one/same.txt", "from one")
    _write(tmp_path, "two/same.txt", "from two")
    _write(tmp_path, "docs/guide.md", "guide")
    _write(tmp_path, "docs/skip.txt", "skip")
    _write(tmp_path, "single.cfg", "key=value")
    monkeypatch.chdir(tmp_path)

    roots = resolve_inputs(["two", "one", "docs/*.md", "single.cfg"])
    assert [r.kind for r in roots] == [InputKind.DIRECTORY, InputKind.DIRECTORY, InputKind.GLOB, InputKind.FILE]

    result = run_pipeline(
        Settings(input_paths=["two", "one", "docs/*.md", "single.cfg"], max_git_depth=0),
        write=False,
    )

    assert [(f.normalized_path, f.root_index) for f in result.ranked] == [
        ("guide.md", 2),
        ("same.txt", 0),
        ("same.txt", 1),
        ("single.cfg", 3),
    ]
    assert [(f.normalized_path, f.content) for f in result.loaded] == [
        ("guide.md", "guide"),
        ("same.txt", "from two"),
        ("same.txt", "from one"),
        ("single.cfg", "key=value"),
    ]


@pytest.mark.integration
def test_missing_input_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        run_pipeline(Settings(input_paths=[str(tmp_path / "missing")], max_git_depth=0), write=False)


@pytest.mark.integration
def test_output_directory_inside_the_input_is_not_packed(tmp_path: Path) -> None:
    _write(tmp_path, "a.txt", "a")
    _write(tmp_path, "out/chunk-0.txt", ">>>> a.txt\na")
    settings = Settings(input_paths=[str(tmp_path)], output_dir=tmp_path / "out", max_git_depth=0)

    result = run_pipeline(settings, stdout=io.StringIO())

    assert [f.normalized_path for f in result.ranked] == ["a.txt"]
    assert result.written == [tmp_path / "out" / "chunk-0.txt"]


@pytest.mark.integration
def test_output_is_identical_across_thread_counts(tmp_path: Path) -> None:
    for i in range(60):
        _write(tmp_path, f"pkg{i % 4}/mod{i}.py", f"value = {i}\n" * (i % 7 + 1))

    outputs = []
    for threads in (1, 3, 16):
        out = io.StringIO()
        settings = Settings(
            input_paths=[str(tmp_path)],
            threads=threads,
            max_size="200",
            max_git_depth=0,
            priority_rules=[{"pattern": "pkg1/**", "score": 9}],
        )
        run_pipeline(settings, stdout=out)
        outputs.append(out.getvalue())

    assert outputs[0] == outputs[1] == outputs[2]
    assert outputs[0].rstrip("\n").split(">>>> ")[-1].startswith("pkg1/")


@pytest.mark.integration
@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="named pipes are not supported")
def test_named_pipes_do_not_block_the_run(tmp_path: Path) -> None:
    _write(tmp_path, "a.txt", "a")
    os.mkfifo(tmp_path / "notes.txt")
    os.mkfifo(tmp_path / "explicit.txt")

    result = run_pipeline(
        Settings(input_paths=[str(tmp_path), str(tmp_path / "explicit.txt")], max_git_depth=0),
        write=False,
    )

    assert [(f.normalized_path, f.status) for f in result.loaded] == [
        ("a.txt", ContentStatus.TEXT),
        ("explicit.txt", ContentStatus.SKIPPED_UNREADABLE),
    ]


@pytest.mark.integration
def test_token_budget_covers_the_rendered_template(tmp_path: Path) -> None:
    for name in ("a.txt", "b.txt", "c.txt", "d.txt"):
        _write(tmp_path, name, "word " * 10)
    template = "Start of file FILE_PATH now\\nFILE_CONTENT"
    settings = Settings(input_paths=[str(tmp_path)], tokens="35", output_template=template, max_git_depth=0)

    result = run_pipeline(settings, write=False)

    assert [c.paths for c in result.chunks] == [["a.txt", "b.txt"], ["c.txt", "d.txt"]]
    for chunk in result.chunks:
        rendered = render_text(chunk.files, template)
        assert count_tokens(rendered) == chunk.size <= 35


@pytest.mark.integration
@requires_git
def test_recency_is_not_shared_between_roots(tmp_path: Path) -> None:
    _git(tmp_path, "init", "-q")
    for rel, date in (
        ("pkg_b/__init__.py", "2020-01-01T00:00:00+0000"),
        ("pkg_b/y.py", "2022-01-01T00:00:00+0000"),
        ("pkg_a/__init__.py", "2024-01-01T00:00:00+0000"),
    ):
        _write(tmp_path, rel, rel)
        _git(tmp_path, "add", rel)
        _git(tmp_path, "commit", "-q", "-m", rel, date=date)
    _write(tmp_path, "pkg_a/x.py", "untracked")

    settings = Settings(input_paths=[str(tmp_path / "pkg_a"), str(tmp_path / "pkg_b")], git_boost_max=100)
    result = run_pipeline(settings, write=False)

    assert [(f.root_index, f.normalized_path, f.priority_score) for f in result.ranked] == [
        (1, "__init__.py", 1),
        (0, "x.py", 1),
        (1, "y.py", 51),
        (0, "__init__.py", 101),
    ]

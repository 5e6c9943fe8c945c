import os

import pytest

from scout import (DirectoryError, ExtensionFilter, Matcher, PatternError, SearchOptions,
                   collect, search, walk_files)


def _tree(base, files):
    for rel, content in files.items():
        p = base / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            p.write_bytes(content)
        else:
            p.write_text(content, encoding="utf-8")


def _names(paths, base):
    return sorted(os.path.relpath(p, base).replace(os.sep, "/") for p in paths)


def test_extension_filter():
    only_txt = ExtensionFilter.parse("txt")
    assert only_txt.should_include("a.txt")
    assert only_txt.should_include("dir/notes.old.txt")
    assert not only_txt.should_include("a.md")
    assert not only_txt.should_include("a.TXT")
    assert not only_txt.should_include("Makefile")
    assert not only_txt.should_include(".txt")


def test_extension_filter_parse():
    assert ExtensionFilter.parse("*").is_wildcard
    assert ExtensionFilter.parse("py,*").is_wildcard
    assert ExtensionFilter.parse("").is_wildcard
    assert ExtensionFilter.parse(" rs, .py ,").extensions == frozenset({"rs", "py"})
    assert ExtensionFilter.parse("*").should_include("Makefile")


def test_collect_applies_extension_filter(tmp_path):
    _tree(tmp_path, {"a.md": "needle\n", "a.txt": "needle\n"})
    results = collect(str(tmp_path), Matcher("needle"), ExtensionFilter.parse("txt"))
    assert [os.path.basename(m.path) for m in results] == ["a.txt"]


def test_unreadable_file_is_skipped(tmp_path):
    _tree(tmp_path, {
        "one.txt": "needle one\n",
        "two.txt": "needle two\nno\nneedle again\n",
        "bad.txt": b"needle \xff\xfe\n",
    })
    results = collect(str(tmp_path), Matcher("needle"), ExtensionFilter())
    assert sorted((os.path.basename(m.path), m.line_number) for m in results) == [
        ("one.txt", 1), ("two.txt", 1), ("two.txt", 3),
    ]


def test_no_matches(tmp_path):
    _tree(tmp_path, {"a.txt": "hay\n"})
    results = collect(str(tmp_path), Matcher("needle"), ExtensionFilter())
    assert len(results) == 0
    assert list(results) == []


def test_repeat_runs_give_same_matches(tmp_path):
    _tree(tmp_path, {f"d{i % 4}/f{i}.txt": "x needle\nneedle y\n" for i in range(40)})
    matcher = Matcher("needle")
    first = collect(str(tmp_path), matcher, ExtensionFilter(), workers=8)
    second = collect(str(tmp_path), matcher, ExtensionFilter(), workers=3)
    assert len(first) == 80
    assert set(first) == set(second)
    assert first.sorted() == second.sorted()


def test_sorted_orders_by_path_then_line(tmp_path):
    _tree(tmp_path, {"b.txt": "n\nn\n", "a.txt": "n\n"})
    results = collect(str(tmp_path), Matcher("n"), ExtensionFilter())
    assert [(os.path.basename(m.path), m.line_number) for m in results.sorted()] == [
        ("a.txt", 1), ("b.txt", 1), ("b.txt", 2),
    ]


def test_progress_callback(tmp_path):
    _tree(tmp_path, {f"f{i}.txt": "n\n" for i in range(5)})
    calls = []
    collect(str(tmp_path), Matcher("n"), ExtensionFilter(), on_progress=lambda d, t: calls.append((d, t)))
    assert calls[-1] == (5, 5)
    assert len(calls) == 5


def test_max_filesize(tmp_path):
    _tree(tmp_path, {"small.txt": "needle\n", "big.txt": "needle\n" + "x" * 4096})
    results = collect(str(tmp_path), Matcher("needle"), ExtensionFilter(), max_filesize=1024)
    assert [os.path.basename(m.path) for m in results] == ["small.txt"]


def test_walk_skips_hidden(tmp_path):
    _tree(tmp_path, {"shown.txt": "", ".secret.txt": "", ".cache/x.txt": "", "sub/.env": ""})
    assert _names(walk_files(str(tmp_path)), tmp_path) == ["shown.txt"]
    assert _names(walk_files(str(tmp_path), skip_hidden=False), tmp_path) == [
        ".cache/x.txt", ".secret.txt", "shown.txt", "sub/.env",
    ]


def test_walk_honors_gitignore(tmp_path):
    _tree(tmp_path, {
        ".gitignore": "*.log\nbuild/\n",
        "keep.txt": "",
        "error.log": "",
        "build/out.txt": "",
        "src/build/gen.txt": "",
        "src/debug.log": "",
    })
    assert _names(walk_files(str(tmp_path)), tmp_path) == ["keep.txt"]
    assert "error.log" in _names(walk_files(str(tmp_path), respect_ignore=False), tmp_path)


def test_nested_gitignore_is_scoped(tmp_path):
    _tree(tmp_path, {
        "local.txt": "",
        "sub/.gitignore": "local.txt\n",
        "sub/local.txt": "",
        "sub/other.txt": "",
        "sub/deeper/local.txt": "",
    })
    assert _names(walk_files(str(tmp_path)), tmp_path) == ["local.txt", "sub/other.txt"]


def test_nested_gitignore_can_reinclude(tmp_path):
    _tree(tmp_path, {
        ".gitignore": "*.dat\n",
        "a.dat": "",
        "sub/.gitignore": "!wanted.dat\n",
        "sub/wanted.dat": "",
        "sub/other.dat": "",
    })
    assert _names(walk_files(str(tmp_path)), tmp_path) == ["sub/wanted.dat"]


def test_walk_max_depth(tmp_path):
    _tree(tmp_path, {"top.txt": "", "a/mid.txt": "", "a/b/low.txt": ""})
    assert _names(walk_files(str(tmp_path), max_depth=1), tmp_path) == ["top.txt"]
    assert _names(walk_files(str(tmp_path), max_depth=2), tmp_path) == ["a/mid.txt", "top.txt"]


def test_missing_directory(tmp_path):
    with pytest.raises(DirectoryError):
        collect(str(tmp_path / "nope"), Matcher("x"), ExtensionFilter())


def test_file_is_not_a_directory(tmp_path):
    f = tmp_path / "file.txt"
    f.write_text("x")
    with pytest.raises(DirectoryError) as exc:
        collect(str(f), Matcher("x"), ExtensionFilter())
    assert "not a directory" in str(exc.value)


def test_invalid_regex_fails_before_walking(tmp_path):
    options = SearchOptions(pattern="([", regex=True, directory=str(tmp_path / "nope"))
    with pytest.raises(PatternError):
        search(options)


def test_search_with_options(tmp_path):
    _tree(tmp_path, {"a.py": "Import os\n", "b.txt": "import os\n"})
    options = SearchOptions(pattern="import", directory=str(tmp_path), ignore_case=True,
                            extensions=ExtensionFilter.parse("py"), workers=2)
    results = search(options)
    assert [(os.path.basename(m.path), m.line) for m in results] == [("a.py", "Import os")]


def test_anchored_gitignore_does_not_cross_directories(tmp_path):
    _tree(tmp_path, {".gitignore": "docs/*.md\n", "docs/a.md": "", "docs/sub/b.md": ""})
    assert _names(walk_files(str(tmp_path)), tmp_path) == ["docs/sub/b.md"]

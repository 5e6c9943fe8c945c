"""
Scout: a fast, parallel command-line search tool for folders and files.

Walks a directory tree (skipping hidden entries and anything excluded by
.gitignore / .ignore files), scans every candidate file on a thread pool and
prints each matching line with the matched text highlighted.

Run as `scout -p PATTERN [-d DIR]` once installed, or `python scout.py ...`.
"""

import os
import sys
import re
import fnmatch
import json
import stat
import logging
import argparse
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, NamedTuple

__all__ = [
    "main", "__version__",
    "ScoutError", "PatternError", "DirectoryError", "FileReadError",
    "MatchSpan", "LineMatch", "ResultSet", "ExtensionFilter", "SearchOptions",
    "Matcher", "scan_file", "walk_files", "check_directory", "collect", "search",
    "report", "load_settings", "save_settings",
]
__version__ = "0.1.0"

WILDCARD = "*"
IGNORE_FILES = (".gitignore", ".ignore")
BINARY_SNIFF_BYTES = 2048

logger = logging.getLogger("scout")
logger.addHandler(logging.NullHandler())


# ---------- Errors ----------
class ScoutError(Exception):
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{self.kind}: {self.message}"


class PatternError(ScoutError):
    kind = "pattern error"


class DirectoryError(ScoutError):
    kind = "directory error"


class FileReadError(ScoutError):
    kind = "read error"


# ---------- Utilities ----------
def fmt_size(num_bytes: int) -> str:
    try:
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if num_bytes < 1024.0:
                return f"{num_bytes:.1f} {unit}" if unit != 'B' else f"{num_bytes} {unit}"
            num_bytes /= 1024.0
        return f"{num_bytes:.1f} PB"
    except Exception:
        return "N/A"


_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}


def parse_size(text) -> int:
    """Parse `4096`, `512K`, `10M` or `1G` into a byte count."""
    if isinstance(text, int):
        value = text
    else:
        raw = str(text).strip().upper().removesuffix("B")
        unit = raw[-1:] if raw[-1:] in ("K", "M", "G") else ""
        number = raw[:-1] if unit else raw
        try:
            value = int(float(number) * _SIZE_UNITS[unit])
        except (ValueError, OverflowError):
            raise argparse.ArgumentTypeError(f"invalid size: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"size must be positive: {text!r}")
    return value


def is_binary_chunk(chunk: bytes) -> bool:
    return b"\x00" in chunk[:BINARY_SNIFF_BYTES]


def is_hidden_path(path: str) -> bool:
    name = os.path.basename(path.rstrip("\\/"))
    if name.startswith("."):
        return True
    if sys.platform.startswith("win"):
        try:
            attrs = os.stat(path).st_file_attributes
            return bool(attrs & (stat.FILE_ATTRIBUTE_HIDDEN | stat.FILE_ATTRIBUTE_SYSTEM))
        except OSError:
            return False
    return False


# ---------- Ignore rules ----------
class IgnoreRule(NamedTuple):
    base: str        # posix dir of the ignore file, relative to the search root ("" = root)
    pattern: str
    negated: bool
    dir_only: bool
    anchored: bool


def load_ignore_rules(directory: str, base: str = "") -> list[IgnoreRule]:
    """
    Small subset of .gitignore, read from `.gitignore` then `.ignore` in `directory`:
    - blank lines and # comments ignored
    - !negation supported
    - patterns with / are matched against the path relative to the ignore file
    - patterns without / are matched against the basename at any depth
    - patterns ending with / only apply to directories
    """
    rules: list[IgnoreRule] = []
    for fname in IGNORE_FILES:
        path = os.path.join(directory, fname)
        try:
            with open(path, "r", encoding="utf-8", errors="ignore") as f:
                lines = f.read().splitlines()
        except OSError:
            continue
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            negated = line.startswith("!")
            if negated:
                line = line[1:].strip()
                if not line:
                    continue
            dir_only = line.endswith("/")
            pat = line.rstrip("/")
            anchored = "/" in pat
            pat = pat.lstrip("/")
            if not pat:
                continue
            rules.append(IgnoreRule(base, pat, negated, dir_only, anchored))
    return rules


def _rule_matches(rule: IgnoreRule, rel_posix_path: str) -> bool:
    if rule.base:
        prefix = rule.base + "/"
        if not rel_posix_path.startswith(prefix):
            return False
        rel_posix_path = rel_posix_path[len(prefix):]
    if not rule.anchored:
        return fnmatch.fnmatchcase(rel_posix_path.rsplit("/", 1)[-1], rule.pattern)
    return _match_segments(rule.pattern.split("/"), rel_posix_path.split("/"))


def _match_segments(pattern: list[str], parts: list[str]) -> bool:
    # `*` stays inside one path segment; a `**` segment spans zero or more segments
    if not pattern:
        return not parts
    head = pattern[0]
    if head == "**":
        return any(_match_segments(pattern[1:], parts[i:]) for i in range(len(parts) + 1))
    if not parts or not fnmatch.fnmatchcase(parts[0], head):
        return False
    return _match_segments(pattern[1:], parts[1:])


def is_ignored(rel_posix_path: str, is_dir: bool, rules: list[IgnoreRule]) -> bool:
    if not rules:
        return False
    ignored = False
    for rule in rules:
        if rule.dir_only and not is_dir:
            continue
        if _rule_matches(rule, rel_posix_path):
            ignored = not rule.negated
    return ignored


# ---------- Tree walking ----------
def check_directory(root: str) -> None:
    if not os.path.exists(root):
        raise DirectoryError(f"{root}: no such directory")
    if not os.path.isdir(root):
        raise DirectoryError(f"{root}: not a directory")
    try:
        with os.scandir(root):
            pass
    except OSError as e:
        raise DirectoryError(f"{root}: {e.strerror or e}") from e


def walk_files(root: str, *, skip_hidden: bool = True, respect_ignore: bool = True,
               max_depth: int | None = None) -> list[str]:
    """Return every regular file under `root` that survives the hidden/ignore rules."""
    rules_by_dir: dict[str, list[IgnoreRule]] = {}
    found: list[str] = []

    def on_error(exc: OSError):
        logger.warning("Cannot list %s: %s", exc.filename, exc.strerror or exc)

    for cur, dirs, files in os.walk(root, onerror=on_error):
        rel_dir = os.path.relpath(cur, root).replace(os.sep, "/")
        if rel_dir == ".":
            rel_dir = ""
        depth = rel_dir.count("/") + 1 if rel_dir else 0

        rules: list[IgnoreRule] = []
        if respect_ignore:
            parent = rel_dir.rsplit("/", 1)[0] if "/" in rel_dir else ""
            inherited = rules_by_dir.get(parent, []) if rel_dir else []
            rules = inherited + load_ignore_rules(cur, rel_dir)
            rules_by_dir[rel_dir] = rules

        if max_depth is not None and depth + 1 >= max_depth:
            dirs[:] = []

        if skip_hidden:
            dirs[:] = [d for d in dirs if not is_hidden_path(os.path.join(cur, d))]
            files = [f for f in files if not is_hidden_path(os.path.join(cur, f))]

        if rules:
            prefix = rel_dir + "/" if rel_dir else ""
            dirs[:] = [d for d in dirs if not is_ignored(prefix + d, True, rules)]
            files = [f for f in files if not is_ignored(prefix + f, False, rules)]

        dirs.sort()
        for fname in sorted(files):
            fpath = os.path.join(cur, fname)
            # skips fifos, sockets and dangling links
            if os.path.isfile(fpath):
                found.append(fpath)
    return found


# ---------- Matching ----------
class MatchSpan(NamedTuple):
    # code point indices into the decoded line (str slicing), not UTF-8 byte offsets
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class LineMatch:
    path: str
    line_number: int                   # 1-based
    line: str                          # original text, no line terminator
    spans: tuple[MatchSpan, ...]


class Matcher:
    def __init__(self, pattern: str, *, regex: bool = False, ignore_case: bool = False):
        if not pattern:
            raise PatternError("pattern must not be empty")
        self.pattern = pattern
        self.ignore_case = ignore_case
        self.regex: re.Pattern | None = None
        if regex:
            flags = re.IGNORECASE if ignore_case else 0
            try:
                self.regex = re.compile(pattern, flags)
            except re.error as e:
                raise PatternError(f"invalid regex {pattern!r}: {e}") from e
        self._needle = pattern.lower() if ignore_case else pattern

    def find_matches(self, line: str) -> list[MatchSpan]:
        if self.regex is not None:
            return [MatchSpan(m.start(), m.end()) for m in self.regex.finditer(line)
                    if m.end() > m.start()]

        hay = line.lower() if self.ignore_case else line
        needle = self._needle
        spans: list[MatchSpan] = []
        pos = hay.find(needle)
        while pos != -1:
            spans.append(MatchSpan(pos, pos + len(needle)))
            # resume one past the previous start so overlapping hits are kept
            pos = hay.find(needle, pos + 1)
        return spans


# ---------- File scanning ----------
def read_text(path: str) -> str:
    try:
        with open(path, "rb") as fb:
            data = fb.read()
    except OSError as e:
        raise FileReadError(f"{path}: {e.strerror or e}") from e
    if is_binary_chunk(data):
        raise FileReadError(f"{path}: binary content")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FileReadError(f"{path}: not valid UTF-8 ({e.reason} at byte {e.start})") from e


def split_lines(text: str) -> list[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [ln[:-1] if ln.endswith("\r") else ln for ln in lines]


def scan_file(path: str, matcher: Matcher) -> list[LineMatch]:
    results: list[LineMatch] = []
    for i, line in enumerate(split_lines(read_text(path)), 1):
        spans = matcher.find_matches(line)
        if spans:
            results.append(LineMatch(path, i, line, tuple(spans)))
    return results


# ---------- Collection ----------
@dataclass(frozen=True)
class ExtensionFilter:
    extensions: frozenset[str] | None = None   # None means "any file"

    @classmethod
    def parse(cls, text: str | None) -> "ExtensionFilter":
        parts = [p.strip().lstrip(".") for p in (text or WILDCARD).split(",")]
        parts = [p for p in parts if p]
        if not parts or WILDCARD in parts:
            return cls(None)
        return cls(frozenset(parts))

    @property
    def is_wildcard(self) -> bool:
        return self.extensions is None

    def should_include(self, path: str) -> bool:
        if self.extensions is None:
            return True
        stem, dot, ext = os.path.basename(path).rpartition(".")
        if not dot or not stem:
            return False
        return ext in self.extensions


class ResultSet:
    """Append-only collection of LineMatch shared by the scan workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: list[LineMatch] = []

    def extend(self, matches: Iterable[LineMatch]) -> None:
        with self._lock:
            self._items.extend(matches)

    def sorted(self) -> list[LineMatch]:
        return sorted(self._items, key=lambda m: (m.path, m.line_number))

    def __iter__(self):
        return iter(list(self._items))

    def __len__(self):
        return len(self._items)


def default_workers() -> int:
    return os.cpu_count() or 1


def _within_size(path: str, max_bytes: int) -> bool:
    try:
        size = os.path.getsize(path)
    except OSError:
        return False
    if size > max_bytes:
        logger.info("Skipping %s: %s exceeds limit of %s", path, fmt_size(size), fmt_size(max_bytes))
        return False
    return True


def collect(root: str, matcher: Matcher, extension_filter: ExtensionFilter, *,
            workers: int | None = None, skip_hidden: bool = True, respect_ignore: bool = True,
            max_depth: int | None = None, max_filesize: int | None = None,
            on_progress: Callable[[int, int], None] | None = None) -> ResultSet:
    check_directory(root)
    files = walk_files(root, skip_hidden=skip_hidden, respect_ignore=respect_ignore, max_depth=max_depth)
    candidates = [p for p in files if extension_filter.should_include(p)]
    if max_filesize:
        candidates = [p for p in candidates if _within_size(p, max_filesize)]
    logger.info("Searching %d of %d files under %s", len(candidates), len(files), root)

    results = ResultSet()

    def scan_task(path: str) -> None:
        try:
            found = scan_file(path, matcher)
        except FileReadError as e:
            logger.info("Skipped %s", e.message)
            return
        if found:
            results.extend(found)

    total = len(candidates)
    with ThreadPoolExecutor(max_workers=workers or default_workers(),
                            thread_name_prefix="scout-worker") as executor:
        futures = [executor.submit(scan_task, p) for p in candidates]
        for done, future in enumerate(as_completed(futures), 1):
            future.result()
            if on_progress is not None:
                on_progress(done, total)

    logger.info("Found %d matching lines", len(results))
    return results


@dataclass(frozen=True)
class SearchOptions:
    pattern: str
    directory: str = "."
    extensions: ExtensionFilter = ExtensionFilter()
    regex: bool = False
    ignore_case: bool = False
    hidden: bool = False
    no_ignore: bool = False
    max_depth: int | None = None
    max_filesize: int | None = None
    workers: int | None = None


def search(options: SearchOptions, on_progress=None) -> ResultSet:
    matcher = Matcher(options.pattern, regex=options.regex, ignore_case=options.ignore_case)
    return collect(
        options.directory, matcher, options.extensions,
        workers=options.workers,
        skip_hidden=not options.hidden,
        respect_ignore=not options.no_ignore,
        max_depth=options.max_depth,
        max_filesize=options.max_filesize,
        on_progress=on_progress,
    )


# ---------- Reporting ----------
RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
BLUE = "\x1b[34m"
RESET = "\x1b[0m"


def _paint(text: str, code: str, color: bool) -> str:
    return f"{code}{text}{RESET}" if color else text


def merge_spans(spans: Iterable[MatchSpan]) -> list[MatchSpan]:
    merged: list[MatchSpan] = []
    for start, end in sorted(spans):
        if merged and start <= merged[-1].end:
            if end > merged[-1].end:
                merged[-1] = MatchSpan(merged[-1].start, end)
            continue
        merged.append(MatchSpan(start, end))
    return merged


def highlight(line: str, spans: Iterable[MatchSpan], *, color: bool) -> str:
    opening, closing = (RED, RESET) if color else ("[", "]")
    out = []
    pos = 0
    for start, end in merge_spans(spans):
        out.append(line[pos:start])
        out.append(f"{opening}{line[start:end]}{closing}")
        pos = end
    out.append(line[pos:])
    return "".join(out)


def report(results, stream=None, *, color: bool = False) -> None:
    stream = stream or sys.stdout
    items = list(results)
    if not items:
        print(_paint("No matches found.", YELLOW, color), file=stream)
        return

    print(f"\n{_paint('✓', GREEN, color)} {_paint(str(len(items)), GREEN, color)} matches found:\n", file=stream)
    for m in items:
        print(f"{_paint(m.path, BLUE, color)}:{_paint(str(m.line_number), YELLOW, color)}:", file=stream)
        print(f"    {highlight(m.line, m.spans, color=color)}", file=stream)


def use_color(mode: str, stream) -> bool:
    if mode == "always":
        return True
    if mode == "never":
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty()) and "NO_COLOR" not in os.environ


# ---------- Settings ----------
def settings_path() -> str:
    override = os.getenv("SCOUT_SETTINGS")
    if override:
        return override
    base = os.getenv("APPDATA") or os.path.expanduser("~")
    return os.path.join(base, "Scout", "settings.json")


def load_settings(path: str | None = None) -> dict:
    path = path or settings_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError) as e:
        if not isinstance(e, FileNotFoundError):
            logger.warning("Ignoring settings file %s: %s", path, e)
        return {}


def save_settings(settings: dict, path: str | None = None) -> None:
    path = path or settings_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2, ensure_ascii=False)


def configure_logging(log_file: str) -> logging.Handler:
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return handler


# ---------- Command line ----------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scout",
        description="A fast, parallel file search tool",
    )
    parser.add_argument("-d", "--directory", default=None, help="Directory to search in (default: .)")
    parser.add_argument("-p", "--pattern", required=True, help="Pattern to search for")
    parser.add_argument("-e", "--extensions", default=None,
                        help="Comma-separated file extensions to search (default: *)")
    parser.add_argument("-r", "--regex", action="store_true", default=None, help="Use regex for pattern matching")
    parser.add_argument("-i", "--ignore-case", action="store_true", default=None, help="Ignore case when searching")
    parser.add_argument("--hidden", action="store_true", default=None, help="Search hidden files and folders")
    parser.add_argument("--no-ignore", action="store_true", default=None,
                        help="Do not honor .gitignore / .ignore files")
    parser.add_argument("--max-depth", type=int, default=None, help="Limit directory recursion depth")
    parser.add_argument("--max-filesize", type=parse_size, default=None,
                        help="Skip files larger than this (e.g. 512K, 10M)")
    parser.add_argument("-j", "--workers", type=int, default=None,
                        help="Number of scan threads (default: CPU count)")
    parser.add_argument("--color", choices=("auto", "always", "never"), default=None,
                        help="When to colorize output (default: auto)")
    parser.add_argument("--no-sort", dest="sort", action="store_false", default=None,
                        help="Print results in completion order")
    parser.add_argument("--log-file", default=None, help="Append a run log to this file")
    parser.add_argument("--save-defaults", action="store_true",
                        help="Store these options as defaults in the settings file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


_SETTING_KEYS = ("directory", "extensions", "regex", "ignore_case", "hidden", "no_ignore",
                 "max_depth", "max_filesize", "workers", "color", "sort")
_BUILTIN_DEFAULTS = {
    "directory": ".", "extensions": WILDCARD, "regex": False, "ignore_case": False,
    "hidden": False, "no_ignore": False, "max_depth": None, "max_filesize": None,
    "workers": None, "color": "auto", "sort": True,
}


def _setting_value(key: str, value):
    """Check one value from the settings file; raises ValueError when it is unusable."""
    default = _BUILTIN_DEFAULTS[key]
    if key == "extensions" and isinstance(value, list) and all(isinstance(v, str) for v in value):
        return ",".join(value)
    if key == "color":
        if value in ("auto", "always", "never"):
            return value
        raise ValueError("expected auto, always or never")
    if key in ("max_depth", "workers"):
        if value is None or (type(value) is int and value >= 1):
            return value
        raise ValueError("expected a whole number of at least 1")
    if key == "max_filesize":
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValueError("expected a size such as 512K or 10M")
        try:
            return parse_size(value)
        except argparse.ArgumentTypeError as e:
            raise ValueError(str(e)) from None
    if type(value) is type(default):
        return value
    raise ValueError(f"expected {type(default).__name__}")


def resolve_settings(args: argparse.Namespace, settings: dict) -> dict:
    defaults = settings.get("defaults", {})
    if not isinstance(defaults, dict):
        defaults = {}
    resolved = {}
    for key in _SETTING_KEYS:
        value = getattr(args, key, None)
        if value is None and key in defaults:
            try:
                value = _setting_value(key, defaults[key])
            except ValueError as e:
                logger.warning("Ignoring settings value %s=%r: %s", key, defaults[key], e)
                print(f"scout: warning: ignoring settings value {key}={defaults[key]!r}: {e}",
                      file=sys.stderr)
                value = None
        if value is None:
            value = _BUILTIN_DEFAULTS[key]
        resolved[key] = value
    return resolved


def _positive(name: str, value):
    if value is not None and int(value) < 1:
        raise argparse.ArgumentTypeError(f"{name} must be at least 1")
    return None if value is None else int(value)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = configure_logging(args.log_file) if args.log_file else None
    try:
        settings = load_settings()
        opts = resolve_settings(args, settings)
        try:
            options = SearchOptions(
                pattern=args.pattern,
                directory=opts["directory"],
                extensions=ExtensionFilter.parse(opts["extensions"]),
                regex=bool(opts["regex"]),
                ignore_case=bool(opts["ignore_case"]),
                hidden=bool(opts["hidden"]),
                no_ignore=bool(opts["no_ignore"]),
                max_depth=_positive("--max-depth", opts["max_depth"]),
                max_filesize=parse_size(opts["max_filesize"]) if opts["max_filesize"] else None,
                workers=_positive("--workers", opts["workers"]),
            )
        except (argparse.ArgumentTypeError, TypeError, ValueError) as e:
            parser.error(str(e))

        if args.save_defaults:
            settings["defaults"] = dict(opts)
            try:
                save_settings(settings)
            except OSError as e:
                logger.error("Failed to save settings: %s", e)
                print(f"scout: warning: could not save settings: {e}", file=sys.stderr)

        status = sys.stderr if sys.stderr.isatty() else None
        scanned = {"total": 0}

        def on_progress(done: int, total: int):
            scanned["total"] = total
            if status is not None:
                status.write(f"\rSearching {done}/{total} files...")
                status.flush()

        logger.info("Search started: pattern=%r directory=%s", options.pattern, options.directory)
        try:
            results = search(options, on_progress=on_progress)
        except ScoutError as e:
            logger.error("%s", e)
            print(f"scout: {e}", file=sys.stderr)
            return 1
        if status is not None:
            status.write(f"\r\x1b[KSearched {scanned['total']} files\n")
            status.flush()

        items = results.sorted() if opts["sort"] else list(results)
        report(items, sys.stdout, color=use_color(opts["color"], sys.stdout))
        return 0
    finally:
        if handler is not None:
            logger.removeHandler(handler)
            handler.close()


if __name__ == "__main__":
    sys.exit(main())

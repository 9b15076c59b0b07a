import os
from pathlib import Path
from av1d.infrastructure.file_scanner import LibraryScanner
from av1d.infrastructure.skip_marker import SkipMarkerStore


def _touch(path: Path, size: int = 10) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    return path


def _scan(root: Path):
    scanner = LibraryScanner(SkipMarkerStore())
    return [c.path for c in scanner.scan(root)]


def test_scanner_extension_allow_list(tmp_path):
    for name in ("a.mkv", "b.MP4", "c.avi", "d.mov", "e.m4v", "f.ts", "g.m2ts", "h.txt", "i.webm", "j.srt"):
        _touch(tmp_path / name)

    names = [p.name for p in _scan(tmp_path)]
    assert names == ["a.mkv", "b.MP4", "c.avi", "d.mov", "e.m4v", "f.ts", "g.m2ts"]


def test_scanner_prunes_hidden_directories(tmp_path):
    _touch(tmp_path / "visible" / "movie.mkv")
    _touch(tmp_path / ".hidden" / "secret.mkv")
    _touch(tmp_path / "visible" / ".trash" / "deep" / "old.mkv")

    assert _scan(tmp_path) == [tmp_path / "visible" / "movie.mkv"]


def test_scanner_visits_hidden_root(tmp_path):
    root = tmp_path / ".library"
    _touch(root / "movie.mkv")
    _touch(root / ".cache" / "skip.mkv")

    assert _scan(root) == [root / "movie.mkv"]


def test_scanner_excludes_skip_marked_files(tmp_path):
    keep = _touch(tmp_path / "keep.mkv")
    skipped = _touch(tmp_path / "skipped.mkv")
    SkipMarkerStore().mark(skipped, "already AV1")

    assert _scan(tmp_path) == [keep]


def test_scanner_deterministic_order(tmp_path):
    for d in ("c", "a", "b"):
        for f in ("2.mkv", "1.mkv"):
            _touch(tmp_path / d / f)

    first = _scan(tmp_path)
    assert first == _scan(tmp_path)
    assert [str(p.relative_to(tmp_path)) for p in first] == [
        os.path.join(d, f) for d in ("a", "b", "c") for f in ("1.mkv", "2.mkv")
    ]


def test_scanner_candidate_fields(tmp_path):
    path = _touch(tmp_path / "movie.mkv", size=1234)
    candidate = next(LibraryScanner(SkipMarkerStore()).scan(tmp_path))

    assert candidate.path == path
    assert candidate.size_bytes == 1234
    assert candidate.modified_time == path.stat().st_mtime


def test_scanner_missing_root(tmp_path):
    assert _scan(tmp_path / "missing") == []


def test_scan_all_chains_roots(tmp_path):
    a = _touch(tmp_path / "one" / "a.mkv")
    b = _touch(tmp_path / "two" / "b.mkv")
    scanner = LibraryScanner(SkipMarkerStore())

    assert [c.path for c in scanner.scan_all([tmp_path / "one", tmp_path / "two"])] == [a, b]


def test_scanner_custom_extensions(tmp_path):
    _touch(tmp_path / "a.webm")
    _touch(tmp_path / "b.mkv")
    scanner = LibraryScanner(SkipMarkerStore(), extensions=["webm"])

    assert [c.path.name for c in scanner.scan(tmp_path)] == ["a.webm"]

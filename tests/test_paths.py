from __future__ import annotations

import re
from pathlib import Path

import pytest

from photocloud.core.errors import PathTraversalError, StorageFailure, ValidationFailure
from photocloud.core.storage import RECORDINGS_SUBDIR, PathResolver, split_extension

UNIQUE_NAME = re.compile(r"^(?P<stem>[A-Za-z0-9._-]+)-\d{13}-[0-9a-f]{9}(?:\.(?P<ext>[a-z0-9]+))?$")


@pytest.fixture()
def resolver(tmp_path: Path) -> PathResolver:
    return PathResolver(tmp_path / "root")


def test_root_and_recordings_directory_created(resolver: PathResolver):
    assert resolver.root.is_dir()
    assert (resolver.root / RECORDINGS_SUBDIR).is_dir()
    assert resolver.recordings_dir == resolver.root / RECORDINGS_SUBDIR


def test_to_absolute_resolves_under_root(resolver: PathResolver):
    assert resolver.to_absolute("a/b.jpg") == resolver.root / "a" / "b.jpg"
    assert resolver.to_absolute(None) is None


@pytest.mark.parametrize(
    "relative",
    [
        "../escape.jpg",
        "a/../../escape.jpg",
        "/etc/passwd",
        "..\\escape.jpg",
        "bad\x00name.jpg",
        "",
        ".",
    ],
)
def test_to_absolute_rejects_traversal(resolver: PathResolver, relative: str):
    with pytest.raises(PathTraversalError):
        resolver.to_absolute(relative)


def test_traversal_is_a_validation_failure(resolver: PathResolver):
    with pytest.raises(ValidationFailure):
        resolver.to_absolute("../x")


def test_to_absolute_rejects_symlink_escape(resolver: PathResolver, tmp_path: Path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (resolver.root / "link").symlink_to(outside, target_is_directory=True)
    with pytest.raises(PathTraversalError):
        resolver.to_absolute("link/secret.jpg")


def test_to_relative_round_trip_and_rejection(resolver: PathResolver, tmp_path: Path):
    inside = resolver.root / "recordings" / "clip.webm"
    assert resolver.to_relative(inside) == "recordings/clip.webm"
    assert resolver.to_relative(None) is None
    with pytest.raises(PathTraversalError):
        resolver.to_relative(tmp_path / "elsewhere.jpg")
    with pytest.raises(PathTraversalError):
        resolver.to_relative(resolver.root)


def test_generate_unique_name_sanitises(resolver: PathResolver):
    name = resolver.generate_unique_name("My Holiday (1) ü.JPG")
    match = UNIQUE_NAME.match(name)
    assert match, name
    assert match.group("stem") == "My_Holiday_1"
    assert match.group("ext") == "jpg"


def test_generate_unique_name_handles_missing_parts(resolver: PathResolver):
    assert UNIQUE_NAME.match(resolver.generate_unique_name(None)).group("stem") == "file"
    assert UNIQUE_NAME.match(resolver.generate_unique_name("../../../")).group("stem") == "file"
    no_ext = resolver.generate_unique_name("README")
    assert UNIQUE_NAME.match(no_ext).group("ext") is None
    assert resolver.generate_unique_name("a.jpg") != resolver.generate_unique_name("a.jpg")


def test_generate_unique_name_strips_directories(resolver: PathResolver):
    name = resolver.generate_unique_name("../../etc/passwd.png")
    assert "/" not in name
    assert name.startswith("passwd-")


def test_write_new_never_overwrites(resolver: PathResolver, monkeypatch: pytest.MonkeyPatch):
    names = iter(["fixed.jpg", "fixed.jpg", "other.jpg"])
    monkeypatch.setattr(resolver, "generate_unique_name", lambda original: next(names))

    first = resolver.write_new(b"first", "x.jpg")
    second = resolver.write_new(b"second", "x.jpg")

    assert first.name == "fixed.jpg"
    assert second.name == "other.jpg"
    assert first.read_bytes() == b"first"
    assert second.read_bytes() == b"second"


def test_write_new_gives_up_after_repeated_collisions(resolver: PathResolver, monkeypatch: pytest.MonkeyPatch):
    (resolver.root / "taken.jpg").write_bytes(b"existing")
    monkeypatch.setattr(resolver, "generate_unique_name", lambda original: "taken.jpg")
    with pytest.raises(StorageFailure):
        resolver.write_new(b"new", "x.jpg")
    assert (resolver.root / "taken.jpg").read_bytes() == b"existing"


def test_write_new_into_subdirectory(resolver: PathResolver):
    path = resolver.write_new(b"audio", "clip.webm", subdir=RECORDINGS_SUBDIR)
    assert path.parent == resolver.recordings_dir
    assert resolver.to_relative(path).startswith("recordings/")


def test_derivative_path_uses_prefix(resolver: PathResolver):
    stored = resolver.root / "photo-1-abc.heic"
    assert resolver.derivative_path(stored, "thumb_", ".jpg").name == "thumb_photo-1-abc.jpg"
    assert resolver.derivative_path(stored, "large_").name == "large_photo-1-abc.heic"


def test_delete_quietly_ignores_missing(resolver: PathResolver):
    existing = resolver.write_new(b"x", "x.jpg")
    resolver.delete_quietly(existing, resolver.root / "missing.jpg", None)
    assert not existing.exists()


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("photo.jpg", ("photo", "jpg")),
        ("archive.tar.gz", ("archive.tar", "gz")),
        ("README", ("README", "")),
        (".hidden", (".hidden", "")),
    ],
)
def test_split_extension(filename: str, expected: tuple[str, str]):
    assert split_extension(filename) == expected

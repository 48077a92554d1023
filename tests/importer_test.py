import shutil

import pytest

from compat import make_layout, touch, write_info, write_info_json

import wyne.importer as importer_mod
from wyne.catalog import RescanSignal
from wyne.errors import ImportCopyFailed, ImportNoManifest, LibraryImportError
from wyne.importer import destination_name, import_bundle, remove_bundle
from wyne.manifest import parse


def _tree(root):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def test_import_without_manifest_copies_nothing(tmp_path):
    layout = make_layout(tmp_path)
    src = tmp_path / "loose"
    touch(src / "game.exe")
    signal = RescanSignal()

    with pytest.raises(ImportNoManifest):
        import_bundle(src, layout, rescan=signal)

    assert list(layout.games.iterdir()) == []
    assert not signal.pending()


def test_import_missing_source(tmp_path):
    with pytest.raises(ImportNoManifest):
        import_bundle(tmp_path / "ghost", make_layout(tmp_path))


def test_import_copies_nested_tree_byte_for_byte(tmp_path):
    layout = make_layout(tmp_path)
    src = write_info(tmp_path / "download" / "rally", "Name: Rally Cross\nProfiles: {Go: ./rally}\n")
    touch(src / "rally", b"\x7fELF\x00\x01binary")
    touch(src / "data" / "tracks" / "snow.trk", b"track-data" * 1000)
    touch(src / "data" / "cars" / "a.car", b"\x00\xff" * 64)
    signal = RescanSignal()

    record = import_bundle(src, layout, rescan=signal)

    dest = layout.games / "Rally Cross"
    assert record.is_valid
    assert record.install_path == dest
    assert record.name == "Rally Cross"
    assert _tree(dest) == _tree(src)
    for rel in _tree(src):
        assert (dest / rel).read_bytes() == (src / rel).read_bytes()
    assert signal.consume() is True


def test_import_overwrites_existing_files(tmp_path):
    layout = make_layout(tmp_path)
    src = write_info_json(tmp_path / "src", {"name": "Pong", "exe": "pong.exe"})
    touch(src / "pong.exe", b"new")
    dest = layout.games / "Pong"
    touch(dest / "pong.exe", b"old")
    touch(dest / "saves" / "slot1", b"keep")

    import_bundle(src, layout)

    assert (dest / "pong.exe").read_bytes() == b"new"
    assert (dest / "saves" / "slot1").read_bytes() == b"keep"


def test_import_partial_failure_reports_and_keeps_copied_files(tmp_path, monkeypatch):
    layout = make_layout(tmp_path)
    src = write_info(tmp_path / "src", "Name: Broken\n")
    touch(src / "good.bin", b"ok")
    touch(src / "sub" / "bad.bin", b"nope")
    touch(src / "sub" / "fine.bin", b"ok")

    real_copy = shutil.copyfile

    def flaky_copy(a, b, *args, **kw):
        if str(a).endswith("bad.bin"):
            raise PermissionError(13, "Permission denied", str(a))
        return real_copy(a, b, *args, **kw)

    monkeypatch.setattr(importer_mod.shutil, "copyfile", flaky_copy)
    signal = RescanSignal()

    with pytest.raises(ImportCopyFailed) as exc:
        import_bundle(src, layout, rescan=signal)

    dest = layout.games / "Broken"
    assert exc.value.failed and exc.value.failed[0].startswith("sub/bad.bin")
    assert "Permission denied" in str(exc.value)
    assert exc.value.destination == str(dest)
    assert (dest / "good.bin").read_bytes() == b"ok"
    assert (dest / "sub" / "fine.bin").read_bytes() == b"ok"
    assert not (dest / "sub" / "bad.bin").exists()
    assert parse(dest, layout).is_valid
    assert signal.pending()


def test_import_rejects_unusable_manifest(tmp_path):
    layout = make_layout(tmp_path)
    src = write_info_json(tmp_path / "src", "[1, 2")
    with pytest.raises(ImportNoManifest):
        import_bundle(src, layout)
    assert list(layout.games.iterdir()) == []


def test_destination_name_is_filesystem_safe(tmp_path):
    bundle = write_info(tmp_path / "b", "Name: Doom: Eternal / Deluxe\n")
    assert destination_name(parse(bundle)) == "Doom_ Eternal _ Deluxe"


def test_remove_bundle(tmp_path):
    layout = make_layout(tmp_path)
    src = write_info(tmp_path / "src", "Name: Gone\n")
    record = import_bundle(src, layout)
    signal = RescanSignal()

    remove_bundle(record, layout, rescan=signal)

    assert not record.install_path.exists()
    assert signal.pending()


def test_remove_bundle_refuses_outside_storage(tmp_path):
    layout = make_layout(tmp_path)
    outside = write_info(tmp_path / "elsewhere", "Name: Mine\n")
    with pytest.raises(LibraryImportError):
        remove_bundle(parse(outside), layout)
    assert outside.exists()

    with pytest.raises(LibraryImportError):
        remove_bundle(parse(layout.games), layout)
    assert layout.games.exists()

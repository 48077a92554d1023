from dataclasses import replace
from pathlib import Path

from compat import make_layout, png, touch, write_info, write_info_json

from wyne.errors import ManifestMalformed, ManifestMissing
from wyne.manifest import load_manifest, normalize_version, parse, parse_profiles
from wyne.models import ManifestDialect

LINE_INFO = """Name: Space Duel
GameCover: art/cover.png
About: Two ships, one star.
Profiles: {Play: wine duel.exe, Safe Mode:  wine duel.exe --safe --log=c:\\logs }
Version: beta 2
Source: LAN party
Developpers: Orbit Works
WebPage: https://example.org/duel
Rating: 5
"""


def test_line_manifest_fields(tmp_path):
    bundle = write_info(tmp_path / "duel", LINE_INFO)
    touch(bundle / "art" / "cover.png", png())
    result = load_manifest(bundle)
    r = result.record

    assert result.ok and result.problem is None
    assert r.dialect is ManifestDialect.LINE
    assert r.id == "duel"
    assert r.name == "Space Duel"
    assert r.install_path == bundle.absolute()
    assert r.cover_image_path == str(bundle.absolute() / "art/cover.png")
    assert r.description == "Two ships, one star."
    assert r.version == "BETA_2"
    assert r.source_label == "LAN party"
    assert r.publisher == "Orbit Works"
    assert r.web_page == "https://example.org/duel"


def test_profiles_keep_order_trim_and_split_on_first_colon(tmp_path):
    bundle = write_info(tmp_path / "duel", LINE_INFO)
    profiles = parse(bundle).launch_profiles
    assert list(profiles.items()) == [
        ("Play", "wine duel.exe"),
        ("Safe Mode", "wine duel.exe --safe --log=c:\\logs"),
    ]


def test_profiles_simple_pairs():
    assert dict(parse_profiles("{A: cmd1, B: cmd2}")) == {"A": "cmd1", "B": "cmd2"}
    assert list(parse_profiles("{ B : x , A : y }")) == ["B", "A"]
    assert dict(parse_profiles("A: cmd1")) == {}
    assert dict(parse_profiles("{}")) == {}


def test_profiles_comma_in_command_is_a_known_boundary():
    # the pair separator is a bare comma, so arguments containing one are cut
    profiles = parse_profiles("{Run: echo a,b, Other: ls}")
    assert dict(profiles) == {"Run": "echo a", "Other": "ls"}


def test_version_normalization():
    assert normalize_version("hello world") == "HELLO_WORLD"
    assert normalize_version("  rc 1\t\tfinal ") == "RC_1_FINAL"


def test_line_parsing_is_idempotent_with_explicit_name(tmp_path):
    bundle = write_info(tmp_path / "duel", LINE_INFO)
    assert parse(bundle) == parse(bundle)


def test_line_placeholder_name_is_generated(tmp_path):
    bundle = write_info(tmp_path / "nameless", "About: nothing\nVersion: 1\n")
    a, b = parse(bundle), parse(bundle)
    assert a.is_valid
    assert a.name.startswith("Game_") and b.name.startswith("Game_")
    assert a.name != b.name
    assert replace(a, name="x") == replace(b, name="x")
    assert a.id == "nameless"


def test_missing_manifest_gives_invalid_record(tmp_path):
    bundle = tmp_path / "empty"
    bundle.mkdir()
    result = load_manifest(bundle)
    assert not result.ok
    assert isinstance(result.problem, ManifestMissing)
    assert result.record.is_valid is False
    assert result.record.name
    assert result.record.id == "empty"


def test_missing_directory_never_raises(tmp_path):
    result = load_manifest(tmp_path / "nope")
    assert isinstance(result.problem, ManifestMissing)
    assert not result.record.is_valid


def test_structured_defaults(tmp_path):
    bundle = write_info_json(tmp_path / "Pong", {"name": "Pong", "exe": "pong.exe"})
    r = parse(bundle)
    assert r.is_valid
    assert r.dialect is ManifestDialect.STRUCTURED
    assert r.version == "1.0"
    assert r.publisher == "Unknown"
    assert r.tags == ()
    assert r.languages == ()
    assert r.id == "Pong"
    assert r.runner == "" and r.runner_command == "" and r.description == ""
    assert r.executable_path() == str(bundle.absolute() / "pong.exe")


def test_structured_full_document(tmp_path):
    layout = make_layout(tmp_path)
    bundle = write_info_json(tmp_path / "src", {
        "id": "chess-01", "name": "Chess", "publisher": "Board Co", "version": "2.3",
        "runner": "$WYNE_SYSBIN/wine", "runcmd": "start", "exe": "bin/chess.exe",
        "description": "Kings and pawns", "cover": "cover.png",
        "languages": ["en", "fr", "en"], "tags": ["strategy", "classic"],
    })
    r = parse(bundle, layout)
    assert r.id == "chess-01"
    assert r.runner == str(layout.sysbin) + "/wine"
    assert r.runner_command == "start"
    assert r.executable_relative_path == "bin/chess.exe"
    assert r.languages == ("en", "fr", "en")
    assert r.tags == ("strategy", "classic")


def test_structured_prefix_placeholder(tmp_path):
    layout = make_layout(tmp_path)
    bundle = write_info_json(tmp_path / "b", {"name": "B", "runner": "$WYNE_PREFIXSystem/Binary/run"})
    r = parse(bundle, layout)
    assert r.runner.startswith(str(layout.prefix))
    assert Path(r.runner) == layout.sysbin / "run"


def test_structured_malformed(tmp_path):
    bad_json = write_info_json(tmp_path / "bad", "{not json")
    result = load_manifest(bad_json)
    assert isinstance(result.problem, ManifestMalformed)
    assert result.record.is_valid is False
    assert result.record.dialect is ManifestDialect.STRUCTURED

    not_object = write_info_json(tmp_path / "list", ["a", "b"])
    assert isinstance(load_manifest(not_object).problem, ManifestMalformed)


def test_line_manifest_tolerates_legacy_encoding(tmp_path):
    bundle = tmp_path / "legacy"
    bundle.mkdir()
    (bundle / "Info").write_bytes("Name: Rallye\nDeveloppers: Société Jeux\n".encode("latin-1"))

    result = load_manifest(bundle)

    assert result.ok
    assert result.record.name == "Rallye"
    assert result.record.publisher == "Soci\ufffdt\ufffd Jeux"


def test_structured_manifest_must_be_utf8(tmp_path):
    bundle = tmp_path / "legacy-json"
    bundle.mkdir()
    (bundle / "Info.json").write_bytes('{"name": "Société"}'.encode("latin-1"))
    assert isinstance(load_manifest(bundle).problem, ManifestMalformed)


def test_structured_wrong_list_type_yields_empty(tmp_path):
    bundle = write_info_json(tmp_path / "x", {"name": "X", "tags": "solo", "languages": None})
    r = parse(bundle)
    assert r.is_valid
    assert r.tags == () and r.languages == ()


def test_structured_manifest_wins_over_line(tmp_path):
    bundle = write_info(tmp_path / "both", "Name: From Lines\n")
    write_info_json(bundle, {"name": "From Json"})
    assert parse(bundle).name == "From Json"


def test_cover_falls_back_to_best_root_image(tmp_path):
    bundle = write_info(tmp_path / "g", "Name: G\n")
    touch(bundle / "wide.png", png(1200, 400))
    touch(bundle / "box.png", png(600, 800))
    assert parse(bundle).cover_image_path == str(bundle.absolute() / "box.png")


def test_no_cover_is_empty(tmp_path):
    bundle = write_info(tmp_path / "g", "Name: G\n")
    assert parse(bundle).cover_image_path == ""

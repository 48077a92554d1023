import os
import time

import pytest

from compat import make_snapshot, png, touch, write_info

from wyne import create_app
from wyne.context import WyneContext


@pytest.fixture()
def client(tmp_path):
    context = WyneContext.create(tmp_path / "data", probe_fn=make_snapshot)
    app = create_app(context)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c, context
    context.shutdown()


def test_index_empty_library(client):
    c, context = client
    data = c.get("/").get_json()
    assert data["games"] == []
    assert data["root"] == str(context.layout.games)
    assert context.layout.settings_file.exists()


def test_import_then_list_and_select(client, tmp_path):
    c, context = client
    src = write_info(tmp_path / "src", "Name: Tetra\nProfiles: {Play: echo tetra, Debug: echo debug 1>&2}\n")
    touch(src / "cover.png", png())

    resp = c.post("/import", json={"path": str(src)})
    assert resp.status_code == 200 and resp.get_json()["ok"]

    games = c.get("/").get_json()["games"]
    assert [g["name"] for g in games] == ["Tetra"]
    assert games[0]["profiles"] == ["Play", "Debug"]

    one = c.get(f"/games/{games[0]['id']}").get_json()
    assert one["install_path"] == str(context.layout.games / "Tetra")

    cover = c.get(f"/cover/{games[0]['id']}")
    assert cover.status_code == 200 and cover.mimetype == "image/png"
    assert c.get("/games/unknown").status_code == 404


def test_import_error_is_reported(client, tmp_path):
    c, _ = client
    (tmp_path / "loose").mkdir()
    resp = c.post("/import", json={"path": str(tmp_path / "loose")})
    assert resp.status_code == 400
    assert "does not contain" in resp.get_json()["error"]
    assert c.post("/import", json={}).status_code == 400


@pytest.mark.skipif(os.name == "nt", reason="POSIX shell semantics")
def test_launch_and_poll_output(client, tmp_path):
    c, context = client
    write_info(context.layout.games / "Echo", "Name: Echo\nProfiles: {Play: echo hello, Err: echo oops 1>&2}\n")
    c.get("/rescan")

    resp = c.post("/launch/Echo", json={"profile": "Err"})
    assert resp.status_code == 200
    sid = resp.get_json()["session"]["id"]

    context.sessions[sid].wait(timeout=30)
    data = c.get(f"/sessions/{sid}").get_json()
    assert data["lines"] == [{"stream": "command", "line": "echo oops 1>&2"}, {"stream": "stderr", "line": "oops"}]
    assert data["session"]["running"] is False
    assert data["next"] == 2

    last = c.get(f"/sessions/{sid}?since=2").get_json()
    assert last["lines"] == [] and last["session"]["returncode"] == 0
    # everything was read from an ended session, so it is gone
    assert sid not in context.sessions and sid not in context.outputs
    assert c.get(f"/sessions/{sid}").status_code == 404


def test_launch_unknown_profile_and_remove(client):
    c, context = client
    write_info(context.layout.games / "Solo", "Name: Solo\n")
    c.get("/rescan")

    resp = c.post("/launch/Solo", json={})
    assert resp.status_code == 400

    cover = c.get("/cover/Solo")
    assert cover.mimetype == "image/svg+xml"
    assert b"Solo" in cover.data

    assert c.post("/remove/Solo").get_json()["ok"]
    assert c.get("/").get_json()["games"] == []
    assert not (context.layout.games / "Solo").exists()


def test_environment_and_settings(client):
    c, _ = client
    env = c.get("/environment").get_json()
    assert env["os_family"] == "Linux"

    settings = c.get("/settings").get_json()
    assert "GameSearchDirs" in settings["values"]
    assert c.post("/settings", json={"GameSearchDirs": ["/srv/games"]}).get_json()["ok"]
    assert c.post("/settings", json={"Nope": 1}).status_code == 400

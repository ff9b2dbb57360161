#!/usr/bin/env python
"""
CLI tool for requesting server lifecycle operations.

Every command only enqueues a job; the worker does the actual work. Use
`jobs` to follow progress.

Usage:
    # Create a server from the catalog
    python tools/servers.py create --org-id acme --name my-valheim --game valheim

    # Create a custom server with a startup script
    python tools/servers.py create --org-id acme --name my-game --game custom --script init.sh

    # Start, stop, restart or delete a server
    python tools/servers.py start --server-id <id>
    python tools/servers.py delete --server-id <id>

    # List servers, or the jobs of one server
    python tools/servers.py list --org-id acme
    python tools/servers.py jobs --server-id <id>

    # Check a startup script without storing it
    python tools/servers.py validate-script init.sh
"""

import argparse
import json
import pathlib
import sys

from spinup.common import jobs, servers
from spinup.common.db.connection import make_session
from spinup.common.db.models import JobType
from spinup.common.errors import ScriptValidationError, SpinupError
from spinup.common.games import GAMES
from spinup.common.scripts import sanitize_script, validate_script


def parse_port_spec(value: str) -> dict:
    """Parse "27015" or "27015/udp" into a port spec."""
    port, _, proto = value.partition("/")
    proto = proto or "tcp"
    if proto not in ("tcp", "udp"):
        raise argparse.ArgumentTypeError(f"Invalid protocol in {value!r}, expected tcp or udp")
    try:
        return {"container": int(port), "proto": proto}
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port in {value!r}")


def parse_env(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {value!r}")
    return key, val


def create(args):
    """Register a server and enqueue its CREATE job."""
    script = pathlib.Path(args.script).read_text() if args.script else None
    with make_session() as session:
        server, job = servers.create_server(
            session,
            org_id=args.org_id,
            name=args.name,
            game_key=args.game,
            created_by=args.created_by,
            memory_cap=args.memory,
            cpu_shares=args.cpu_shares,
            script=script,
            port_specs=args.port or None,
            env_vars=dict(args.env) if args.env else None,
        )
        print(f"Server {server.id} created, job {job.id} enqueued")


def request(args):
    """Enqueue a START, STOP or RESTART job."""
    with make_session() as session:
        job = servers.REQUESTS[args.job_type](session, args.server_id)
        print(f"{job.type} job {job.id} enqueued for server {args.server_id}")


def delete(args):
    """Mark a server for deletion and enqueue its DELETE job."""
    with make_session() as session:
        job = servers.request_delete(session, args.server_id)
        print(f"DELETE job {job.id} enqueued for server {args.server_id}")


def list_servers(args):
    with make_session() as session:
        rows = servers.list_servers(session, args.org_id)
        if args.json:
            for server in rows:
                print(json.dumps(servers.serialize_server(server)))
            return

        if not rows:
            print("No servers found")
            return

        print(f"{'ID':<38} {'Name':<24} {'Game':<18} {'Status':<10} Ports")
        print("-" * 110)
        for server in rows:
            port_list = ", ".join(
                f"{p['host']}->{p['container']}/{p['proto']}" for p in server.ports or []
            )
            print(
                f"{server.id:<38} {server.name:<24} {server.game_key:<18} {server.status:<10} {port_list}"
            )


def list_jobs(args):
    with make_session() as session:
        rows = jobs.list_jobs(session, server_id=args.server_id, limit=args.limit)
        if not rows:
            print(f"No jobs for server {args.server_id}")
            return

        for job in rows:
            if args.json:
                print(json.dumps(jobs.serialize_job(job)))
                continue
            print(f"{job.id} {job.type:<8} {job.status:<8} {job.progress:>3}% {job.error or ''}")
            if args.logs and job.logs:
                for line in job.logs.splitlines():
                    print(f"    {line}")


def list_games(args):
    for game in GAMES:
        port_list = ", ".join(p.docker_key for p in game.ports) or "script-defined"
        print(f"{game.key:<20} {game.name:<32} {port_list}")


def validate(args):
    """Run the startup script validator on a file. Exits 1 if it is rejected."""
    content = sanitize_script(pathlib.Path(args.path).read_text())
    result = validate_script(content)
    print(f"Size: {result.size} bytes")
    print(f"SHA-256: {result.hash}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    for error in result.errors:
        print(f"Error: {error}")
    if not result.valid:
        sys.exit(1)
    print("Script is valid")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Game server lifecycle CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # create
    create_parser = subparsers.add_parser("create", help="Create a new server")
    create_parser.add_argument("--org-id", required=True, help="Owning organization")
    create_parser.add_argument("--name", required=True, help="Server name ([a-z0-9-], 3-50 chars)")
    create_parser.add_argument("--game", required=True, help="Game key, see list-games")
    create_parser.add_argument("--created-by", help="User requesting the server")
    create_parser.add_argument("--memory", type=int, help="Memory cap in MiB")
    create_parser.add_argument("--cpu-shares", type=int, help="Relative CPU weight")
    create_parser.add_argument("--script", help="Startup script file (custom game only)")
    create_parser.add_argument(
        "--port",
        type=parse_port_spec,
        action="append",
        help="Container port for the custom game, e.g. 27015/udp (repeatable)",
    )
    create_parser.add_argument(
        "--env", type=parse_env, action="append", help="KEY=VALUE for the custom game (repeatable)"
    )
    create_parser.set_defaults(func=create)

    # start, stop, restart
    for job_type in (JobType.START, JobType.STOP, JobType.RESTART):
        name = job_type.value.lower()
        request_parser = subparsers.add_parser(name, help=f"{name.capitalize()} a server")
        request_parser.add_argument("--server-id", required=True, help="Server ID")
        request_parser.set_defaults(func=request, job_type=job_type)

    # delete
    delete_parser = subparsers.add_parser("delete", help="Delete a server and its data")
    delete_parser.add_argument("--server-id", required=True, help="Server ID")
    delete_parser.set_defaults(func=delete)

    # list
    list_parser = subparsers.add_parser("list", help="List servers")
    list_parser.add_argument("--org-id", help="Only servers of this organization")
    list_parser.add_argument("--json", action="store_true", help="One JSON object per line")
    list_parser.set_defaults(func=list_servers)

    # jobs
    jobs_parser = subparsers.add_parser("jobs", help="List the jobs of a server")
    jobs_parser.add_argument("--server-id", required=True, help="Server ID")
    jobs_parser.add_argument("--limit", type=int, default=20, help="Max jobs to show")
    jobs_parser.add_argument("--logs", action="store_true", help="Include job logs")
    jobs_parser.add_argument("--json", action="store_true", help="One JSON object per line")
    jobs_parser.set_defaults(func=list_jobs)

    # list-games
    games_parser = subparsers.add_parser("list-games", help="List the game catalog")
    games_parser.set_defaults(func=list_games)

    # validate-script
    validate_parser = subparsers.add_parser("validate-script", help="Validate a startup script")
    validate_parser.add_argument("path", help="Script file")
    validate_parser.set_defaults(func=validate)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except ScriptValidationError as e:
        for error in e.errors:
            print(f"Error: {error}")
        sys.exit(1)
    except SpinupError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

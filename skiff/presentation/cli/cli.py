"""
CLI Module

Architectural Intent:
- Command-line interface for Skiff
- `serve` wires the application via the composition root and runs the API
- Every other command is a client of the HTTP API
- Supports --verbose/--debug flags for log level control
"""

import argparse
import asyncio
import logging
import signal
import sys
import traceback

from skiff import __version__
from skiff.domain.errors import AuthError, JobNotFoundError, SkiffError, ValidationError
from skiff.domain.value_objects.log_event import LogEvent, LogKind
from skiff.infrastructure.config import load_config
from skiff.infrastructure.logging import configure_logging
from skiff.presentation.cli.stream_client import ReconnectPolicy, SkiffClient

_PREFIX = {
    LogKind.INFO: "[*]",
    LogKind.SUCCESS: "[+]",
    LogKind.ERROR: "[-]",
}


def print_event(event: LogEvent) -> None:
    stamp = event.timestamp.strftime("%H:%M:%S")
    print(f"{_PREFIX[event.kind]} {stamp} {event.message}", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Skiff: static-site deployments with live build logs"
    )
    parser.add_argument("--version", action="version", version=f"skiff {__version__}")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )
    parser.add_argument("--config", "-c", help="Path to skiff.json")
    parser.add_argument("--server", help="API base URL (client commands)")
    parser.add_argument("--token", help="API token (client commands)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the deployment API server")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", "-p", type=int, help="Bind port")
    serve_parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON logs"
    )

    submit_parser = subparsers.add_parser("submit", help="Submit a deployment")
    submit_parser.add_argument("source_ref", help="owner/repo or git URL")
    submit_parser.add_argument("--branch", "-b", default="main", help="Branch to deploy")
    submit_parser.add_argument("--build-command", help="Override the build command")
    submit_parser.add_argument("--output-dir", help="Build output directory")
    submit_parser.add_argument(
        "--project-type", choices=["static", "react", "nextjs", "other"]
    )
    submit_parser.add_argument(
        "--follow", "-f", action="store_true", help="Stream logs until completion"
    )

    list_parser = subparsers.add_parser("list", help="List your deployments, newest first")
    list_parser.add_argument("--source", help="Only deployments of this owner/repo")
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--limit", type=int, default=20)

    status_parser = subparsers.add_parser("status", help="Show a deployment record")
    status_parser.add_argument("job_id", help="Deployment id")

    logs_parser = subparsers.add_parser("logs", help="Show deployment logs")
    logs_parser.add_argument("job_id", help="Deployment id")
    logs_parser.add_argument(
        "--no-follow", action="store_true", help="Print persisted logs and exit"
    )
    logs_parser.add_argument("--page", type=int, default=1)
    logs_parser.add_argument("--limit", type=int, default=100)

    watch_parser = subparsers.add_parser("watch", help="Open the live log viewer")
    watch_parser.add_argument("job_id", help="Deployment id")

    return parser


async def serve(config, host: str, port: int) -> None:
    from skiff.composition_root import create_container
    from skiff.presentation.web.app import SkiffWebApp

    container = create_container(config)
    await container.start()
    app = SkiffWebApp(container)
    await app.start(host, port)
    print(f"[*] Skiff API listening on http://{host}:{app.port}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass
    try:
        await stop.wait()
    finally:
        print("[*] Shutting down...")
        app.stop()
        await container.stop()
        print("[*] Stopped.")


def _follow(client: SkiffClient, job_id: str) -> bool:
    result = client.follow(job_id, print_event)
    if result.fell_back:
        print("[-] Live stream unavailable; showed persisted logs instead.")
    if result.completion is None:
        print(f"[*] Deployment {job_id} is still running.")
        return True
    if result.succeeded:
        print("[+] Deployment completed successfully.")
        return True
    print("[-] Deployment failed.")
    return False


def _print_job(job: dict) -> None:
    print(f"[*] Deployment {job['jobId']} (#{job['id']})")
    for label, key in (
        ("Status", "status"),
        ("Source", "sourceRef"),
        ("Branch", "branch"),
        ("Project type", "projectType"),
        ("Created", "createdAt"),
        ("CID", "cid"),
        ("URL", "url"),
        ("Size (MB)", "sizeInMB"),
        ("Error", "error"),
    ):
        if job.get(key) is not None:
            print(f"    {label:<13} {job[key]}")


def _print_jobs(jobs: list) -> None:
    if not jobs:
        print("[*] No deployments found.")
        return
    for job in jobs:
        print(
            f"    {job['jobId']:<32} {job['status']:<10} "
            f"{job['sourceRef']}@{job['branch']}  {job['createdAt']}"
        )


async def async_main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = getattr(logging, str(config.log_level).upper(), logging.WARNING)
    configure_logging(level=level, json_format=getattr(args, "json_logs", False))

    verbose = args.verbose or args.debug

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "serve":
        await serve(config, args.host or config.web.host, args.port or config.web.port)
        return 0

    client = SkiffClient(
        args.server or config.client.server_url,
        token=args.token or config.client.token,
        policy=ReconnectPolicy.from_config(config.client),
    )

    if args.command == "watch":
        from skiff.presentation.tui.log_viewer import LogViewer

        await LogViewer(client, args.job_id).run_async()
        return 0

    try:
        if args.command == "submit":
            payload = {"sourceRef": args.source_ref, "branch": args.branch}
            if args.build_command:
                payload["buildCommand"] = args.build_command
            if args.output_dir:
                payload["outputDirectory"] = args.output_dir
            if args.project_type:
                payload["projectType"] = args.project_type
            print(f"[*] Submitting {args.source_ref}@{args.branch}...")
            job_id = client.submit(payload)
            print(f"[+] Deployment accepted: {job_id}")
            if args.follow:
                return 0 if _follow(client, job_id) else 1
            print(f"[*] Follow with: skiff logs {job_id}")
            return 0

        if args.command == "list":
            _print_jobs(client.list_deployments(args.page, args.limit, args.source))
            return 0

        if args.command == "status":
            _print_job(client.get_job(args.job_id))
            return 0

        if args.command == "logs":
            if args.no_follow:
                for event in client.get_logs(args.job_id, args.page, args.limit):
                    print_event(event)
                return 0
            return 0 if _follow(client, args.job_id) else 1
    except ValidationError as e:
        print(f"[-] Rejected: {e}")
        return 2
    except AuthError as e:
        print(f"[-] Not authorized: {e}")
        return 2
    except JobNotFoundError as e:
        print(f"[-] {e}")
        return 1
    except (SkiffError, OSError) as e:
        print(f"[-] Request failed: {e}")
        if verbose:
            traceback.print_exc()
        return 1

    parser.print_help()
    return 0


def main():
    try:
        sys.exit(asyncio.run(async_main()))
    except KeyboardInterrupt:
        print("\n[*] Interrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()

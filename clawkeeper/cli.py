"""clawkeeper command line: serve the admin API or run one operation."""

import argparse
import asyncio
import json
import sys

from .config import GatewayEnv
from .gateway.errors import GatewayError
from .gateway.service import GatewayService
from .log_config import configure_logging, get_logger
from .sandbox.executor import LocalCommandExecutor

log = get_logger("cli")

# Operations that may leave a gateway running after the command exits
DETACHED_COMMANDS = ("ensure", "restart")


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .web_api import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level)
    return 0


async def _run_operation(args: argparse.Namespace) -> int:
    env = GatewayEnv.from_environ()
    service = GatewayService(LocalCommandExecutor(detached=args.command in DETACHED_COMMANDS))

    if args.command == "ensure":
        try:
            proc = await service.ensure_gateway_running(env)
        except GatewayError as e:
            _print_json({"success": False, "error": str(e), "details": e.details, "hint": e.hint})
            return 1
        _print_json({"success": True, "process_id": proc.id, "status": proc.status.value})
        return 0

    if args.command == "restart":
        result = await service.restart_gateway(env)
        # The relaunch runs in the background; a one-shot command waits for it
        await service.supervisor.wait_for_background_tasks()
        _print_json({"success": True, **result.model_dump()})
        return 0

    if args.command == "sync":
        result = await service.sync_to_durable(env)
    elif args.command == "golden-backup":
        result = await service.create_golden_backup(env)
    elif args.command == "list-backups":
        listing = await service.list_backups(env)
        _print_json({"success": listing.error is None, **listing.model_dump()})
        return 0 if listing.error is None else 1
    elif args.command == "restore":
        result = await service.restore_from_backup(env, args.type, args.name)
    else:
        raise ValueError(f"Unknown command: {args.command}")

    _print_json({"outcome": result.outcome.value, **result.model_dump()})
    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clawkeeper", description=__doc__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the admin API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    serve.add_argument("--log-level", default="info")

    subparsers.add_parser("ensure", help="Start the gateway unless it is running")
    subparsers.add_parser("restart", help="Kill and relaunch the gateway")
    subparsers.add_parser("sync", help="Mirror local state to durable storage")
    subparsers.add_parser("golden-backup", help="Create a protected snapshot")
    subparsers.add_parser("list-backups", help="List versioned and golden backups")

    restore = subparsers.add_parser("restore", help="Restore a named backup")
    restore.add_argument("type", choices=["versioned", "golden"])
    restore.add_argument("name")

    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        return _serve(args)
    try:
        return asyncio.run(_run_operation(args))
    except GatewayError as e:
        log.error("cli.error", exc=e, command=args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())

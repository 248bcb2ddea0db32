"""Command-line interface for the compatibility proxy."""

from __future__ import annotations

import argparse
import json
from typing import Any, Dict, List, Optional

from .mapping.table import DEFAULT_MAPPING_TABLE
from .router import PathRouter


def _cmd_serve(args: argparse.Namespace) -> int:
    """Run the proxy with uvicorn."""

    import uvicorn

    from .app import create_app
    from .config import ProxySettings

    overrides: Dict[str, Any] = {}
    if args.host:
        overrides["bind_host"] = args.host
    if args.port:
        overrides["bind_port"] = args.port
    settings = ProxySettings(_config_file=args.config, **overrides)
    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        log_config=None,
        log_level=settings.log_level.lower(),
    )
    return 0


def _cmd_routes(args: argparse.Namespace) -> int:
    """Print the translated operations as JSON."""

    out: List[Dict[str, Any]] = []
    for op in DEFAULT_MAPPING_TABLE:
        entry = {
            "operation_id": op.operation_id,
            "method": op.method,
            "old_route": op.old_route,
            "new_route": op.new_route,
            "request_rules": len(op.request_rules),
            "response_rules": len(op.response_rules),
        }
        if args.verbose:
            entry = op.describe()
        out.append(entry)
    print(json.dumps(out, indent=2))
    return 0


def _cmd_match(args: argparse.Namespace) -> int:
    """Print the routing decision for one legacy request line."""

    router = PathRouter(DEFAULT_MAPPING_TABLE, args.prefix)
    matched = router.match(args.method, args.path)
    if matched is None:
        print(json.dumps({"matched": False, "action": "passthrough", "path": args.path}))
        return 0
    print(
        json.dumps(
            {
                "matched": True,
                "operation_id": matched.operation_id,
                "params": matched.params,
                "new_route": matched.operation.new_route,
            }
        )
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the lemmy-compat CLI."""

    parser = argparse.ArgumentParser(
        prog="lemmy-compat", description="Lemmy legacy API compatibility proxy"
    )
    sub = parser.add_subparsers(dest="cmd")

    pserve = sub.add_parser("serve", help="Run the proxy")
    pserve.add_argument("--host", required=False)
    pserve.add_argument("--port", type=int, required=False)
    pserve.add_argument("--config", required=False, help="Path to a YAML settings file")
    pserve.set_defaults(func=_cmd_serve)

    proutes = sub.add_parser("routes", help="List translated operations")
    proutes.add_argument("--verbose", action="store_true", help="Include every rule")
    proutes.set_defaults(func=_cmd_routes)

    pmatch = sub.add_parser("match", help="Show how a legacy request would be routed")
    pmatch.add_argument("method")
    pmatch.add_argument("path")
    pmatch.add_argument("--prefix", default="/api/v3")
    pmatch.set_defaults(func=_cmd_match)

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())

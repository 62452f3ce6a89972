"""CLI tool for guidestats: fetch Local Guide stats or run the API.

Usage:
    python -m guidestats.cli fetch 123456789012
    python -m guidestats.cli fetch https://www.google.com/maps/contrib/123456789012 --slow
    python -m guidestats.cli debug 123456789012
    python -m guidestats.cli serve --host 0.0.0.0 --port 8000
"""

import argparse
import asyncio
import json
import logging
import sys


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def _cmd_fetch(args) -> int:
    """Fetch stats for one profile and print them as JSON."""
    from guidestats.core.exceptions import GuideStatsError
    from guidestats.schemas.stats import ScrapeMode
    from guidestats.services.browser import browser_manager
    from guidestats.services.profile_scraper import profile_stats_service

    mode = ScrapeMode.SLOW if args.slow else ScrapeMode.NORMAL
    try:
        result = await profile_stats_service.fetch(args.identifier, mode)
    except GuideStatsError as e:
        print(json.dumps({"success": False, "error": e.to_dict()}, indent=2), file=sys.stderr)
        return 1
    finally:
        await browser_manager.shutdown()

    print(json.dumps(result.payload, indent=2, ensure_ascii=False))
    return 0


async def _cmd_debug(args) -> int:
    from guidestats.core.exceptions import GuideStatsError
    from guidestats.services.browser import browser_manager
    from guidestats.services.profile_scraper import profile_stats_service

    try:
        sample = await profile_stats_service.debug_sample(args.identifier)
    except GuideStatsError as e:
        print(json.dumps({"success": False, "error": e.to_dict()}, indent=2), file=sys.stderr)
        return 1
    finally:
        await browser_manager.shutdown()

    print(f"--- {sample['url']} (panel opened: {sample['panel_opened']}) ---")
    print(sample["sample"])
    return 0


def _cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run("guidestats.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="guidestats",
        description="guidestats CLI: Google Maps Local Guide profile stats",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # --- fetch ---
    fetch_parser = subparsers.add_parser("fetch", help="Fetch stats for one profile")
    fetch_parser.add_argument("identifier", help="Numeric contributor id or contrib URL")
    fetch_parser.add_argument(
        "--slow", action="store_true", help="Use longer timeouts for slow or flaky pages"
    )

    # --- debug ---
    debug_parser = subparsers.add_parser("debug", help="Print a text sample of the profile page")
    debug_parser.add_argument("identifier", help="Numeric contributor id or contrib URL")

    # --- serve ---
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _setup_logging(args.verbose)

    if args.command == "fetch":
        sys.exit(asyncio.run(_cmd_fetch(args)))
    elif args.command == "debug":
        sys.exit(asyncio.run(_cmd_debug(args)))
    elif args.command == "serve":
        sys.exit(_cmd_serve(args))


if __name__ == "__main__":
    main()

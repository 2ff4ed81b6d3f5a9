"""Entry point for the fxbuild command."""

import argparse
import asyncio
import logging
import os
import sys

from .build import BuildError, BuildOptions, build, clear, generate_manifest, generate_types
from .server import create_server, stop_active
from .utils.project import find_project_root

logger = logging.getLogger(__name__)

COMMANDS = ("build", "clear", "manifest", "types", "serve")

# 128 + SIGINT
EXIT_INTERRUPTED = 130


def configure_logging() -> None:
    """Configure logging based on environment."""
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the command line parser."""
    parser = argparse.ArgumentParser(
        prog="fxbuild",
        description="Build FiveM TypeScript resources (client, server and web)",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=COMMANDS,
        help="build: build client and server files; clear: remove generated files; "
        "manifest: generate fxmanifest.lua; types: generate TypeScript types; "
        "serve: run the MCP server",
    )
    parser.add_argument(
        "--production",
        "-P",
        action="store_true",
        default=False,
        help="Build for production (no watch mode)",
    )
    parser.add_argument(
        "--cwd",
        type=str,
        default=None,
        help="Resource root. Defaults to the nearest directory above CWD "
        "containing package.json, fxmanifest.lua or .git.",
    )
    parser.add_argument(
        "--no-manifest",
        action="store_true",
        default=False,
        help="Do not regenerate fxmanifest.lua after builds",
    )
    parser.add_argument(
        "--no-types",
        action="store_true",
        default=False,
        help="Do not generate type declarations after production builds",
    )
    web = parser.add_mutually_exclusive_group()
    web.add_argument(
        "--web",
        dest="web",
        action="store_true",
        default=None,
        help="Include the web sub-project (default: when a web folder exists)",
    )
    web.add_argument(
        "--no-web",
        dest="web",
        action="store_false",
        help="Skip the web sub-project",
    )
    parser.add_argument(
        "--no-web-watch",
        action="store_true",
        default=False,
        help="Development: run only the web dev server, without a watching web build",
    )
    return parser


async def run_build(args: argparse.Namespace, cwd: str) -> int:
    """Run the build command."""
    options = BuildOptions(
        cwd=cwd,
        production=args.production,
        generate_manifest=not args.no_manifest,
        generate_types=not args.no_types,
        include_web_build=args.web,
        web_watch_build=not args.no_web_watch,
    )
    orchestrator = await build(options)

    if options.production:
        logger.info("FiveM resource files built successfully")
        return 0

    logger.info("Started development with watch mode")
    await orchestrator.wait_closed()
    return 0


async def serve(cwd: str) -> int:
    """Run the MCP server over stdio."""
    logger.info(f"Starting fxbuild MCP Server (project: {cwd})...")
    mcp = create_server(cwd)
    try:
        await mcp.run_stdio_async()
    except Exception:
        logger.exception("Server error")
        raise
    finally:
        await stop_active()
        logger.info("Server stopped")
    return 0


async def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Process exit code
    """
    configure_logging()

    parser = create_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    cwd = os.path.abspath(args.cwd) if args.cwd else find_project_root()

    try:
        if args.command == "build":
            return await run_build(args, cwd)
        if args.command == "clear":
            clear(cwd)
            return 0
        if args.command == "manifest":
            path = await generate_manifest(cwd, production=args.production)
            logger.info(f"{os.path.basename(path)} generated")
            return 0
        if args.command == "types":
            await generate_types(cwd)
            return 0
        return await serve(cwd)
    except BuildError as e:
        logger.error(f"Error: {e}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Error: {e}")
        return 1
    except Exception:
        logger.exception("Unexpected error")
        return 1


def run() -> None:
    """Run the command.

    Watch mode turns SIGINT/SIGTERM into a clean exit 0 through the shutdown
    coordinator. An interrupt reaching this point stopped work that never
    finished (production builds, startup), so it exits with 130.
    """
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.error("Build interrupted")
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    run()

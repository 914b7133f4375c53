"""
Command Line Interface
======================

Drive the section pipeline from a terminal.

Usage:
    section-video create-section --content-file script.txt --duration 30 --language en
    section-video segment SECTION_ID --duration 30 --language en --model kling-v2.1
    section-video dispatch-next SECTION_ID
    section-video status UNIT_ID
    section-video approve UNIT_ID
    section-video compile SECTION_ID --format mp4 --quality high
    section-video serve --port 8000
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, List

from .core.config import Config
from .core.exceptions import SectionVideoError

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="section-video",
        description="Segment, generate, review, and compile AI video sections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s create-section --content "Your script..." --duration 30 --language en
  %(prog)s segment SECTION_ID --duration 30 --language en --model kling-v2.1
  %(prog)s dispatch UNIT_ID --override cfg_scale=0.7
  %(prog)s regenerate UNIT_ID --seed 4242
        """,
    )
    parser.add_argument(
        "--config",
        help="Path to YAML config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    create = commands.add_parser("create-section", help="Create a section from script text")
    content = create.add_mutually_exclusive_group(required=True)
    content.add_argument("--content", help="Section script text")
    content.add_argument("--content-file", help="File holding the section script text")
    create.add_argument("-d", "--duration", type=float, required=True, help="Target duration in seconds")
    create.add_argument("-l", "--language", required=True, help="Script language (e.g. en, pt-br)")
    create.add_argument("--project-id", help="Owning project id")

    segment = commands.add_parser("segment", help="Split a section into units (replaces existing units)")
    segment.add_argument("section_id")
    segment.add_argument("-d", "--duration", type=float, required=True, help="Total duration in seconds")
    segment.add_argument("-l", "--language", required=True, help="Script language")
    segment.add_argument("-m", "--model", required=True, help="Model profile id")

    dispatch = commands.add_parser("dispatch", help="Dispatch one unit")
    dispatch.add_argument("unit_id")
    dispatch.add_argument(
        "--override",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra provider parameter (repeatable; values parsed as JSON when possible)",
    )

    dispatch_next = commands.add_parser("dispatch-next", help="Dispatch the next waiting unit of a section")
    dispatch_next.add_argument("section_id")

    status = commands.add_parser("status", help="Show a unit, or a section with --section")
    status.add_argument("id")
    status.add_argument("--section", action="store_true", help="Treat the id as a section id")

    approve = commands.add_parser("approve", help="Approve a completed unit")
    approve.add_argument("unit_id")

    regenerate = commands.add_parser("regenerate", help="Reset a unit to pending")
    regenerate.add_argument("unit_id")
    regenerate.add_argument("--seed", type=int, help="New seed")
    regenerate.add_argument("--reference-image", help="New reference image URL")

    compile_ = commands.add_parser("compile", help="Compile approved units of a section")
    compile_.add_argument("section_id")
    compile_.add_argument("--format", dest="output_format", default="mp4", help="Output format (default: mp4)")
    compile_.add_argument("--quality", default="high", help="Output quality (default: high)")

    return parser.parse_args(argv)


def parse_overrides(pairs: List[str]) -> dict:
    """Turn ``KEY=VALUE`` pairs into a dict, decoding JSON values."""
    overrides = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Override must be KEY=VALUE: {pair}")
        try:
            overrides[key] = json.loads(raw)
        except json.JSONDecodeError:
            overrides[key] = raw
    return overrides


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_command(args: argparse.Namespace, config: Config) -> int:
    from .workflow.pipeline import SectionPipeline

    pipeline = SectionPipeline(config)
    try:
        if args.command == "create-section":
            text = args.content if args.content is not None else Path(args.content_file).read_text()
            section = pipeline.create_section(text, args.duration, args.language, args.project_id)
            _print(section.to_dict())

        elif args.command == "segment":
            units = pipeline.segment(args.section_id, args.duration, args.language, args.model)
            for unit in units:
                print(f"  #{unit.order}  {unit.start_time:>6.1f}s-{unit.end_time:<6.1f}s  seed={unit.seed}  {unit.id}")
            print(f"{len(units)} units created")

        elif args.command == "dispatch":
            receipt = await pipeline.dispatch(args.unit_id, parse_overrides(args.override))
            _print(receipt.to_dict())

        elif args.command == "dispatch-next":
            receipt = await pipeline.dispatch_next(args.section_id)
            _print(receipt.to_dict())

        elif args.command == "status":
            _print(pipeline.get_section(args.id) if args.section else pipeline.get_unit_status(args.id))

        elif args.command == "approve":
            _print(pipeline.approve(args.unit_id).to_dict())

        elif args.command == "regenerate":
            unit = pipeline.regenerate(args.unit_id, new_seed=args.seed, reference_image_url=args.reference_image)
            _print(unit.to_dict())

        elif args.command == "compile":
            artifact = await pipeline.compile(args.section_id, output_format=args.output_format, quality=args.quality)
            _print(artifact.to_dict())

        return 0
    finally:
        await pipeline.close()


def serve(config: Config, host: str, port: int) -> None:
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(config), host=host, port=port)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = Config.load(args.config)

        if args.command == "serve":
            serve(config, args.host, args.port)
            return 0

        return asyncio.run(run_command(args, config))

    except SectionVideoError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.details:
            print(json.dumps(e.details, indent=2, default=str), file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())

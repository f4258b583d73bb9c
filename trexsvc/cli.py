"""Command-line entry point."""

from __future__ import annotations

import argparse
import logging
import sys

from trexsvc.clone import CloneOptions, clone_tree


def build_parser() -> argparse.ArgumentParser:
    """The root parser with its sub-commands."""
    defaults = CloneOptions()
    parser = argparse.ArgumentParser(
        prog="trex",
        description="rh-trex serves as a template for new microservices",
    )
    commands = parser.add_subparsers(dest="command")

    clone = commands.add_parser(
        "clone", help="Clone a new TRex instance", description="Clone a new TRex instance"
    )
    clone.add_argument("--name", default=defaults.name, help="Name of the new service being provisioned")
    clone.add_argument(
        "--destination",
        default=defaults.destination,
        help="Target directory for the newly provisioned instance",
    )
    clone.add_argument("--repo", default=defaults.repo, help="git repo of project")
    clone.add_argument("--source", default=".", help="Root of the project to copy")
    return parser


def _run_clone(args: argparse.Namespace) -> int:
    options = CloneOptions(name=args.name, repo=args.repo, destination=args.destination)
    try:
        clone_tree(args.source, options)
    except OSError as exc:
        print(exc)
    return 0


def main(argv=None) -> int:
    """Parse ``argv`` and run the chosen sub-command."""
    logging.basicConfig(stream=sys.stderr, level=logging.INFO)
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "clone":
        return _run_clone(args)
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
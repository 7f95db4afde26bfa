#!/usr/bin/env python
"""Command line entry point of diffmig."""

import argparse
import logging
import sys

from .exceptions import DiffMigError
from .models import CompareConfig, PairResult
from .prompt import ConsolePrompt
from .runner import DiffMigRunner


def print_differences(result: PairResult):
    """Print the difference tree of a pair to stderr."""
    for difference in result.differences:
        for line in difference.render():
            print(line, file=sys.stderr)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="diffmig",
        description="Find differences between two registry migrations of the same data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  diffmig old.zip new.zip
  diffmig old.zip new.zip --cdes --no-prompt
  diffmig old.json new.json --schema registry.yaml --config diffmig.yaml
        """
    )

    parser.add_argument("old_zip", help="The path of the old export (zip archive or JSON file)")
    parser.add_argument("new_zip", help="The path of the new export (zip archive or JSON file)")
    parser.add_argument("--cdes", action="store_true", help="Only compare 'cdes' clinical datum variants")
    parser.add_argument("-s", "--schema", help="Registry schema (YAML/JSON) to validate records against")
    parser.add_argument("-c", "--config", help="Comparison configuration file (YAML/JSON)")
    parser.add_argument("--no-prompt", action="store_true", help="Don't ask before going on after differences")
    parser.add_argument("--debug", action="store_true", help="Print debug output")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.ERROR,
        format="%(levelname)s %(name)s: %(message)s"
    )

    try:
        config = CompareConfig.from_file(args.config) if args.config else CompareConfig()
        if args.cdes:
            config.cdes_only = True
        if args.no_prompt:
            config.prompt = False

        runner = DiffMigRunner(args.old_zip, args.new_zip, args.schema, config)
        report = runner.run(
            gate=ConsolePrompt() if config.prompt else None,
            on_difference=print_differences
        )
    except (DiffMigError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Found {report.total_differences} differences")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python

import argparse

from .scripts import bam_to_bedgraph, coverage_at
from .version import get_versions


def get_parser():
    """Return argparse command line parser."""
    parser = argparse.ArgumentParser(
        description="depthtrack counts the per-base read coverage of alignments and writes it as a bedgraph.",
    )
    parser.add_argument(
        "--version", action="version", version=get_versions()["version"]
    )
    subparsers = parser.add_subparsers()

    # =========================================================================
    #  bedgraph
    # =========================================================================

    parser_bedgraph = subparsers.add_parser(
        "bedgraph",
        description="Write the per-base read coverage of regions as a bedgraph.",
    )
    bam_to_bedgraph.add_arguments(parser_bedgraph)
    parser_bedgraph.set_defaults(func=bam_to_bedgraph.run)

    # =========================================================================
    #  point queries
    # =========================================================================

    parser_query = subparsers.add_parser(
        "query", description="Print the read coverage at single reference positions."
    )
    coverage_at.add_arguments(parser_query)
    parser_query.set_defaults(func=coverage_at.run)

    return parser


def main(argv: list[str] | None = None):
    parser = get_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
    else:
        args.func(args)


if __name__ == "__main__":
    main()

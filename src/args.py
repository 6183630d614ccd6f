"""Argument parsing functionality for artifetch."""

import argparse


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="artifetch",
        description=(
            "artifetch - Resolve Maven coordinates against prioritized repositories"
        ),
        add_help=True,
    )

    parser.add_argument("action",
                        help="What to resolve: the artifact descriptor or merged metadata",
                        choices=["download", "metadata"])
    parser.add_argument("coordinate",
                        help="Coordinate as groupId:artifactId[:version]")

    parser.add_argument("-r", "--repository",
                        dest="REPOSITORIES",
                        help="Repository URI, in priority order (can be used multiple times)",
                        action="append",
                        type=str,
                        default=[])
    parser.add_argument("--local-repository",
                        dest="LOCAL_REPOSITORY",
                        help="Local repository directory consulted before remote ones",
                        action="store",
                        type=str)
    parser.add_argument("--central",
                        dest="ADD_CENTRAL",
                        help="Append Maven Central to the candidate repositories",
                        action="store_true")
    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Write the downloaded content (or metadata XML) to this file",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to YAML configuration file",
                        action="store",
                        type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')

    return parser.parse_args(argv)

"""artifetch - resolve Maven coordinates against prioritized repositories.

    Returns:
        int: Exit code
"""
import logging
import os
import sys

from args import parse_args
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes, _load_yaml_config, apply_config
from registry.maven.context import ResolutionContext, repository_from_config
from registry.maven.downloader import ArtifactDownloader, DownloadError
from registry.maven.models import Coordinate

logger = logging.getLogger(__name__)


def build_repositories(uris, configured):
    """CLI repositories first, then those from the config file."""
    repositories = [repository_from_config({"id": f"cli-{i}", "uri": uri}) for i, uri in enumerate(uris)]
    repositories.extend(configured)
    return repositories


def write_output(path, data):
    """Write bytes to ``path``, or to stdout when no path is given."""
    if not path:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
        return
    try:
        with open(path, "wb") as fh:
            fh.write(data)
        logging.info("Output written to: %s", path)
    except OSError as e:
        logging.error("Output couldn't be written to disk: %s", e)
        sys.exit(ExitCodes.FILE_ERROR.value)


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging()

    cfg = _load_yaml_config(args.CONFIG)
    apply_config(cfg)
    if args.LOCAL_REPOSITORY:
        Constants.LOCAL_REPOSITORY = args.LOCAL_REPOSITORY
    if args.ADD_CENTRAL:
        Constants.ADD_CENTRAL_REPOSITORY = True

    try:
        coordinate = Coordinate.parse(args.coordinate)
    except ValueError as e:
        logging.error("%s", e)
        sys.exit(ExitCodes.FILE_ERROR.value)

    context = ResolutionContext.from_config(cfg)
    repositories = build_repositories(args.REPOSITORIES, context.repositories)
    downloader = ArtifactDownloader(context)

    if is_debug_enabled(logger):
        logger.debug(
            "Resolution starting",
            extra=extra_context(
                event="start", component="cli", action=args.action,
                coordinate=str(coordinate), repositories=len(repositories),
            ),
        )

    try:
        if args.action == "metadata":
            document = downloader.download_metadata(coordinate, repositories)
            write_output(args.OUTPUT, document.to_xml().encode("utf-8"))
        else:
            if coordinate.version is None:
                logging.error("A version is required to download %s", coordinate)
                sys.exit(ExitCodes.FILE_ERROR.value)
            artifact = downloader.download(coordinate, repositories=repositories)
            logging.info("Resolved %s as %s from %s", coordinate, artifact.filename, artifact.repository.uri)
            write_output(args.OUTPUT, artifact.content)
    except DownloadError as e:
        logging.error("%s", e)
        sys.exit(ExitCodes.DOWNLOAD_ERROR.value)
    finally:
        context.http_client.close()

    if is_debug_enabled(logger):
        logger.debug("Cache statistics", extra=extra_context(event="finish", component="cli",
                                                              caches=context.cache_stats()))
    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()

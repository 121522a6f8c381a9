"""Command line entry point: mark and sweep unused registry data."""

from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from .blobs import Blobs
from .config import ConfigError, storage_from_config
from .deletes import Deleter
from .jobs import JobRunner
from .manifest import Manifests
from .repositories import Repositories
from .storage import Storage

log = logging.getLogger("registrygc")

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


class _Fatal(Exception):
    """An error that ends the run."""


def _boolean(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {value!r}")


def _positive(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return number


def _flag(parser: argparse.ArgumentParser, name: str, default: bool, help_text: str) -> None:
    parser.add_argument(
        name, nargs="?", const=True, default=default, type=_boolean, metavar="BOOL",
        help=help_text,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="registrygc",
        description="Find and remove unreferenced data from a registry's storage.",
    )
    parser.add_argument("--config", default="", help="Path to registry config file")
    _flag(parser, "--ignore-blobs", False, "Ignore blobs processing and recycling")
    parser.add_argument("--jobs", type=_positive, default=10,
                        help="Number of concurrent jobs to execute")
    parser.add_argument("--parallel-walk-jobs", type=_positive, default=10,
                        help="Number of concurrent parallel walk jobs to execute")
    _flag(parser, "--debug", False, "Print debug messages")
    _flag(parser, "--verbose", True, "Print verbose messages")
    _flag(parser, "--soft-errors", False, "Print errors, but do not fail")
    _flag(parser, "--parallel-repository-walk", False, "Allow to use parallel repository walker")
    _flag(parser, "--parallel-blob-walk", False, "Allow to use parallel blob walker")
    parser.add_argument("--repository-csv-output", default="repositories.csv",
                        help="File to which CSV will be written with all metrics")
    _flag(parser, "--delete-old-tag-versions", True, "Delete old tag versions")
    _flag(parser, "--delete", False, "Delete data, instead of dry run")
    _flag(parser, "--soft-delete", True,
          "When deleting, do not remove, but move to backup/ folder")
    parser.add_argument("--s3-storage-cache", default="tmp-cache", help="s3 cache")
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    log.setLevel(level)
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        log.addHandler(handler)


def _report(exc: BaseException | None, soft_errors: bool) -> None:
    if exc is None:
        return
    if soft_errors:
        log.error("%s", exc)
        return
    raise _Fatal(str(exc)) from exc


def _step(action: Callable[[], None], soft_errors: bool) -> None:
    try:
        action()
    except Exception as exc:
        _report(exc, soft_errors)


def _collect(
    args: argparse.Namespace, storage: Storage, runner: JobRunner, walk_runner: JobRunner
) -> None:
    soft = args.soft_errors
    deleter = Deleter(storage, delete=args.delete, soft_delete=args.soft_delete)
    blobs = Blobs(storage, runner, deleter, ignore_blobs=args.ignore_blobs, soft_errors=soft)
    repositories = Repositories(
        storage, runner, deleter,
        manifest_cache=Manifests(),
        soft_errors=soft,
        delete_old_tag_versions=args.delete_old_tag_versions,
    )

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(repositories.walk, args.parallel_repository_walk, walk_runner)]
        if not args.ignore_blobs:
            futures.append(pool.submit(blobs.walk, args.parallel_blob_walk, walk_runner))
    for future in futures:
        _report(future.exception(), soft)

    log.info("Marking REPOSITORIES...")
    _step(lambda: repositories.mark(blobs), soft)
    log.info("Sweeping REPOSITORIES...")
    _step(repositories.sweep, soft)
    log.info("Sweeping BLOBS...")
    _step(blobs.sweep, soft)

    log.info("Summary...")
    repositories.info(blobs, args.repository_csv_output)
    blobs.info()
    deleter.info()
    storage.info()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    if not args.config:
        parser.print_usage(sys.stderr)
        return 1

    try:
        storage = storage_from_config(args.config, args.s3_storage_cache)
    except (OSError, ConfigError) as exc:
        log.critical("%s", exc)
        return 1

    runner = JobRunner(args.jobs)
    walk_runner = JobRunner(args.parallel_walk_jobs)
    try:
        _collect(args, storage, runner, walk_runner)
    except KeyboardInterrupt:
        storage.info()
        log.critical("Signal received: interrupt")
        return 1
    except _Fatal as exc:
        log.critical("%s", exc)
        return 1
    finally:
        runner.close()
        walk_runner.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
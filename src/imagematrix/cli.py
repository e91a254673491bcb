"""Command line entry point.

Usage:
    imagematrix update [--config matrix.toml] [--lock matrix.lock]
    imagematrix write [--lock matrix.lock] [--out build] [--context .]
    imagematrix images [--lock matrix.lock]
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from imagematrix.cache import ResolutionCache, TagCacheStore
from imagematrix.compiler import write_dockerfile
from imagematrix.config import read_config
from imagematrix.errors import ImageMatrixError, LockfileError
from imagematrix.fetch import DockerClient, GithubClient, token_from_env
from imagematrix.lockfile import diff_locks, read_lockfile, write_lockfile
from imagematrix.lockfile.builder import DEFAULT_WORKERS, LockBuilder
from imagematrix.observability import LEVELS, StructuredLogger
from imagematrix.resolve import RetryPolicy, VersionResolver

DEFAULT_CONFIG = "matrix.toml"
DEFAULT_LOCK = "matrix.lock"
DEFAULT_OUT = "build"
DEFAULT_CACHE_DIR = ".imagematrix-cache"


def cmd_update(args: argparse.Namespace, logger: StructuredLogger) -> int:
    config = read_config(args.config)
    github = GithubClient(token=token_from_env(args.github_token))
    try:
        store = TagCacheStore(args.cache_dir) if args.cache_dir else None
        cache = ResolutionCache(github.list_refs, store=store, max_age=args.cache_ttl, logger=logger)
        docker = DockerClient()
        resolver = VersionResolver(
            runner=docker,
            cache=cache,
            retry=RetryPolicy(attempts=args.retries),
            logger=logger,
        )
        builder = LockBuilder(
            resolver,
            inspector=None if args.no_digests else docker,
            max_workers=args.workers,
            logger=logger,
        )
        lock = builder.build(config)
    finally:
        github.close()

    lock_path = Path(args.lock)
    if lock_path.exists():
        try:
            previous = read_lockfile(lock_path)
        except LockfileError as exc:
            logger.warning(operation="lock_diff", message=f"Ignoring unreadable previous lock: {exc.args[0]}")
        else:
            logger.info(operation="lock_diff", message=diff_locks(previous, lock).summary())
    write_lockfile(lock, lock_path)
    logger.info(operation="update", message=f"Wrote {lock_path} with {len(lock.builds)} builds")
    return 0


def cmd_write(args: argparse.Namespace, logger: StructuredLogger) -> int:
    lock = read_lockfile(args.lock)
    path = write_dockerfile(lock, args.out, context_dir=args.context)
    logger.info(operation="write", message=f"Wrote {path}")
    return 0


def cmd_images(args: argparse.Namespace, logger: StructuredLogger) -> int:
    lock = read_lockfile(args.lock)
    images = [
        {"target": build.target, "image_name": build.image_name, "image_tag": build.image_tag}
        for build in lock.builds
    ]
    print(f"images={json.dumps(images)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="imagematrix", description="Resolve and render container image matrices")
    parser.add_argument("--log-level", choices=sorted(LEVELS, key=LEVELS.__getitem__), default="info")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write log records as JSON lines")
    parser.add_argument("--github-token", default=None, help="Defaults to GH_TOKEN or GITHUB_TOKEN")
    sub = parser.add_subparsers(dest="command", required=True)

    update_p = sub.add_parser("update", help="Resolve the config into a lock")
    update_p.add_argument("--config", default=DEFAULT_CONFIG)
    update_p.add_argument("--lock", default=DEFAULT_LOCK)
    update_p.add_argument("--cache-dir", default=DEFAULT_CACHE_DIR, help="Empty string disables the persistent cache")
    update_p.add_argument("--cache-ttl", type=float, default=None, help="Refetch cached refs older than this (seconds)")
    update_p.add_argument("--retries", type=int, default=3)
    update_p.add_argument("--workers", type=int, default=DEFAULT_WORKERS)
    update_p.add_argument("--no-digests", action="store_true", help="Do not pin base images by digest")
    update_p.set_defaults(handler=cmd_update)

    write_p = sub.add_parser("write", help="Render the lock into a Dockerfile")
    write_p.add_argument("--lock", default=DEFAULT_LOCK)
    write_p.add_argument("--out", default=DEFAULT_OUT)
    write_p.add_argument("--context", default=".")
    write_p.set_defaults(handler=cmd_write)

    images_p = sub.add_parser("images", help="Print the images a lock builds")
    images_p.add_argument("--lock", default=DEFAULT_LOCK)
    images_p.set_defaults(handler=cmd_images)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = StructuredLogger(level=args.log_level, stream=sys.stderr)
    try:
        return args.handler(args, logger)
    except ImageMatrixError as exc:
        logger.error(operation=args.command, message=exc.args[0], extra=exc.to_dict())
        print(f"error[{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        if args.log_file is not None:
            logger.to_json_lines(args.log_file)

"""
Command line entry point.

    pubchem-harvest download -b 0 -j 4 --enable-db --enable-proxy
    pubchem-harvest save -j 8
    pubchem-harvest filter -n solubility
    pubchem-harvest list
    pubchem-harvest export -c molecular -o out/molecular.jsonl
    pubchem-harvest forget 25928

Flags override the environment / .env settings. Per-item failures only show
up in the logs; the exit status is non-zero only when the store or the data
directory cannot be set up.
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Sequence

from pubchem_harvest import __version__
from pubchem_harvest.apps.downloader.negative_cache import NegativeCache
from pubchem_harvest.apps.downloader.paths import count_artifacts
from pubchem_harvest.apps.downloader.runner import DownloadRunner
from pubchem_harvest.apps.saver.export import export_jsonl
from pubchem_harvest.apps.transformer.records import PROFILES, get_profile
from pubchem_harvest.apps.transformer.runner import TransformerRunner
from pubchem_harvest.utils.config import Settings, get_settings
from pubchem_harvest.utils.db import open_store
from pubchem_harvest.utils.errors import StoreInitError, StoreWriteError
from pubchem_harvest.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def _common_options() -> argparse.ArgumentParser:
    # SUPPRESS keeps an option given before the subcommand from being reset after it
    common = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
    common.add_argument("-p", "--data-path", dest="DATA_DIR", help="artifact root directory")
    common.add_argument("-s", "--sqlite", dest="SQLITE_PATH", help="SQLite store path")
    common.add_argument("-j", "--jobs", dest="JOBS", type=int, help="parallel jobs (per route in proxy mode)")
    common.add_argument("--log-level", dest="LOG_LEVEL", help="DEBUG, INFO, WARNING, ...")
    common.add_argument("--log-format", dest="LOG_FORMAT", choices=["json", "text"])
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="pubchem-harvest",
        description="Download PubChem compound records and extract them into a document store",
        parents=[common],
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_command(name: str, help_text: str) -> argparse.ArgumentParser:
        return sub.add_parser(name, help=help_text, parents=[common])

    download = add_command("download", "fetch artifacts for CID blocks")
    download.add_argument("-b", "--block", dest="DOWNLOAD_START", type=int, help="first CID block")
    download.add_argument("--blocks", dest="DOWNLOAD_BLOCKS", type=int, help="number of blocks, 0 = until stopped")
    download.add_argument(
        "--enable-db", dest="ENABLE_DB", action="store_true", default=None,
        help="cache 404 results in the store and skip them on later passes",
    )
    download.add_argument(
        "--enable-proxy", dest="ENABLE_PROXY", action="store_true", default=None,
        help="rotate requests over PROXY_ROUTES",
    )

    save = add_command("save", "extract full molecular records into the store")
    save.add_argument("--no-resume", dest="resume", action="store_false", help="start from the first artifact")

    filter_ = add_command("filter", "extract one filter profile into the store")
    filter_.add_argument("-n", "--filter-name", dest="filter_name", required=True, choices=sorted(PROFILES))

    add_command("list", "count artifacts under the data directory")

    export = add_command("export", "stream a collection to JSONL")
    export.add_argument("-c", "--collection", required=True)
    export.add_argument("-o", "--output", required=True)
    export.add_argument(
        "-f", "--filter", dest="filters", action="append", default=[], metavar="FIELD=VALUE",
        help="equality filter on a top-level field (repeatable)",
    )

    forget = add_command("forget", "remove CIDs from the negative cache")
    forget.add_argument("cids", type=int, nargs="+")

    return parser


def resolve_settings(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Overlay explicitly given flags (upper-case dests) on the base settings."""
    base = base or get_settings()
    update = {
        key: value for key, value in vars(args).items()
        if key.isupper() and value is not None
    }
    return Settings.model_validate({**base.model_dump(), **update})


def parse_filters(pairs: Sequence[str]) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    for pair in pairs:
        field, sep, value = pair.partition("=")
        if not sep or not field:
            raise ValueError(f"Filter must look like FIELD=VALUE, got {pair!r}")
        filters[field] = int(value) if value.lstrip("-").isdigit() else value
    return filters


def run_command(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "list":
        count = count_artifacts(settings.DATA_DIR)
        logger.info("path in dir: %s, found json files: %d", settings.DATA_DIR, count)
        return 0

    if args.command == "download":
        Path(settings.DATA_DIR).mkdir(parents=True, exist_ok=True)
        negative_cache = None
        if settings.ENABLE_DB:
            negative_cache = NegativeCache(open_store(settings.SQLITE_PATH, settings.SQLITE_TIMEOUT))
        runner = DownloadRunner(settings, negative_cache=negative_cache)
        runner.setup_signal_handlers()
        runner.run()
        return 0

    store = open_store(settings.SQLITE_PATH, settings.SQLITE_TIMEOUT)

    if args.command in ("save", "filter"):
        if not Path(settings.DATA_DIR).is_dir():
            logger.error("Data directory not found: %s", settings.DATA_DIR)
            return 1
        if args.command == "save":
            runner = TransformerRunner(settings, store, get_profile("molecular"))
            runner.run(resume=args.resume)
        else:
            runner = TransformerRunner(settings, store, get_profile(args.filter_name))
            runner.run()
        return 0

    if args.command == "export":
        export_jsonl(store, args.collection, args.output, parse_filters(args.filters))
        return 0

    if args.command == "forget":
        cache = NegativeCache(store)
        for cid in args.cids:
            removed = cache.forget(cid)
            logger.info("forget cid=%d: %s", cid, "removed" if removed else "not cached")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(args)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
    logger.info("%s %s: command=%s", settings.APP_NAME, __version__, args.command)

    try:
        return run_command(args, settings)
    except StoreInitError as e:
        logger.error("Store initialization failed: %s", e)
        return 1
    except StoreWriteError as e:
        logger.error("Store write failed: %s", e)
        return 1
    except OSError as e:
        logger.error("Filesystem setup failed: %s", e)
        return 1
    except ValueError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())

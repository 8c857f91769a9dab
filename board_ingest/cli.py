from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Sequence

from .batch import BatchIngestionProcessor
from .config import (
    RuntimeSecrets,
    batch_settings,
    config_sha256,
    load_config,
    resolve_runtime_secrets,
    retry_config,
)
from .config_schema import AppConfig
from .content_client import ContentFetcher, ScrapeCreatorsClient
from .errors import ConfigError, FetchError, PersistenceError
from .identifiers import detect_platform
from .ingest import save_post_to_board, sync_profile
from .membership import BoardMembershipGuard
from .post import PLATFORMS
from .report import build_run_report, format_run_report, format_summary
from .retry import RetryConfig
from .run_log import RunLogger
from .storage import SQLiteDatastore
from .transcripts import backfill_transcripts
from .upsert import UpsertEngine


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Path to YAML config file (defaults apply when omitted).")
    p.add_argument("--db", help="SQLite database path (overrides storage.path).")
    p.add_argument("--log", help="JSONL run log path (defaults to run.log beside the database).")
    p.add_argument(
        "--offline",
        action="store_true",
        help="Use canned payloads instead of the content API.",
    )
    p.add_argument("--verbose", action="store_true", help="Echo log events to stderr.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="board_ingest")

    subparsers = parser.add_subparsers(dest="command", required=True)

    imp = subparsers.add_parser(
        "import",
        help="Import a list of post URLs into a board, one at a time.",
    )
    imp.add_argument("urls_file", help="Text file with one post URL per line.")
    imp.add_argument("--board", help="Target board id (overrides batch.target_board_id).")
    imp.add_argument("--delay-ms", type=int, help="Delay between items in milliseconds.")
    imp.add_argument("--start", type=int, help="Skip this many URLs (resume a previous run).")
    imp.add_argument("--platform", choices=PLATFORMS, help="Only import URLs from this platform.")
    _add_common(imp)
    imp.set_defaults(_handler=_cmd_import)

    save = subparsers.add_parser("save", help="Save a single post URL to a board.")
    save.add_argument("url")
    save.add_argument("--board", help="Target board id (overrides batch.target_board_id).")
    _add_common(save)
    save.set_defaults(_handler=_cmd_save)

    sync = subparsers.add_parser(
        "sync-profile",
        help="Refresh a creator profile and upsert their latest posts.",
    )
    sync.add_argument("handle")
    sync.add_argument("--platform", choices=PLATFORMS, required=True)
    sync.add_argument("--count", type=int, default=10, help="Number of recent posts to fetch.")
    _add_common(sync)
    sync.set_defaults(_handler=_cmd_sync_profile)

    back = subparsers.add_parser(
        "backfill-transcripts",
        help="Fetch transcripts for a board's posts that have none.",
    )
    back.add_argument("--board", help="Board id (overrides batch.target_board_id).")
    back.add_argument("--delay-ms", type=int, help="Delay between API calls in milliseconds.")
    _add_common(back)
    back.set_defaults(_handler=_cmd_backfill)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _load(args: argparse.Namespace) -> tuple[AppConfig, RuntimeSecrets]:
    cfg = load_config(args.config) if args.config else AppConfig()
    if args.offline:
        return cfg, RuntimeSecrets(api_key="offline")
    return cfg, resolve_runtime_secrets(cfg)


def _db_path(args: argparse.Namespace, cfg: AppConfig) -> Path:
    return Path(args.db or cfg.storage.path)


def _log_path(args: argparse.Namespace, db_path: Path) -> Path:
    return Path(args.log) if args.log else db_path.parent / "run.log"


def _open_logger(args: argparse.Namespace, db_path: Path) -> RunLogger:
    return RunLogger.open(
        _log_path(args, db_path),
        echo=sys.stderr if args.verbose else None,
    )


def _build_fetcher(
    cfg: AppConfig,
    secrets: RuntimeSecrets,
    *,
    offline: bool,
    retry: RetryConfig,
) -> ContentFetcher:
    if offline:
        from .offline import OfflineContentFetcher

        return OfflineContentFetcher()

    if cfg.api.backend == "apify":
        from .apify_fetcher import ApifyContentFetcher

        return ApifyContentFetcher(
            secrets.apify_token or "",
            actor_id=cfg.api.apify_actor,
            retry=retry,
        )

    return ScrapeCreatorsClient(
        secrets.api_key or "",
        base_url=cfg.api.base_url,
        timeout_seconds=cfg.api.timeout_seconds,
        retry=retry,
    )


def _close(obj: Any) -> None:
    close = getattr(obj, "close", None)
    if callable(close):
        close()


def _read_urls(path: str | Path) -> list[str]:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read URL list: {p}: {e}") from e

    out: list[str] = []
    for line in text.splitlines():
        s = line.strip()
        if s and not s.startswith("#"):
            out.append(s)
    return out


def _cmd_import(args: argparse.Namespace) -> int:
    cfg, secrets = _load(args)
    settings = batch_settings(
        cfg,
        secrets,
        board_id=args.board,
        delay_ms=args.delay_ms,
        start_offset=args.start,
    )

    urls = _read_urls(args.urls_file)
    if args.platform:
        urls = [u for u in urls if detect_platform(u) == args.platform]

    db_path = _db_path(args, cfg)
    retry = retry_config(cfg)

    with _open_logger(args, db_path) as log:
        log.info(
            "import_command_started",
            urls_file=str(args.urls_file),
            urls=len(urls),
            config_hash=config_sha256(cfg),
            backend="offline" if args.offline else cfg.api.backend,
            db=str(db_path),
        )

        fetcher = _build_fetcher(cfg, secrets, offline=args.offline, retry=retry)
        try:
            with SQLiteDatastore.open(db_path) as store:
                processor = BatchIngestionProcessor(
                    settings,
                    store=store,
                    fetcher=fetcher,
                    logger=log,
                    retry=retry,
                )
                summary = processor.process_urls(urls)
        except Exception as e:
            log.exception("import_command_failed", exc=e)
            raise
        finally:
            _close(fetcher)

        report = build_run_report(summary)

    print(format_summary(summary))
    if report["recommendations"]:
        print(format_run_report(report))
    print(f"run_log={_log_path(args, db_path)}")
    return 0


def _board_or_config(args: argparse.Namespace, cfg: AppConfig) -> str:
    board = (args.board or "").strip() or cfg.batch.target_board_id
    if not board:
        raise ConfigError("A target board id is required (batch.target_board_id or --board)")
    return board


def _cmd_save(args: argparse.Namespace) -> int:
    cfg, secrets = _load(args)
    board = _board_or_config(args, cfg)
    db_path = _db_path(args, cfg)
    retry = retry_config(cfg)

    with _open_logger(args, db_path) as log:
        fetcher = _build_fetcher(cfg, secrets, offline=args.offline, retry=retry)
        try:
            with SQLiteDatastore.open(db_path) as store:
                result = save_post_to_board(
                    args.url,
                    board,
                    fetcher=fetcher,
                    engine=UpsertEngine(store, retry=retry, logger=log),
                    guard=BoardMembershipGuard(store),
                    logger=log,
                )
        finally:
            _close(fetcher)

    print(f"success={str(result.success).lower()}")
    print(f"already_saved={str(result.already_saved).lower()}")
    print(f"message={result.message}")
    if result.post_id:
        print(f"post_id={result.post_id}")
    if result.error:
        print(f"error={result.error}")
    return 0 if result.success else 3


def _cmd_sync_profile(args: argparse.Namespace) -> int:
    cfg, secrets = _load(args)
    db_path = _db_path(args, cfg)
    retry = retry_config(cfg)

    with _open_logger(args, db_path) as log:
        fetcher = _build_fetcher(cfg, secrets, offline=args.offline, retry=retry)
        try:
            with SQLiteDatastore.open(db_path) as store:
                result = sync_profile(
                    args.handle,
                    args.platform,
                    fetcher=fetcher,
                    engine=UpsertEngine(store, retry=retry, logger=log),
                    count=args.count,
                    logger=log,
                )
        finally:
            _close(fetcher)

    print(f"profile_id={result.profile_id}")
    print(f"handle={result.handle}")
    print(f"platform={result.platform}")
    print(f"new_posts={result.new_posts}")
    print(f"updated_posts={result.updated_posts}")
    print(f"failed_posts={result.failed_posts}")
    return 0


def _cmd_backfill(args: argparse.Namespace) -> int:
    cfg, secrets = _load(args)
    board = _board_or_config(args, cfg)
    db_path = _db_path(args, cfg)
    retry = retry_config(cfg)
    delay_ms = cfg.transcripts.inter_item_delay_ms if args.delay_ms is None else int(args.delay_ms)
    if delay_ms < 0:
        raise ConfigError("--delay-ms must be >= 0")

    with _open_logger(args, db_path) as log:
        fetcher = _build_fetcher(cfg, secrets, offline=args.offline, retry=retry)
        try:
            with SQLiteDatastore.open(db_path) as store:
                result = backfill_transcripts(
                    board,
                    store=store,
                    fetcher=fetcher,
                    platforms=cfg.transcripts.platforms,
                    language=cfg.transcripts.language,
                    delay_ms=delay_ms,
                    logger=log,
                )
        finally:
            _close(fetcher)

    for key, value in result.as_dict().items():
        print(f"{key}={value}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (FetchError, PersistenceError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1

#!/usr/bin/env python3
"""saveflow: saved-article processing pipeline powered by PydanticAI.

Saved URLs are queued, extracted through a reader service, analyzed by an
LLM, and rolled up into per-user daily digests.

Commands:
    submit       Save a URL for a user and queue its extraction
    dispatch     Run one dispatch cycle and print its summary
    run          Dispatch continuously (-c) with scheduled daily digests
    digest       Generate daily digests (default: yesterday, all users)
    status       Show configuration, queue and article counts
    articles     List saved articles, newest first
    article      Show one article with its jobs
    show-digest  Print a stored digest as markdown
    settings     Set a user's push token and notification opt-in

Examples:
    python main.py submit https://example.com/post --user alice
    python main.py articles --user alice --status failed
    python main.py dispatch
    python main.py run -c
    python main.py digest --date 2024-05-01
    python main.py show-digest --user alice --date 2024-05-01

Environment:
    LLM_API_KEY: Required for remote models
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from datetime import date, datetime

from config import Config
from database import Database
from models.article import ArticleStatus
from models.digest import UserSettings
from observability.logging import setup_logging

logger = logging.getLogger(__name__)


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_submit(args: argparse.Namespace, config: Config) -> int:
    """Create an article and its extract job."""
    if not args.url.startswith(("http://", "https://")):
        print(f"Error: URL must start with http:// or https:// ({args.url})", file=sys.stderr)
        return 1

    with Database(config.db_path) as db:
        try:
            article, job = db.submit_article(
                args.user, args.url, title=args.title, article_id=args.article_id
            )
        except sqlite3.IntegrityError:
            print(f"Error: article id already exists ({args.article_id})", file=sys.stderr)
            return 1

    _print_json({"article_id": article.id, "job_id": job.id, "status": article.status.value})
    return 0


def cmd_dispatch(args: argparse.Namespace, config: Config) -> int:
    """Run one dispatch cycle."""
    from pipeline import DispatchError, dispatch_once

    try:
        result = asyncio.run(dispatch_once(config))
    except DispatchError as e:
        logger.error("Dispatch failed | error=%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_json(result)
    return 0


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    """Run the pipeline once or continuously.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success)
    """
    from pipeline import dispatch_once, run_continuous

    if args.interval:
        config.poll_interval_seconds = args.interval

    try:
        if args.continuous:
            logger.info("Starting continuous mode...")
            try:
                asyncio.run(run_continuous(config))
            except KeyboardInterrupt:
                logger.info("Stopped by user (Ctrl+C)")
            return 0
        result = asyncio.run(dispatch_once(config))
        logger.info("Run complete | result=%s", json.dumps(result, ensure_ascii=False))
        return 0
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
        return 130
    except Exception as e:
        logger.error("Pipeline failed | error=%s type=%s", e, type(e).__name__, exc_info=True)
        return 1


def cmd_digest(args: argparse.Namespace, config: Config) -> int:
    """Generate daily digests for one or all users."""
    from pipeline import run_digest

    if args.date:
        try:
            date.fromisoformat(args.date)
        except ValueError:
            print(f"Error: --date must be YYYY-MM-DD ({args.date})", file=sys.stderr)
            return 1

    result = asyncio.run(run_digest(config, user_id=args.user, target_date=args.date))
    _print_json(result)
    return 0 if all(r["success"] for r in result["results"]) else 2


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration and database statistics."""
    with Database(config.db_path) as db:
        queue = db.queue_stats()
        articles = db.article_stats()

    status = {
        "config": {
            "analysis_model": config.analysis_model,
            "digest_model": config.digest_model,
            "reader_base_url": config.reader_base_url,
            "max_concurrent": config.max_concurrent,
            "max_retries": config.max_retries,
            "retry_base_delay": config.retry_base_delay,
            "poll_interval": config.poll_interval_seconds,
            "digest_timezone": config.digest_timezone,
            "digest_hour": config.digest_hour,
            "push_gateway": bool(config.push_gateway_url),
            "enable_logfire": config.enable_logfire,
        },
        "database": {
            "path": str(config.db_path),
            "queue": queue,
            "articles": articles,
        },
    }
    _print_json(status)
    return 0


def cmd_articles(args: argparse.Namespace, config: Config) -> int:
    """List saved articles, newest first."""
    status = ArticleStatus(args.status) if args.status else None
    with Database(config.db_path) as db:
        articles = db.list_articles(user_id=args.user, status=status, limit=args.limit)

    if not articles:
        print("No articles found.")
        return 0

    for article in articles:
        saved = datetime.fromtimestamp(article.created_at).strftime("%Y-%m-%d %H:%M")
        print(f"{article.id}  {article.status.value:<10} {saved}  {article.user_id}  {article.title or article.url}")
    return 0


def cmd_article(args: argparse.Namespace, config: Config) -> int:
    """Show one article and its queue history."""
    with Database(config.db_path) as db:
        article = db.get_article(args.article_id)
        if article is None:
            print(f"Article not found: {args.article_id}", file=sys.stderr)
            return 1
        jobs = db.list_jobs(article_id=article.id)

    created = datetime.fromtimestamp(article.created_at).strftime("%Y-%m-%d %H:%M")
    print(f"\n{article.title or article.url}")
    print(f"   URL: {article.url}")
    print(f"   Status: {article.status.value}")
    print(f"   Saved: {created} by {article.user_id}")
    if article.published_time:
        print(f"   Published: {article.published_time}")
    if article.error_message:
        print(f"   Error: {article.error_message}")
    if article.analysis:
        print(f"   Summary: {article.analysis.summary}")
        print(f"   Topics: {', '.join(article.analysis.topics)}")
        print(f"   Sentiment: {article.analysis.sentiment}")
        print(f"   Reading time: {article.analysis.reading_time_minutes} min")
        if article.analysis.image_analyses:
            print(f"   Images described: {len(article.analysis.image_analyses)}")

    print("\n   Jobs:")
    for job in jobs:
        line = f"   - {job.id[:8]} {job.kind:<8} {job.status.value:<10} attempts={job.attempts}"
        if job.last_error:
            line += f" error={job.last_error[:80]}"
        print(line)
    print()
    return 0


def cmd_show_digest(args: argparse.Namespace, config: Config) -> int:
    """Print a stored digest as markdown."""
    from notifications import render_digest_markdown

    with Database(config.db_path) as db:
        digest = db.get_digest(args.user, args.date)

    if digest is None:
        print(f"No digest for user {args.user} on {args.date}.")
        return 1
    print(render_digest_markdown(digest))
    return 0


def cmd_settings(args: argparse.Namespace, config: Config) -> int:
    """Create or update a user's notification settings."""
    with Database(config.db_path) as db:
        current = db.get_user_settings(args.user) or UserSettings(user_id=args.user)
        updates = {}
        if args.push_token is not None:
            updates["push_token"] = args.push_token or None
        if args.notifications is not None:
            updates["push_notifications"] = args.notifications == "on"
        if args.timezone is not None:
            updates["timezone"] = args.timezone or None
        settings = current.model_copy(update=updates)
        db.upsert_user_settings(settings)

    _print_json(settings.model_dump())
    return 0


def main() -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(
        description="saveflow: saved-article processing pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # submit command
    submit_parser = subparsers.add_parser("submit", help="Save a URL and queue it")
    submit_parser.add_argument("url", help="Article URL (http or https)")
    submit_parser.add_argument("--user", required=True, help="Owning user id")
    submit_parser.add_argument("--title", help="Optional title from the client")
    submit_parser.add_argument("--article-id", help="Client-chosen article id (default: generated)")

    # dispatch command
    subparsers.add_parser("dispatch", help="Run one dispatch cycle")

    # run command
    run_parser = subparsers.add_parser("run", help="Run the pipeline")
    run_parser.add_argument(
        "-c", "--continuous",
        action="store_true",
        help="Run continuously with polling and scheduled digests",
    )
    run_parser.add_argument(
        "--interval",
        type=int,
        help="Polling interval in seconds (overrides POLL_INTERVAL_SECONDS)",
    )

    # digest command
    digest_parser = subparsers.add_parser("digest", help="Generate daily digests")
    digest_parser.add_argument("--user", help="Only this user (default: all users with settings)")
    digest_parser.add_argument("--date", help="Calendar day YYYY-MM-DD (default: yesterday)")

    # status command
    subparsers.add_parser("status", help="Show configuration and statistics")

    # articles command
    articles_parser = subparsers.add_parser("articles", help="List saved articles")
    articles_parser.add_argument("--user", help="Only this user")
    articles_parser.add_argument(
        "--status",
        choices=[s.value for s in ArticleStatus],
        help="Only articles in this status",
    )
    articles_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")

    # article command
    article_parser = subparsers.add_parser("article", help="Show one article")
    article_parser.add_argument("article_id", help="Article id")

    # show-digest command
    show_parser = subparsers.add_parser("show-digest", help="Print a stored digest")
    show_parser.add_argument("--user", required=True, help="User id")
    show_parser.add_argument("--date", required=True, help="Calendar day YYYY-MM-DD")

    # settings command
    settings_parser = subparsers.add_parser("settings", help="Set user notification settings")
    settings_parser.add_argument("--user", required=True, help="User id")
    settings_parser.add_argument("--push-token", help="Device push token (empty string clears)")
    settings_parser.add_argument(
        "--notifications",
        choices=["on", "off"],
        help="Enable or disable digest push notifications",
    )
    settings_parser.add_argument("--timezone", help="User timezone (informational)")

    args = parser.parse_args()

    # Load configuration
    config = Config.load()

    # Setup logging
    setup_logging(config, verbose=args.verbose)

    # Commands that call external services need a valid configuration
    if args.command in ("dispatch", "run", "digest"):
        error = config.validate()
        if error:
            print(f"Configuration error: {error}", file=sys.stderr)
            return 1

    commands = {
        "submit": cmd_submit,
        "dispatch": cmd_dispatch,
        "run": cmd_run,
        "digest": cmd_digest,
        "status": cmd_status,
        "articles": cmd_articles,
        "article": cmd_article,
        "show-digest": cmd_show_digest,
        "settings": cmd_settings,
    }

    if args.command in commands:
        try:
            return commands[args.command](args, config)
        except Exception as e:
            logger.error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())

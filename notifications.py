"""Digest notifications: push messages and markdown export.

Push delivery is one-way and best effort. A gateway error, timeout or
missing configuration is logged and reported as False; it never raises
and never affects the digest that triggered it.

Push payload (POST {push_gateway_url}, Bearer {push_gateway_token}):
    {"token": "<device token>",
     "notification": {"title": "...", "body": "..."},
     "data": {"type": "digest_ready", "digest_id": "...", "date": "YYYY-MM-DD"}}
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import aiohttp

from config import Config
from models.digest import Digest, UserSettings
from tools.utils import create_ssl_context, http_timeout

logger = logging.getLogger(__name__)

DIGEST_READY_TITLE = "Your Daily Digest is Ready"


@dataclass
class PushMessage:
    """One push notification."""

    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


def build_digest_message(digest: Digest) -> PushMessage:
    """Summarize a digest as article count plus its top two themes."""
    body = f"{digest.article_count} articles summarized."
    themes = ", ".join(digest.top_themes[:2])
    if themes:
        body = f"{body} {themes}"
    return PushMessage(
        title=DIGEST_READY_TITLE,
        body=body,
        data={"type": "digest_ready", "digest_id": digest.id, "date": digest.date},
    )


async def send_push(token: str, message: PushMessage, config: Config) -> bool:
    """POST one push message to the gateway.

    Returns:
        True if the gateway accepted the message
    """
    if not config.push_gateway_url:
        logger.info(
            "Push gateway not configured, message logged only | title=%s body=%s",
            message.title,
            message.body,
        )
        return False

    payload = {
        "token": token,
        "notification": {"title": message.title, "body": message.body},
        "data": message.data,
    }
    headers = {}
    if config.push_gateway_token:
        headers["Authorization"] = f"Bearer {config.push_gateway_token}"

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                config.push_gateway_url,
                json=payload,
                headers=headers,
                timeout=http_timeout(config.push_timeout_seconds),
                ssl=create_ssl_context(),
            ) as resp:
                if resp.status < 300:
                    logger.debug("Push sent | type=%s", message.data.get("type", "-"))
                    return True
                logger.warning("Push failed | status=%d", resp.status)
                return False
    except asyncio.TimeoutError:
        logger.warning("Push timeout | url=%s", config.push_gateway_url[:50])
        return False
    except Exception as e:
        logger.error("Push error: %s (%s)", e, type(e).__name__, exc_info=True)
        return False


async def notify_digest(digest: Digest, settings: UserSettings | None, config: Config) -> bool:
    """Send the digest-ready push if the user opted in and has a token."""
    if settings is None or not settings.can_notify:
        logger.debug("Push skipped, user not opted in | user=%s", digest.user_id)
        return False
    ok = await send_push(settings.push_token or "", build_digest_message(digest), config)
    if ok:
        logger.info("Digest push sent | user=%s date=%s", digest.user_id, digest.date)
    return ok


def render_digest_markdown(digest: Digest) -> str:
    """Render a digest as a human-readable markdown document."""
    lines = [
        f"# Daily Digest ({digest.date})",
        "",
        f"**Articles:** {digest.article_count}",
    ]
    if digest.updated_at:
        updated = datetime.fromtimestamp(digest.updated_at).strftime("%Y-%m-%d %H:%M:%S")
        lines.append(f"**Generated:** {updated}")

    if digest.overall_summary:
        lines.extend(["", "## Overview", "", digest.overall_summary])

    if digest.top_themes:
        lines.extend(["", "## Top Themes", ""])
        lines.extend(f"{i}. {theme}" for i, theme in enumerate(digest.top_themes, start=1))

    if digest.articles:
        lines.extend(["", "## Articles"])
        for entry in digest.articles:
            title = entry.title or "Untitled"
            heading = f"[{title}]({entry.url})" if entry.url else title
            lines.extend(["", f"### {heading}", ""])
            if entry.summary:
                lines.append(entry.summary)
            if entry.highlights:
                lines.append("")
                lines.extend(f"- {h}" for h in entry.highlights)

    if digest.ai_insights:
        lines.extend(["", "## Insight", "", digest.ai_insights])

    return "\n".join(lines) + "\n"


def save_digest_markdown(digest: Digest, export_dir: Path) -> Path | None:
    """Write ``{date}_{user}.md`` to ``export_dir``; errors are logged, not raised."""
    try:
        export_dir.mkdir(parents=True, exist_ok=True)
        safe_user = "".join(c if c.isalnum() or c in "-_" else "_" for c in digest.user_id)
        filepath = export_dir / f"{digest.date}_{safe_user}.md"
        filepath.write_text(render_digest_markdown(digest), encoding="utf-8")
        logger.info("Digest exported | file=%s", filepath.name)
        return filepath
    except OSError as e:
        logger.error("Digest export failed: %s", e, exc_info=True)
        return None

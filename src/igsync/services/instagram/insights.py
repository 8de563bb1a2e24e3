"""Parsing and derived metrics for Graph API insight payloads."""

import logging
from datetime import date, datetime, timezone
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "id,username,name,biography,followers_count,follows_count,"
    "media_count,profile_picture_url,website"
)
PROFILE_SAFE_FIELDS = "id,username,name,followers_count,follows_count,media_count,profile_picture_url"

MEDIA_FIELDS = (
    "id,caption,media_type,media_product_type,media_url,permalink,"
    "thumbnail_url,timestamp,like_count,comments_count"
)
STORY_FIELDS = "id,media_type,media_url,permalink,timestamp"

IMAGE_METRIC_SETS = (
    ("reach", "views", "saved", "shares", "total_interactions"),
    ("reach", "saved"),
)
VIDEO_METRIC_SETS = (
    ("reach", "views", "saved", "shares", "plays", "total_interactions"),
    ("reach", "views", "saved"),
    ("reach",),
)
STORY_METRIC_SETS = (
    ("views", "reach", "replies", "exits", "taps_forward", "taps_back"),
    ("impressions", "reach", "replies", "exits", "taps_forward", "taps_back"),
)

# Account-level daily metrics, requested in independent groups so that one
# unsupported metric cannot fail the others. Each group lists its metric sets
# richest first.
DAILY_METRIC_GROUPS: dict[str, tuple[tuple[str, ...], ...]] = {
    "reach": (("reach", "profile_views"), ("reach",)),
    "views": (("views",), ("impressions",)),
    "accounts_engaged": (("accounts_engaged",),),
    "follower_count": (("follower_count",),),
    "contacts": (
        (
            "website_clicks",
            "text_message_clicks",
            "email_contacts",
            "phone_call_clicks",
            "get_directions_clicks",
        ),
        ("website_clicks",),
    ),
}

# Upstream names that map onto a differently named column
DAILY_METRIC_ALIASES = {"views": "impressions"}

DEMOGRAPHIC_METRICS = ("follower_demographics", "engaged_audience_demographics")
DEMOGRAPHIC_BREAKDOWNS = ("age", "gender", "country", "city")

SCORE_WEIGHTS = {"likes": 1, "comments": 2, "saves": 3, "shares": 4}


def as_number(value: Any) -> Optional[float]:
    """Return ``value`` when it is a real number, otherwise None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


def parse_graph_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse Graph timestamps such as ``2026-01-05T08:00:00+0000`` to aware UTC."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _metric_value(item: dict[str, Any]) -> Optional[float]:
    values = item.get("values")
    if isinstance(values, list) and values:
        last = values[-1]
        if isinstance(last, dict):
            number = as_number(last.get("value"))
            if number is not None:
                return number
    total = item.get("total_value")
    if isinstance(total, dict):
        return as_number(total.get("value"))
    return None


def parse_insight_values(payload: dict[str, Any]) -> dict[str, float]:
    """Map metric name to its latest numeric value."""
    out: dict[str, float] = {}
    for item in payload.get("data") or []:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str):
            continue
        value = _metric_value(item)
        if value is not None:
            out[item["name"]] = value
    return out


def normalize_media_insights(raw: dict[str, float]) -> dict[str, float]:
    """Fold renamed metrics onto their current names."""
    normalized = dict(raw)
    saved = raw.get("saved", raw.get("saves"))
    if saved is not None:
        normalized["saved"] = saved
        normalized.setdefault("saves", saved)
    views = raw.get("views", raw.get("plays", raw.get("video_views")))
    if views is not None:
        normalized["views"] = views
    interactions = raw.get("total_interactions", raw.get("engagement"))
    if interactions is not None:
        normalized["total_interactions"] = interactions
    return normalized


def media_metric_sets(media_type: Optional[str], product_type: Optional[str] = None):
    """Metric sets for a media item, or None when the type has no insights endpoint."""
    if media_type == "CAROUSEL_ALBUM":
        return None
    if media_type == "VIDEO" or product_type in ("REELS", "REEL"):
        return VIDEO_METRIC_SETS
    return IMAGE_METRIC_SETS


def is_reel(media: dict[str, Any]) -> bool:
    return media.get("media_product_type") in ("REELS", "REEL")


def _pick(raw: dict[str, float], *keys: str) -> tuple[Optional[float], Optional[str]]:
    for key in keys:
        value = as_number(raw.get(key))
        if value is not None:
            return value, key
    return None, None


def compute_media_metrics(
    media: dict[str, Any],
    insights: dict[str, float],
    followers_count: Optional[int],
) -> dict[str, Any]:
    """Engagement, weighted score and rates for one media item.

    Missing saves/shares count as zero in engagement and score but are listed
    in ``missing_metrics`` so partial items can be told apart.
    """
    likes = as_number(media.get("like_count")) or 0
    comments = as_number(media.get("comments_count")) or 0
    saves, _ = _pick(insights, "saved", "saves")
    shares, _ = _pick(insights, "shares")
    reach, _ = _pick(insights, "reach")
    views, views_source = _pick(insights, "views", "plays", "video_views", "impressions")
    total_interactions, _ = _pick(insights, "total_interactions", "engagement")

    engagement = likes + comments + (saves or 0) + (shares or 0)
    score = (
        likes * SCORE_WEIGHTS["likes"]
        + comments * SCORE_WEIGHTS["comments"]
        + (saves or 0) * SCORE_WEIGHTS["saves"]
        + (shares or 0) * SCORE_WEIGHTS["shares"]
    )

    followers = followers_count if followers_count and followers_count > 0 else None
    missing = [
        name
        for name, value in (("saves", saves), ("shares", shares), ("reach", reach), ("views", views))
        if value is None
    ]

    return {
        "likes": likes,
        "comments": comments,
        "saves": saves,
        "shares": shares,
        "reach": reach,
        "views": views,
        "views_source": views_source,
        "total_interactions": total_interactions,
        "engagement": engagement,
        "score": score,
        "er": engagement / followers * 100 if followers else None,
        "reach_rate": reach / followers * 100 if followers and reach is not None else None,
        "views_rate": views / reach * 100 if reach and views is not None else None,
        "interactions_per_1000_reach": engagement / reach * 1000 if reach else None,
        "has_insights": bool(insights),
        "is_partial": bool(missing),
        "missing_metrics": missing,
    }


def iter_daily_values(payload: dict[str, Any]) -> Iterator[tuple[str, date, float]]:
    """Yield ``(metric, day, value)`` for every dated numeric value.

    The day is the UTC calendar date of the value's ``end_time``.
    """
    for item in payload.get("data") or []:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str):
            continue
        metric = DAILY_METRIC_ALIASES.get(name, name)
        for entry in item.get("values") or []:
            if not isinstance(entry, dict):
                continue
            value = as_number(entry.get("value"))
            end_time = parse_graph_timestamp(entry.get("end_time"))
            if value is None or end_time is None:
                continue
            yield metric, end_time.date(), value


def parse_demographics(payload: dict[str, Any]) -> dict[str, float]:
    """Flatten a ``total_value.breakdowns`` payload to ``{dimension: value}``."""
    values: dict[str, float] = {}
    for item in payload.get("data") or []:
        total = item.get("total_value") if isinstance(item, dict) else None
        for breakdown in (total or {}).get("breakdowns") or []:
            for result in breakdown.get("results") or []:
                dimensions = result.get("dimension_values") or []
                key = ".".join(str(d) for d in dimensions)
                value = as_number(result.get("value"))
                if key and value:
                    values[key] = value
        if values:
            break
    return values


def parse_online_followers(payload: dict[str, Any]) -> dict[str, float]:
    """Hour of day -> online follower count from the latest value."""
    for item in payload.get("data") or []:
        for entry in reversed(item.get("values") or []):
            value = entry.get("value") if isinstance(entry, dict) else None
            if isinstance(value, dict) and value:
                return {str(hour): count for hour, count in value.items() if as_number(count) is not None}
    return {}


def story_completion_rate(views: Optional[float], exits: Optional[float]) -> int:
    if not views:
        return 0
    return round((1 - (exits or 0) / views) * 100)


def normalize_story_insights(raw: dict[str, float]) -> dict[str, Any]:
    insights: dict[str, Any] = dict(raw)
    views = raw.get("views", raw.get("impressions", 0))
    insights["views"] = views
    insights["completion_rate"] = story_completion_rate(views, raw.get("exits"))
    return insights


def aggregate_stories(stories: list[dict[str, Any]]) -> dict[str, Any]:
    """Totals over all stories plus the overall completion rate."""
    totals = {
        "total_stories": 0,
        "total_views": 0,
        "total_impressions": 0,
        "total_reach": 0,
        "total_replies": 0,
        "total_exits": 0,
        "total_taps_forward": 0,
        "total_taps_back": 0,
        "avg_completion_rate": 0,
    }
    for story in stories:
        insights = story.get("insights") or {}
        totals["total_stories"] += 1
        totals["total_views"] += as_number(insights.get("views")) or as_number(insights.get("impressions")) or 0
        for key in ("reach", "replies", "exits", "taps_forward", "taps_back"):
            totals[f"total_{key}"] += as_number(insights.get(key)) or 0

    totals["total_impressions"] = totals["total_views"]
    totals["avg_completion_rate"] = story_completion_rate(totals["total_views"], totals["total_exits"])
    return totals

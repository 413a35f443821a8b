"""
Per-platform content rules: length and hashtag limits, media requirements.

``format_content`` adapts post text to a platform before publishing and
``validate_content`` reports rule violations before a job is queued.
Unknown platforms pass through ``format_content`` unchanged and fail
``validate_content``.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

HASHTAG_RE = re.compile(r"#\w+")

# Common emoji blocks; a post containing none gets a leading sparkle on Instagram
EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF\u2600-\u26FF\u2700-\u27BF]"
)


@dataclass(frozen=True)
class PlatformFormatting:
    """Publishing constraints of one platform.

    Attributes:
        max_length: Maximum post length in characters.
        hashtag_limit: Maximum number of hashtags kept.
        media_required: Whether at least one media file is mandatory.
        media_types: Accepted media kinds.
        max_media_count: Maximum number of attached media files.
    """

    max_length: int
    hashtag_limit: int
    media_required: bool = False
    media_types: Tuple[str, ...] = field(default=("image", "video"))
    max_media_count: int = 10


PLATFORM_FORMATS: Dict[str, PlatformFormatting] = {
    "facebook": PlatformFormatting(
        max_length=63206,
        hashtag_limit=30,
        media_required=False,
        media_types=("image", "video"),
        max_media_count=10,
    ),
    "instagram": PlatformFormatting(
        max_length=2200,
        hashtag_limit=30,
        media_required=True,
        media_types=("image", "video"),
        max_media_count=10,
    ),
    "linkedin": PlatformFormatting(
        max_length=3000,
        hashtag_limit=5,
        media_required=False,
        media_types=("image", "video", "document"),
        max_media_count=9,
    ),
}


def get_platform_format(platform: str) -> Optional[PlatformFormatting]:
    return PLATFORM_FORMATS.get(platform.lower())


def extract_hashtags(content: str) -> List[str]:
    return HASHTAG_RE.findall(content)


def limit_hashtags(content: str, limit: int) -> str:
    """Drop every hashtag after the first *limit*."""
    seen = 0

    def _keep_first(match: "re.Match[str]") -> str:
        nonlocal seen
        seen += 1
        return match.group(0) if seen <= limit else ""

    return HASHTAG_RE.sub(_keep_first, content)


def _collapse_blank_lines(content: str) -> str:
    return re.sub(r"\n{3,}", "\n\n", content)


def _format_for_instagram(content: str) -> str:
    # One sentence per paragraph reads better in the feed
    content = re.sub(r"([.!?]) ", r"\1\n\n", content)
    if not EMOJI_RE.search(content):
        content = "✨ " + content
    return content


def _format_for_linkedin(content: str) -> str:
    content = _collapse_blank_lines(content)
    return re.sub(r"^[-•]\s*", "• ", content, flags=re.MULTILINE)


def format_content(content: str, platform: str) -> str:
    """Adapt *content* to *platform*'s limits and conventions.

    Truncates over-long text with ``...``, keeps only the first N hashtags
    and applies the platform's layout touches.
    """
    rules = get_platform_format(platform)
    if rules is None:
        return content

    formatted = content
    if len(formatted) > rules.max_length:
        formatted = formatted[: rules.max_length - 3] + "..."

    if len(extract_hashtags(formatted)) > rules.hashtag_limit:
        formatted = limit_hashtags(formatted, rules.hashtag_limit)

    key = platform.lower()
    if key == "instagram":
        formatted = _format_for_instagram(formatted)
    elif key == "linkedin":
        formatted = _format_for_linkedin(formatted)
    elif key == "facebook":
        formatted = _collapse_blank_lines(formatted)

    return formatted


def validate_content(
    content: str,
    platform: str,
    media_files: Sequence[str] = (),
) -> Tuple[bool, List[str]]:
    """Check *content* and *media_files* against *platform*'s rules.

    Returns:
        ``(valid, errors)`` where *errors* lists every violated rule.
    """
    rules = get_platform_format(platform)
    if rules is None:
        return False, [f"Unsupported platform: {platform}"]

    errors: List[str] = []
    if len(content) > rules.max_length:
        errors.append(f"Content too long. Maximum {rules.max_length} characters allowed.")

    if len(extract_hashtags(content)) > rules.hashtag_limit:
        errors.append(f"Too many hashtags. Maximum {rules.hashtag_limit} hashtags allowed.")

    if rules.media_required and not media_files:
        errors.append(f"{platform} requires at least one media file.")

    if len(media_files) > rules.max_media_count:
        errors.append(f"Too many media files. Maximum {rules.max_media_count} files allowed.")

    return not errors, errors


__all__ = [
    "PlatformFormatting",
    "PLATFORM_FORMATS",
    "get_platform_format",
    "extract_hashtags",
    "limit_hashtags",
    "format_content",
    "validate_content",
]

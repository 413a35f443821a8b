"""Platform tooling: content rules and the HTTP publisher."""

from postflow.tools.platform_formats import (
    PLATFORM_FORMATS,
    PlatformFormatting,
    format_content,
    validate_content,
)
from postflow.tools.http_publisher import HttpPlatformPublisher

__all__ = [
    "HttpPlatformPublisher",
    "PLATFORM_FORMATS",
    "PlatformFormatting",
    "format_content",
    "validate_content",
]

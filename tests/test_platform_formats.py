"""Tests for per-platform content formatting and validation."""

import pytest

from postflow.tools.platform_formats import (
    PLATFORM_FORMATS,
    extract_hashtags,
    format_content,
    get_platform_format,
    limit_hashtags,
    validate_content,
)


class TestPlatformRules:
    def test_known_platforms(self):
        assert set(PLATFORM_FORMATS) == {"facebook", "instagram", "linkedin"}

    def test_lookup_is_case_insensitive(self):
        assert get_platform_format("LinkedIn") is PLATFORM_FORMATS["linkedin"]

    def test_unknown_platform(self):
        assert get_platform_format("mastodon") is None


class TestHashtags:
    def test_extract(self):
        assert extract_hashtags("Ship it #python #asyncio today") == ["#python", "#asyncio"]

    def test_limit_keeps_first_n(self):
        assert limit_hashtags("#a #b #c", 2) == "#a #b "


class TestFormatContent:
    def test_unknown_platform_passes_through(self):
        assert format_content("anything\n\n\n\ngoes", "mastodon") == "anything\n\n\n\ngoes"

    def test_overlong_text_is_truncated(self):
        result = format_content("x" * 4000, "linkedin")
        assert len(result) == 3000
        assert result.endswith("...")

    def test_linkedin_hashtags_are_capped(self):
        text = "Post " + " ".join(f"#t{i}" for i in range(8))
        assert len(extract_hashtags(format_content(text, "linkedin"))) == 5

    def test_linkedin_bullets(self):
        assert format_content("Points:\n- one\n- two", "linkedin") == "Points:\n• one\n• two"

    def test_instagram_splits_sentences_and_adds_emoji(self):
        assert format_content("First. Second.", "instagram") == "✨ First.\n\nSecond."

    def test_instagram_keeps_existing_emoji(self):
        assert format_content("Launch day 🚀", "instagram") == "Launch day 🚀"

    def test_facebook_collapses_blank_lines(self):
        assert format_content("a\n\n\n\nb", "facebook") == "a\n\nb"


class TestValidateContent:
    def test_valid_post(self):
        assert validate_content("Hello", "facebook") == (True, [])

    def test_instagram_needs_media(self):
        valid, errors = validate_content("Hello", "instagram")
        assert not valid
        assert errors == ["instagram requires at least one media file."]

    def test_instagram_with_media(self):
        assert validate_content("Hello", "instagram", ["photo.jpg"])[0]

    def test_reports_every_violation(self):
        text = "x" * 3001 + " " + " ".join(f"#t{i}" for i in range(6))
        valid, errors = validate_content(text, "linkedin", [f"{i}.png" for i in range(10)])

        assert not valid
        assert len(errors) == 3

    @pytest.mark.parametrize("platform", ["mastodon", ""])
    def test_unsupported_platform(self, platform):
        valid, errors = validate_content("Hello", platform)
        assert not valid
        assert errors[0].startswith("Unsupported platform")

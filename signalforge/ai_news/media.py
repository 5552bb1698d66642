"""Recognition of video-hosting URLs for entry rendering."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_VIDEO_PATTERNS = (
    re.compile(r"(?:https?://)?(?:www\.|m\.)?youtube\.com/watch\?(?:[^#]*&)?v=([^&\n?#]+)"),
    re.compile(r"(?:https?://)?(?:www\.)?youtu\.be/([^&\n?#/]+)"),
    re.compile(r"(?:https?://)?(?:www\.)?youtube\.com/embed/([^&\n?#/]+)"),
    re.compile(r"(?:https?://)?(?:www\.)?youtube\.com/shorts/([^&\n?#/]+)"),
)


@dataclass(frozen=True)
class VideoInfo:
    video_id: str
    embed_url: str
    thumbnail_url: str
    original_url: str


def video_id(url: str) -> Optional[str]:
    text = (url or "").strip()
    if not text:
        return None
    for pattern in _VIDEO_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1)
    return None


def video_info(url: str) -> Optional[VideoInfo]:
    found = video_id(url)
    if found is None:
        return None
    return VideoInfo(
        video_id=found,
        embed_url=f"https://www.youtube.com/embed/{found}",
        thumbnail_url=f"https://img.youtube.com/vi/{found}/mqdefault.jpg",
        original_url=url,
    )

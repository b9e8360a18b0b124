"""YouTube playlist listing and audio download using yt-dlp."""

from __future__ import annotations

import asyncio
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from ingestrag.core.exceptions import ProviderError
from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import ListingEntry
from ingestrag.core.retry_config import NETWORK_EXCEPTIONS, RetryConfig, create_retry_decorator

if TYPE_CHECKING:
    from ingestrag.core.config import IngestRAGConfig

logger = get_logger(__name__)

_VIDEO_ID = re.compile(r"(?:v=|youtu\.be/|/shorts/|/embed/|/live/)([A-Za-z0-9_-]{11})")
_BARE_ID = re.compile(r"[A-Za-z0-9_-]{11}")

WATCH_URL = "https://www.youtube.com/watch?v={}"


@dataclass
class VideoInfo:
    """One entry of a flat playlist listing."""

    id: str
    title: str
    url: str
    duration: float | None = None
    upload_date: str | None = None


@dataclass
class AudioFile:
    path: Path
    source_url: str
    title: str
    duration: float | None = None


def video_id_from_url(value: str) -> str | None:
    """Return the 11-character video id in a watch/short/embed URL or a bare id."""
    match = _VIDEO_ID.search(value)
    if match:
        return match.group(1)
    return value if _BARE_ID.fullmatch(value) else None


@dataclass
class YdlSettings:
    """Anti-bot and client options shared by every yt-dlp call.

    Attributes:
        cookie_file: Netscape cookie file for signed-in requests.
        po_token: Proof of Origin token; a bare token is sent as ``web.gvs+<token>``.
        impersonate: curl-cffi impersonation target, e.g. ``chrome-120``.
        player_clients: Player clients tried in order.
        js_runtime: Runtime yt-dlp uses to solve signature challenges.
    """

    cookie_file: Path | None = None
    po_token: str | None = None
    impersonate: str | None = "chrome-120"
    player_clients: list[str] = field(default_factory=lambda: ["tv", "web", "mweb"])
    js_runtime: str | None = "deno"

    @classmethod
    def from_config(cls, config: IngestRAGConfig) -> YdlSettings:
        return cls(
            cookie_file=Path(config.youtube_cookie_file) if config.youtube_cookie_file else None,
            po_token=config.youtube_po_token,
            impersonate=config.youtube_impersonate,
            player_clients=list(config.youtube_player_clients),
            js_runtime=config.js_runtime,
        )

    def options(self, **extra: Any) -> dict[str, Any]:
        youtube_args: dict[str, Any] = {"player_client": self.player_clients}
        if self.po_token:
            token = self.po_token if "+" in self.po_token else f"web.gvs+{self.po_token}"
            youtube_args.update(po_token=[token], formats=["missing_pot"])

        opts: dict[str, Any] = {
            "format": "bestaudio[ext=m4a]/bestaudio[ext=webm]/bestaudio/best",
            "quiet": True,
            "no_warnings": True,
            "extractor_args": {"youtube": youtube_args},
        }
        if self.impersonate:
            opts["impersonate"] = _impersonate_target(self.impersonate)
        if self.js_runtime:
            opts["js_runtimes"] = {self.js_runtime: {}}
            opts["remote_components"] = {"ejs:github"}
        if self.cookie_file and self.cookie_file.exists():
            opts["cookiefile"] = str(self.cookie_file)
        opts.update(extra)
        return opts


def _impersonate_target(name: str) -> Any:
    try:
        from yt_dlp.networking.impersonate import ImpersonateTarget
    except ImportError:
        return name
    try:
        return ImpersonateTarget.from_str(name)
    except ValueError:
        return name


class YouTubeSource:
    """Async facade over yt-dlp.

    yt-dlp blocks, so every call runs in a worker thread. Network failures
    are retried with the provider retry policy; anything else surfaces as a
    ProviderError.
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        settings: YdlSettings | None = None,
    ) -> None:
        self._logger = logger.bind(provider="youtube")
        self._retry_config = retry_config or RetryConfig()
        self.settings = settings or YdlSettings()

    def _error(self, e: Exception, operation: str) -> ProviderError:
        if isinstance(e, ProviderError):
            return e
        return ProviderError(
            message=f"youtube {operation} failed: {e}",
            provider="youtube",
            retryable=isinstance(e, NETWORK_EXCEPTIONS),
        )

    async def _extract(
        self, url: str, operation: str, *, download: bool = False, **extra: Any
    ) -> dict[str, Any] | None:
        opts = self.settings.options(**extra)

        @create_retry_decorator(config=self._retry_config, exception_types=NETWORK_EXCEPTIONS)
        def _extract_sync() -> dict[str, Any] | None:
            import yt_dlp

            with yt_dlp.YoutubeDL(cast(Any, opts)) as ydl:
                return cast(dict[str, Any] | None, ydl.extract_info(url, download=download))

        try:
            return await asyncio.to_thread(_extract_sync)
        except Exception as e:
            self._logger.error(
                f"{operation}_failed", url=url, error=str(e), error_type=type(e).__name__
            )
            raise self._error(e, operation) from e

    async def list_playlist(self, playlist_url: str, first: int, last: int) -> list[VideoInfo]:
        """List playlist entries ``first``..``last`` (1-based, inclusive)."""
        info = await self._extract(
            playlist_url,
            "playlist_listing",
            extract_flat="in_playlist",
            lazy_playlist=True,
            skip_download=True,
            playlist_items=f"{first}:{last}",
        )
        videos = [
            VideoInfo(
                id=entry["id"],
                title=entry.get("title") or "Unknown",
                url=WATCH_URL.format(entry["id"]),
                duration=entry.get("duration"),
                upload_date=entry.get("upload_date"),
            )
            for entry in (info or {}).get("entries") or []
            if entry and entry.get("id")
        ]
        self._logger.debug(
            "playlist_listed", url=playlist_url, first=first, last=last, video_count=len(videos)
        )
        return videos

    async def get_upload_date(self, url: str) -> str | None:
        info = await self._extract(url, "video_metadata", skip_download=True)
        return info.get("upload_date") if info else None

    async def download(self, url: str, output_dir: Path, audio_format: str = "mp3") -> AudioFile:
        if not shutil.which("ffmpeg"):
            raise ProviderError(
                message="youtube download failed: ffmpeg is not installed or not in PATH",
                provider="youtube",
                retryable=False,
            )
        output_dir.mkdir(parents=True, exist_ok=True)
        self._logger.info("download_started", url=url)

        info = await self._extract(
            url,
            "download",
            download=True,
            outtmpl=str(output_dir / "%(id)s.%(ext)s"),
            postprocessors=[{"key": "FFmpegExtractAudio", "preferredcodec": audio_format}],
        )
        if info is None:
            raise ProviderError(
                message=f"youtube download failed: no video info for {url}",
                provider="youtube",
                retryable=False,
            )

        audio_path = output_dir / f"{info['id']}.{audio_format}"
        if not audio_path.exists():
            # Some formats skip the post-processor and keep their container.
            candidates = sorted(output_dir.glob(f"{info['id']}.*"))
            if not candidates:
                raise ProviderError(
                    message=f"youtube download failed: no audio file for {info['id']}",
                    provider="youtube",
                    retryable=False,
                )
            audio_path = candidates[0]

        title = info.get("title")
        audio = AudioFile(
            path=audio_path,
            source_url=url,
            title=title if isinstance(title, str) else "Unknown",
            duration=info.get("duration"),
        )
        self._logger.info(
            "download_completed", url=url, video_title=audio.title, duration_seconds=audio.duration
        )
        return audio


class YouTubePlaylistListing:
    """ListingSource over a YouTube playlist, ``page_size`` videos per page.

    Keys are video ids. The sequence is the upload date as YYYYMMDD when the
    flat listing carries one.
    """

    def __init__(self, source: YouTubeSource, page_size: int = 50) -> None:
        self._source = source
        self._page_size = page_size

    async def fetch_page(self, list_url: str, page: int) -> list[ListingEntry]:
        first = (page - 1) * self._page_size + 1
        videos = await self._source.list_playlist(list_url, first, first + self._page_size - 1)
        return [
            ListingEntry(
                key=video.id,
                title=video.title,
                reference=video.url,
                sequence=int(video.upload_date) if video.upload_date else None,
                metadata={"duration": video.duration} if video.duration else {},
            )
            for video in videos
        ]

    async def resolve_bound(self, value: str) -> int | None:
        value = value.strip()
        digits = value.replace("-", "")
        if digits.isdigit() and len(digits) == 8:
            return int(digits)
        video_id = video_id_from_url(value)
        if video_id is None:
            return None
        upload_date = await self._source.get_upload_date(WATCH_URL.format(video_id))
        return int(upload_date) if upload_date else None

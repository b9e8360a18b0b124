"""Split long recordings under the transcription upload limit with ffmpeg."""

from __future__ import annotations

import asyncio
import math
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ingestrag.core.exceptions import ProviderError
from ingestrag.core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AudioPart:
    """One piece of a split recording and where it starts in the original."""

    path: Path
    offset_seconds: float


def _splitter_error(message: str) -> ProviderError:
    return ProviderError(
        message=f"audio_splitter: {message}", provider="audio_splitter", retryable=False
    )


class AudioSplitter:
    """Cut a recording into equal-length parts, each under ``max_size_mb``.

    Transcript timestamps of a part are relative to that part, so every part
    carries its offset into the full recording.
    """

    def __init__(self, max_size_mb: float = 24.0) -> None:
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._logger = logger.bind(provider="audio_splitter", max_size_mb=max_size_mb)

    def _tool(self, name: str) -> str:
        path = shutil.which(name)
        if not path:
            raise _splitter_error(f"{name} is not installed or not in PATH")
        return path

    def _run(self, args: list[str], what: str) -> str:
        try:
            result = subprocess.run(args, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise _splitter_error(f"{what} failed: {e.stderr.strip()}") from e
        return result.stdout

    def _probe_duration(self, audio_path: Path) -> float:
        output = self._run(
            [
                self._tool("ffprobe"),
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "csv=p=0",
                str(audio_path),
            ],
            "ffprobe",
        )
        try:
            return float(output.strip())
        except ValueError as e:
            raise _splitter_error(f"unreadable duration {output.strip()!r}") from e

    async def split_if_needed(
        self,
        audio_path: Path,
        output_dir: Path | None = None,
        duration: float | None = None,
    ) -> list[AudioPart]:
        """Split an audio file when it exceeds the size limit.

        Args:
            audio_path: Downloaded recording
            output_dir: Directory for the parts (default: next to the input)
            duration: Known length in seconds; probed with ffprobe when missing

        Returns:
            Parts in playback order; a single part at offset 0 when no split is needed

        Raises:
            ProviderError: If the file is missing or ffmpeg fails
        """
        if not audio_path.exists():
            raise _splitter_error(f"file not found: {audio_path}")

        file_size = audio_path.stat().st_size
        if file_size <= self.max_size_bytes:
            return [AudioPart(path=audio_path, offset_seconds=0.0)]

        part_count = math.ceil(file_size / self.max_size_bytes)
        self._logger.info(
            "splitting_required",
            audio_path=str(audio_path),
            file_size_bytes=file_size,
            parts_count=part_count,
        )
        return await asyncio.to_thread(
            self._split_sync, audio_path, output_dir or audio_path.parent, part_count, duration
        )

    def _split_sync(
        self, audio_path: Path, output_dir: Path, part_count: int, duration: float | None
    ) -> list[AudioPart]:
        output_dir.mkdir(parents=True, exist_ok=True)
        ffmpeg = self._tool("ffmpeg")
        total = duration or self._probe_duration(audio_path)
        part_seconds = total / part_count

        parts = []
        for index in range(part_count):
            offset = index * part_seconds
            part_path = output_dir / f"{audio_path.stem}_part{index + 1:03d}{audio_path.suffix}"
            self._run(
                [
                    ffmpeg,
                    "-y",
                    "-ss",
                    f"{offset:.3f}",
                    "-t",
                    f"{part_seconds:.3f}",
                    "-i",
                    str(audio_path),
                    "-vn",
                    "-c",
                    "copy",
                    str(part_path),
                ],
                f"ffmpeg part {index + 1}/{part_count}",
            )
            parts.append(AudioPart(path=part_path, offset_seconds=offset))

        self._logger.info("split_completed", audio_path=str(audio_path), parts_count=len(parts))
        return parts

"""Resolve video references to local files."""

import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from vision_engine.errors import FatalStreamError, TransientStreamError

logger = logging.getLogger(__name__)


class VideoFetcher:
    """
    Fetches remote videos into a work directory.

    Local paths and file:// URLs are returned as-is. Downloads go to a
    unique temporary file and are moved into place atomically, so both
    streams of a session may fetch the same video concurrently.
    """

    def __init__(
        self,
        download_dir: str = "data/videos",
        chunk_size: int = 8192,
        request_delay: float = 1.0,
        max_retries: int = 3,
        timeout: int = 30,
        show_progress: bool = False,
    ):
        """
        Initialize the video fetcher.

        Args:
            download_dir: Directory to store downloaded videos.
            chunk_size: Chunk size for streaming downloads.
            request_delay: Base delay between retries.
            max_retries: Maximum attempts per download.
            timeout: Request timeout in seconds.
            show_progress: Whether to show a download progress bar.
        """
        self.download_dir = Path(download_dir)
        self.chunk_size = chunk_size
        self.request_delay = request_delay
        self.max_retries = max_retries
        self.timeout = timeout
        self.show_progress = show_progress
        self.session = requests.Session()

    def local_path_for(self, video_ref: str, name: str) -> Path:
        suffix = Path(urlparse(video_ref).path).suffix or ".mp4"
        return self.download_dir / f"{name}{suffix}"

    def fetch(self, video_ref: str, name: Optional[str] = None) -> str:
        """
        Resolve a video reference to a readable local file.

        Args:
            video_ref: URL or local path.
            name: File stem for downloads (typically the session id).

        Returns:
            Local file path.

        Raises:
            FatalStreamError: If a local file does not exist.
            TransientStreamError: If a download fails after all retries.
        """
        parsed = urlparse(video_ref)
        if parsed.scheme not in ("http", "https"):
            path = parsed.path if parsed.scheme == "file" else video_ref
            if not Path(path).is_file():
                raise FatalStreamError(f"Video not found: {path}")
            return path

        target = self.local_path_for(video_ref, name or uuid.uuid4().hex)
        if target.exists() and target.stat().st_size > 0:
            logger.debug(f"Video already fetched: {target}")
            return str(target)

        self.download_dir.mkdir(parents=True, exist_ok=True)
        last_error = None

        for attempt in range(self.max_retries):
            temp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
            try:
                self._download(video_ref, temp_path)
                os.replace(temp_path, target)
                logger.info(f"Downloaded: {target}")
                return str(target)
            except (requests.RequestException, OSError) as e:
                last_error = e
                logger.warning(
                    f"Download failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if temp_path.exists():
                    temp_path.unlink()
                if attempt < self.max_retries - 1:
                    time.sleep(self.request_delay * (attempt + 1))

        raise TransientStreamError(f"Failed to download video {video_ref}: {last_error}")

    def _download(self, url: str, temp_path: Path) -> None:
        response = self.session.get(url, stream=True, timeout=self.timeout)
        response.raise_for_status()

        content_length = response.headers.get("Content-Length")
        total_size = int(content_length) if content_length else None

        pbar = None
        if self.show_progress and total_size:
            pbar = tqdm(total=total_size, unit="B", unit_scale=True, desc=f"Downloading {temp_path.name}")

        try:
            with open(temp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)
                        if pbar:
                            pbar.update(len(chunk))
        finally:
            if pbar:
                pbar.close()
            response.close()

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

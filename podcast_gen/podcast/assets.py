"""Download of remote assets (music, sound effects, images) used by the assembly."""

import asyncio
import io
import threading
from typing import Any, Callable, Dict, List, Tuple

import requests
from loguru import logger
from PIL import Image
from pydantic import BaseModel, Field

from podcast_gen.core.tools.dispatcher import RateLimitedDispatcher
from podcast_gen.core.tools.errors import CollaboratorError, ErrorKind
from podcast_gen.core.tools.retry import RetryPolicy, call_with_retries
from podcast_gen.podcast_material import ImageAsset, MusicTrack, Project, ResolvedSfx, SoundEffect

REJECTED_CONTENT_TYPES = ("text/html", "application/json")


class AssetFetchError(Exception):
    """Raised when an asset could not be downloaded from any of its URLs."""


class PrefetchReport(BaseModel):
    music_tracks: int = 0
    sound_effects: int = 0
    images: int = 0
    placeholders: int = 0
    failures: List[str] = Field(default_factory=list)


def https(url: str) -> str:
    if url.startswith("http://"):
        return "https://" + url[len("http://") :]
    return url


def placeholder_image(width: int = 1280, height: int = 720, color: Tuple[int, int, int] = (24, 24, 32)) -> ImageAsset:
    """A plain PNG used in place of an image that could not be fetched."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return ImageAsset(payload=buffer.getvalue(), mime_type="image/png", source="placeholder")


class AssetFetcher:
    """Fetch music, sound effects and images over HTTP.

    Every request goes through the dispatcher (bounded concurrency, paced starts) and
    is retried on transient failures. Responses that are HTML or JSON instead of media
    are rejected as malformed. Music is kept per track id until ``release_music`` so
    that chapters sharing a track download it once.

    Args:
        dispatcher: Shared dispatcher for asset hosts
        session: requests-compatible session (anything with ``get``)
        timeout: Per-request timeout in seconds
        retry_policy: Retry policy for transient failures
        placeholder_size: Size of placeholder images
    """

    def __init__(
        self,
        dispatcher: RateLimitedDispatcher | None = None,
        session: Any = None,
        timeout: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        placeholder_size: Tuple[int, int] = (1280, 720),
    ) -> None:
        self.dispatcher = dispatcher or RateLimitedDispatcher(max_concurrency=4, min_interval=0.0, name="assets")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(attempts=3, initial_delay=2.0, max_delay=10.0)
        self.placeholder_size = placeholder_size
        self._music: Dict[str, bytes] = {}
        self._music_lock = threading.Lock()

    def download(self, url: str, layer: str) -> Tuple[bytes, str]:
        """Download ``url`` and return ``(payload, content_type)``.

        Raises:
            CollaboratorError: If the download fails after retries or returns no media
        """
        url = https(url)

        def _get() -> Tuple[bytes, str]:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            content_type = response.headers.get("Content-Type", "").split(";")[0].strip().lower()
            if content_type in REJECTED_CONTENT_TYPES:
                raise CollaboratorError(ErrorKind.MALFORMED_RESPONSE, layer, detail=f"{content_type} from {url}")
            if not response.content:
                raise CollaboratorError(ErrorKind.MALFORMED_RESPONSE, layer, detail=f"empty body from {url}")
            return response.content, content_type

        return call_with_retries(self.dispatcher.call, _get, layer=layer, policy=self.retry_policy)

    def fetch_music(self, track: MusicTrack) -> bytes:
        """Encoded audio of ``track``, downloaded once per track id."""
        with self._music_lock:
            if track.id in self._music:
                return self._music[track.id]
        payload, _ = self.download(track.audio, layer="Music download")
        with self._music_lock:
            self._music[track.id] = payload
        logger.info(f"Downloaded music track {track.id} ({track.name}), {len(payload) / 1024:.0f} KB")
        return payload

    def release_music(self) -> int:
        """Drop downloaded music and return the number of bytes released."""
        with self._music_lock:
            freed = sum(len(payload) for payload in self._music.values())
            self._music.clear()
        return freed

    def fetch_sound_effect(self, effect: SoundEffect) -> bytes:
        """Encoded audio of ``effect`` from the first preview URL that works.

        Raises:
            AssetFetchError: If no preview URL could be downloaded
        """
        urls = effect.preview_urls()
        if not urls:
            raise AssetFetchError(f"Sound effect {effect.id} ({effect.name}) has no preview URL")
        errors = []
        for url in urls:
            try:
                payload, _ = self.download(url, layer="Sound effect download")
                return payload
            except CollaboratorError as e:
                logger.warning(f"Sound effect {effect.id}: {url} failed: {e}")
                errors.append(str(e))
        raise AssetFetchError(f"Sound effect {effect.id} ({effect.name}) could not be downloaded: {errors[-1]}")

    def fetch_image(self, image: ImageAsset) -> ImageAsset:
        """Return ``image`` with its payload, or a placeholder if it cannot be fetched."""
        if image.payload is not None:
            return image
        if image.url:
            try:
                payload, content_type = self.download(image.url, layer="Image download")
                update = {"payload": payload}
                if content_type.startswith("image/"):
                    update["mime_type"] = content_type
                return image.model_copy(update=update)
            except CollaboratorError as e:
                logger.warning(f"Image {image.url} unavailable, using a placeholder: {e}")
        else:
            logger.warning("Image without URL or payload, using a placeholder")
        width, height = self.placeholder_size
        placeholder = placeholder_image(width, height)
        placeholder.prompt = image.prompt
        return placeholder

    async def prefetch(self, project: Project, include_images: bool = True) -> PrefetchReport:
        """Download every missing asset of ``project`` concurrently.

        Resolved sound effects become downloaded, images get their payload (or a
        placeholder) and music tracks are cached for the mixer. Results are applied
        to the project in order once all downloads have finished.
        """
        report = PrefetchReport()
        jobs: List[Tuple[str, Callable[..., Any], Tuple[Any, ...], Callable[[Any], None]]] = []

        seen_tracks = set()
        for chapter in project.chapters:
            track = chapter.background_music
            if track is not None and track.id not in seen_tracks:
                seen_tracks.add(track.id)
                jobs.append((f"[chapter {chapter.id}] music {track.id}", self.fetch_music, (track,), lambda _: None))

        for chapter in project.chapters:
            for index, line in enumerate(chapter.script):
                if line.is_sfx and isinstance(line.sound_effect, ResolvedSfx):
                    jobs.append(
                        (
                            f"[chapter {chapter.id}] line {index} sfx {line.sound_effect.effect.id}",
                            self.fetch_sound_effect,
                            (line.sound_effect.effect,),
                            line.attach_payload,
                        )
                    )

        if include_images:
            for chapter in project.chapters:
                for index, image in enumerate(chapter.images):
                    if image.payload is None:

                        def apply(fetched: ImageAsset, images=chapter.images, position=index) -> None:
                            images[position] = fetched

                        jobs.append((f"[chapter {chapter.id}] image {index}", self.fetch_image, (image,), apply))

        if not jobs:
            return report

        logger.info(f"Prefetching {len(jobs)} asset(s)")
        results = await asyncio.gather(
            *(asyncio.to_thread(func, *args) for _, func, args, _ in jobs), return_exceptions=True
        )
        for (context, func, _, apply), result in zip(jobs, results):
            if isinstance(result, Exception):
                logger.warning(f"{context}: {result}")
                report.failures.append(f"{context}: {result}")
                continue
            apply(result)
            if func == self.fetch_music:
                report.music_tracks += 1
            elif func == self.fetch_sound_effect:
                report.sound_effects += 1
            elif result.source == "placeholder":
                report.placeholders += 1
            else:
                report.images += 1

        logger.info(
            f"Prefetch done: {report.music_tracks} music, {report.sound_effects} sfx, {report.images} image(s), "
            f"{report.placeholders} placeholder(s), {len(report.failures)} failure(s)"
        )
        return report

"""Multi-track audio mixer for podcast projects.

Speech is laid end to end on a master timeline, background music is looped under each
chapter with fades only where the track changes, and sound effects are dropped at the
anchors estimated from the script.
"""

import math
import os
import threading
from typing import Callable, Dict, List, Tuple

import numpy as np
from loguru import logger

from podcast_gen.core.configs.assembly import MixConfig
from podcast_gen.podcast.audio_codec import AudioDecodeError, PcmBuffer, decode_audio, encode_audio
from podcast_gen.podcast.models import ChapterSpan, MixReport, MusicCue, SfxEvent
from podcast_gen.podcast.timing import TimingEstimator
from podcast_gen.podcast_material import Chapter, ImageAsset, MusicTrack, Project, ScriptLine, SoundEffect

MusicLoader = Callable[[MusicTrack], bytes]
SfxLoader = Callable[[SoundEffect], bytes]


class NoAudioAssets(Exception):
    """Raised when no chapter of the project has decodable speech audio."""


class MixCancelled(Exception):
    """Raised when a mix is cancelled between chapters."""

    def __init__(self, chapters_placed: int) -> None:
        self.chapters_placed = chapters_placed
        super().__init__(f"Mix cancelled after {chapters_placed} chapter(s)")


class PayloadArena:
    """Takes ownership of binary payloads for the length of one pass.

    With ``release=True`` a payload taken from a script line or image is moved out of
    it (the line drops back to the resolved state, the image loses its bytes) and is
    held here until ``clear``. With ``release=False`` payloads are only borrowed.

    Example:
        >>> with PayloadArena() as arena:
        ...     payload = arena.take_sfx(line)
        >>> arena.bytes_freed
        48213
    """

    def __init__(self, release: bool = True) -> None:
        self.release = release
        self._held: List[bytes] = []
        self.released = 0
        self.bytes_freed = 0

    def __enter__(self) -> "PayloadArena":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()

    def take_sfx(self, line: ScriptLine) -> bytes | None:
        if not line.has_payload:
            return None
        if not self.release:
            return line.sound_effect.payload
        payload = line.release_payload()
        self._held.append(payload)
        return payload

    def take_image(self, image: ImageAsset) -> bytes | None:
        if image.payload is None:
            return None
        if not self.release:
            return image.payload
        payload = image.release_payload()
        self._held.append(payload)
        return payload

    def clear(self) -> None:
        if not self._held:
            return
        freed = sum(len(payload) for payload in self._held)
        self.released += len(self._held)
        self.bytes_freed += freed
        logger.info(f"Released {len(self._held)} payload(s), {freed / (1024 * 1024):.2f} MB freed")
        self._held.clear()


class MasterTrack:
    """The rendered master mix and the report describing it."""

    def __init__(self, pcm: PcmBuffer, report: MixReport) -> None:
        self.pcm = pcm
        self.report = report

    @property
    def duration(self) -> float:
        return self.pcm.duration

    def export(self, audio_format: str = "wav", bitrate: str | None = None) -> bytes:
        return encode_audio(self.pcm, audio_format=audio_format, bitrate=bitrate)

    def save(self, output_path: str, audio_format: str = "wav", bitrate: str | None = None) -> str:
        with open(output_path, "wb") as f:
            f.write(self.export(audio_format, bitrate))
        logger.info(f"Saved master track ({self.duration:.2f}s, {audio_format}) to {output_path}")
        return output_path


def loop_to_length(samples: np.ndarray, frames: int, offset: int = 0) -> np.ndarray:
    """Repeat ``samples`` to cover ``frames`` frames, starting ``offset`` frames into the loop."""
    length = samples.shape[0]
    offset %= length
    repeats = math.ceil((offset + frames) / length)
    return np.tile(samples, (repeats, 1))[offset : offset + frames]


def music_envelope(
    frames: int, sample_rate: int, volume: float, fade_in: bool, fade_out: bool, fade: float
) -> np.ndarray:
    """Gain curve of one chapter's music bed. Fades never exceed half the chapter."""
    envelope = np.full(frames, volume, dtype=np.float32)
    fade_frames = min(int(round(fade * sample_rate)), frames // 2)
    if fade_frames > 0:
        if fade_in:
            envelope[:fade_frames] = np.linspace(0.0, volume, fade_frames, dtype=np.float32)
        if fade_out:
            envelope[-fade_frames:] = np.linspace(volume, 0.0, fade_frames, dtype=np.float32)
    return envelope


class AudioMixer:
    """Mix a project's speech, music and sound effects into one master track.

    Args:
        config: Gains, fades and SFX limits
        estimator: Timing estimator used to anchor sound effects
        music_loader: Returns the encoded audio of a music track (usually
                      ``AssetFetcher.fetch_music``); without it music is skipped
        sfx_loader: Returns the encoded audio of a sound effect that has no payload
                    yet; without it only downloaded effects are mixed

    Example:
        >>> mixer = AudioMixer(music_loader=fetcher.fetch_music)
        >>> master = mixer.mix(project)
        >>> master.save("output/audio.wav")
        >>> master.report.bytes_freed
        1843200
    """

    def __init__(
        self,
        config: MixConfig | None = None,
        estimator: TimingEstimator | None = None,
        music_loader: MusicLoader | None = None,
        sfx_loader: SfxLoader | None = None,
    ) -> None:
        self.config = config or MixConfig()
        self.estimator = estimator or TimingEstimator()
        self.music_loader = music_loader
        self.sfx_loader = sfx_loader

    def mix(
        self,
        project: Project,
        include_sfx: bool = True,
        sfx_export_dir: str | None = None,
        release_payloads: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> MasterTrack:
        """Render the master track.

        Args:
            project: The project to mix
            include_sfx: Mix sound effects into the master. When False the effects are
                         still scheduled (and exported if ``sfx_export_dir`` is set) so
                         the renderer can mix them instead
            sfx_export_dir: Directory receiving ``sfx/sfx_<id>.wav`` files for the renderer
            release_payloads: Move SFX payloads out of the project once consumed
            cancel_event: Checked between chapters

        Returns:
            MasterTrack: The mixed audio and its report

        Raises:
            NoAudioAssets: If no chapter has decodable speech audio
            MixCancelled: If ``cancel_event`` is set while chapters are being processed
        """
        logger.info("=" * 80)
        logger.info(f"Mixing: {project.title}")
        logger.info("=" * 80)

        skipped: List[str] = []
        placed = self._decode_speech(project.chapters, skipped, cancel_event)
        if not placed:
            raise NoAudioAssets(f"None of the {len(project.chapters)} chapter(s) has decodable speech audio")

        sample_rate = placed[0][1].sample_rate
        channels = placed[0][1].channels
        total_frames = sum(pcm.frames for _, pcm in placed)
        master = np.zeros((total_frames, channels), dtype=np.float32)
        logger.info(
            f"Master timeline: {total_frames / sample_rate:.2f}s, {sample_rate}Hz, {channels}ch, "
            f"{len(placed)}/{len(project.chapters)} chapter(s)"
        )

        spans: List[Tuple[Chapter, ChapterSpan]] = []
        cursor = 0
        for chapter, pcm in placed:
            master[cursor : cursor + pcm.frames] += pcm.samples
            span = ChapterSpan(
                chapter_id=chapter.id,
                title=chapter.title,
                start=cursor / sample_rate,
                duration=pcm.frames / sample_rate,
                start_frame=cursor,
                frames=pcm.frames,
            )
            spans.append((chapter, span))
            logger.info(f"  [chapter {chapter.id}] speech at {span.start:.2f}s for {span.duration:.2f}s")
            cursor += pcm.frames
        del placed

        music_cues = self._lay_music(master, sample_rate, spans, project, skipped)

        arena = PayloadArena(release=release_payloads)
        with arena:
            sfx_events = self._lay_sound_effects(
                master, sample_rate, spans, include_sfx, sfx_export_dir, arena, skipped
            )

        report = MixReport(
            sample_rate=sample_rate,
            channels=channels,
            frames=total_frames,
            chapters=[span for _, span in spans],
            music_cues=music_cues,
            sfx_events=sfx_events,
            sfx_mixed=include_sfx,
            skipped=skipped,
            bytes_freed=arena.bytes_freed,
        )

        logger.info("=" * 80)
        logger.info("Mix complete")
        logger.info(f"  Duration: {report.duration:.2f}s")
        logger.info(f"  Music cues: {len(music_cues)}")
        logger.info(f"  Sound effects: {len(sfx_events)} ({'mixed' if include_sfx else 'left to renderer'})")
        logger.info(f"  Skipped: {len(skipped)}")
        logger.info("=" * 80)
        return MasterTrack(PcmBuffer(master, sample_rate), report)

    def _decode_speech(
        self, chapters: List[Chapter], skipped: List[str], cancel_event: threading.Event | None
    ) -> List[Tuple[Chapter, PcmBuffer]]:
        placed: List[Tuple[Chapter, PcmBuffer]] = []
        sample_rate = channels = None
        for chapter in chapters:
            if cancel_event is not None and cancel_event.is_set():
                raise MixCancelled(len(placed))
            if chapter.audio is None:
                logger.warning(f"[chapter {chapter.id}] speech: no audio, chapter left out of the mix")
                skipped.append(f"chapter {chapter.id}: no speech audio")
                continue
            try:
                pcm = decode_audio(chapter.audio, sample_rate, channels)
            except AudioDecodeError as e:
                logger.error(f"[chapter {chapter.id}] speech: decode failed, chapter left out of the mix: {e}")
                skipped.append(f"chapter {chapter.id}: speech decode failed")
                continue
            if pcm.frames == 0:
                logger.warning(f"[chapter {chapter.id}] speech: audio is empty, chapter left out of the mix")
                skipped.append(f"chapter {chapter.id}: empty speech audio")
                continue
            if sample_rate is None:
                sample_rate, channels = pcm.sample_rate, pcm.channels
            placed.append((chapter, pcm))
        return placed

    def _load_music(self, track: MusicTrack, sample_rate: int, channels: int) -> PcmBuffer | None:
        if self.music_loader is None:
            logger.warning(f"No music loader configured, skipping track {track.id} ({track.name})")
            return None
        try:
            pcm = decode_audio(self.music_loader(track), sample_rate, channels)
        except Exception as e:
            logger.warning(f"Music track {track.id} ({track.name}) unavailable: {e}")
            return None
        if pcm.frames == 0:
            logger.warning(f"Music track {track.id} ({track.name}) is empty")
            return None
        return pcm

    def _lay_music(
        self,
        master: np.ndarray,
        sample_rate: int,
        spans: List[Tuple[Chapter, ChapterSpan]],
        project: Project,
        skipped: List[str],
    ) -> List[MusicCue]:
        channels = master.shape[1]
        tracks: Dict[str, PcmBuffer | None] = {}
        phase: Dict[str, int] = {}
        cues = []

        def track_id(index: int) -> str | None:
            if 0 <= index < len(spans) and spans[index][0].background_music is not None:
                return spans[index][0].background_music.id
            return None

        for index, (chapter, span) in enumerate(spans):
            track = chapter.background_music
            if track is None:
                continue
            if track.id not in tracks:
                tracks[track.id] = self._load_music(track, sample_rate, channels)
            music = tracks[track.id]
            if music is None:
                logger.warning(f"[chapter {chapter.id}] music: track {track.id} omitted, chapter continues speech-only")
                skipped.append(f"chapter {chapter.id}: music {track.id} unavailable")
                continue

            continues = track_id(index - 1) == track.id
            continued = track_id(index + 1) == track.id
            offset = phase.get(track.id, 0) if continues else 0
            bed = loop_to_length(music.samples, span.frames, offset)
            phase[track.id] = (offset + span.frames) % music.frames

            volume = chapter.music_volume if chapter.music_volume is not None else project.background_music_volume
            fade = min(self.config.crossfade_seconds, span.duration / 2)
            envelope = music_envelope(
                span.frames, sample_rate, volume, fade_in=not continues, fade_out=not continued, fade=fade
            )
            master[span.start_frame : span.start_frame + span.frames] += bed * envelope[:, None]
            cues.append(
                MusicCue(
                    chapter_id=chapter.id,
                    track_id=track.id,
                    track_name=track.name,
                    start=span.start,
                    duration=span.duration,
                    volume=volume,
                    fade_in=not continues,
                    fade_out=not continued,
                    fade_seconds=fade,
                )
            )
            logger.info(
                f"  [chapter {chapter.id}] music '{track.name or track.id}' at volume {volume:.2f} "
                f"(fade in: {not continues}, fade out: {not continued})"
            )
        return cues

    def _load_sfx(self, line: ScriptLine, arena: PayloadArena) -> bytes | None:
        payload = arena.take_sfx(line)
        if payload is None and self.sfx_loader is not None:
            payload = self.sfx_loader(line.effect)
        return payload

    def _trim_sfx(self, pcm: PcmBuffer) -> PcmBuffer:
        limit = self.config.max_sfx_duration
        if limit is None or pcm.duration <= limit:
            return pcm
        frames = int(round(limit * pcm.sample_rate))
        samples = pcm.samples[:frames].copy()
        fade_frames = min(int(round(self.config.sfx_fade_out * pcm.sample_rate)), frames)
        if fade_frames > 0:
            samples[-fade_frames:] *= np.linspace(1.0, 0.0, fade_frames, dtype=np.float32)[:, None]
        return PcmBuffer(samples, pcm.sample_rate)

    def _lay_sound_effects(
        self,
        master: np.ndarray,
        sample_rate: int,
        spans: List[Tuple[Chapter, ChapterSpan]],
        include_sfx: bool,
        sfx_export_dir: str | None,
        arena: PayloadArena,
        skipped: List[str],
    ) -> List[SfxEvent]:
        total_frames, channels = master.shape
        master_duration = total_frames / sample_rate
        events = []

        for chapter, span in spans:
            for timing in self.estimator.schedule(chapter.script):
                if not timing.is_sfx:
                    continue
                line = chapter.script[timing.index]
                context = f"[chapter {chapter.id}] line {timing.index} sfx"
                effect = line.effect
                if effect is None:
                    logger.debug(f"{context}: no sound effect resolved, skipped")
                    continue

                try:
                    payload = self._load_sfx(line, arena)
                    if payload is None:
                        logger.warning(f"{context}: no audio for effect {effect.id}, skipped")
                        skipped.append(f"chapter {chapter.id} line {timing.index}: sfx {effect.id} has no audio")
                        continue
                    pcm = self._trim_sfx(decode_audio(payload, sample_rate, channels))
                except Exception as e:
                    logger.warning(f"{context}: effect {effect.id} ({effect.name}) dropped: {e}")
                    skipped.append(f"chapter {chapter.id} line {timing.index}: sfx {effect.id} failed")
                    continue
                if pcm.frames == 0:
                    logger.warning(f"{context}: effect {effect.id} is empty, skipped")
                    continue

                anchor = span.start + self.estimator.sfx_anchor(timing)
                start = min(max(0.0, anchor), max(0.0, master_duration - pcm.duration))
                start_frame = min(int(round(start * sample_rate)), total_frames)
                end_frame = min(start_frame + pcm.frames, total_frames)
                gain = (
                    line.sound_effect_volume
                    if line.sound_effect_volume is not None
                    else self.config.sfx_volume_for(effect.name)
                )

                if include_sfx:
                    master[start_frame:end_frame] += pcm.samples[: end_frame - start_frame] * gain

                file_name = None
                if sfx_export_dir is not None:
                    file_name = f"sfx/sfx_{effect.id}.wav"
                    path = os.path.join(sfx_export_dir, file_name)
                    if not os.path.exists(path):
                        os.makedirs(os.path.dirname(path), exist_ok=True)
                        with open(path, "wb") as f:
                            f.write(encode_audio(pcm))

                events.append(
                    SfxEvent(
                        chapter_id=chapter.id,
                        line_index=timing.index,
                        effect_id=effect.id,
                        name=effect.name,
                        start=start_frame / sample_rate,
                        duration=(end_frame - start_frame) / sample_rate,
                        gain=gain,
                        file_name=file_name,
                    )
                )
                logger.info(f"  {context}: '{effect.name}' at {start:.2f}s, gain {gain:.2f}")
        return events

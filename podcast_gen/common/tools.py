import functools
import hashlib
import os
import pickle
import re
import subprocess
import textwrap
from typing import Any, Callable, List, Optional, Sequence

import pysubs2
from loguru import logger

from podcast_gen.podcast.models import SubtitleCue


def cached(cache_dir: str, exclude_params: Optional[List[str]] = None) -> Callable[..., Any]:
    """Decorator to cache function results to disk using pickle.

    Args:
        cache_dir: Directory to store cache files
        exclude_params: Optional list of parameter names to exclude from cache key generation
                       (blacklist for unpicklable objects like sessions or dispatchers)

    Returns:
        Decorated function with caching capability

    Example:
        >>> @cached(cache_dir="/tmp/cached/freesound", exclude_params=["self"])
        ... def search(self, keywords):
        ...     ...
    """
    if exclude_params is None:
        exclude_params = []

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        import inspect

        # Get function signature to map args to parameter names
        param_names = list(inspect.signature(func).parameters.keys())

        def hash_args(*args, **kwargs) -> str:
            filtered_args = [
                arg for i, arg in enumerate(args) if i >= len(param_names) or param_names[i] not in exclude_params
            ]
            filtered_kwargs = {k: v for k, v in kwargs.items() if k not in exclude_params}
            serialized = pickle.dumps((func.__qualname__, tuple(filtered_args), filtered_kwargs))
            return hashlib.sha256(serialized).hexdigest()

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            os.makedirs(cache_dir, exist_ok=True)
            cache_file = os.path.join(cache_dir, f"{hash_args(*args, **kwargs)}.pkl")

            if os.path.exists(cache_file):
                try:
                    with open(cache_file, "rb") as f:
                        logger.info(f"Loading cached result from {cache_file}")
                        return pickle.load(f)
                except (pickle.PickleError, EOFError, OSError) as e:
                    logger.warning(f"Failed to load cache from {cache_file}: {e}. Re-computing...")
                    try:
                        os.remove(cache_file)
                    except OSError:
                        pass

            result = func(*args, **kwargs)

            try:
                with open(cache_file, "wb") as f:
                    pickle.dump(result, f)
                logger.info(f"Saved result to cache: {cache_file}")
            except (pickle.PickleError, OSError) as e:
                logger.warning(f"Failed to save cache to {cache_file}: {e}")

            return result

        return wrapper

    return decorator


def get_ffmpeg_path() -> Optional[str]:
    """Get path to ffmpeg if available on the current system. Returns None if ffmpeg couldn't be found."""
    try:
        subprocess.call(["ffmpeg", "-v", "quiet"], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        return "ffmpeg"
    except OSError:
        pass

    return None


class CommandTooLong(Exception):
    """Raised if the length of a command line argument exceeds the limit allowed on Windows."""


def invoke_command(args: List[str], cwd: str | None = None) -> subprocess.CompletedProcess:
    """Run a command, capturing its output, and raise a dedicated exception when the
    command line is too long for the platform.

    Arguments:
        args: List of strings to pass to subprocess.run().
        cwd: Working directory of the command.

    Returns:
        The completed process (the return code is not checked).

    Raises:
        CommandTooLong: `args` exceeds built in command line length limit on Windows.
    """
    try:
        return subprocess.run(args, cwd=cwd, capture_output=True, text=True, check=False)
    except OSError as err:
        if os.name != "nt":
            raise
        # Error 206: The filename or extension is too long
        # Error 87:  The parameter is incorrect
        if any(code in str(err) for code in ("206", "87")):
            raise CommandTooLong() from err
        raise


# Windows-1252 decodings of UTF-8 punctuation, as produced by upstream services that
# mix up encodings.
_MOJIBAKE = {
    "â€™": "'",
    "â€˜": "'",
    "â€œ": '"',
    "â€\u009d": '"',
    "â€”": "-",
    "â€“": "-",
    "â€¦": "...",
    "Ã©": "é",
    "Ã¨": "è",
    "Ã ": "à",
    "Â ": " ",
}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def clean_subtitle_text(text: str) -> str:
    """Normalize a script line for display as a subtitle.

    Repairs common mojibake, removes control characters and override braces, and
    collapses whitespace to single spaces.
    """
    for broken, fixed in _MOJIBAKE.items():
        text = text.replace(broken, fixed)
    text = _CONTROL_CHARS.sub("", text)
    text = text.replace("{", "").replace("}", "")
    return " ".join(text.split())


def chunk_subtitle_text(text: str, max_line_length: int = 42, max_lines: int = 2) -> List[str]:
    """Split text into display chunks of at most ``max_lines`` lines of ``max_line_length``
    characters. Lines inside a chunk are joined with a newline.
    """
    lines = textwrap.wrap(text, width=max_line_length, break_long_words=True, break_on_hyphens=False)
    return ["\n".join(lines[i : i + max_lines]) for i in range(0, len(lines), max_lines)]


def build_srt(cues: Sequence[SubtitleCue]) -> pysubs2.SSAFile:
    subs = pysubs2.SSAFile()
    for cue in cues:
        subs.events.append(
            pysubs2.SSAEvent(
                start=pysubs2.make_time(s=cue.start),
                end=pysubs2.make_time(s=cue.end),
                text=cue.text.replace("\n", "\\N"),
            )
        )
    return subs


def srt_bytes(cues: Sequence[SubtitleCue], byte_order_mark: bool = True) -> bytes:
    """Render cues as SubRip text, optionally prefixed with a UTF-8 byte order mark."""
    content = build_srt(cues).to_string("srt")
    return content.encode("utf-8-sig" if byte_order_mark else "utf-8")


def write_srt(cues: Sequence[SubtitleCue], output_path: str, byte_order_mark: bool = True) -> str:
    """Write cues to a SubRip file.

    Args:
        cues: Subtitle cues in playback order
        output_path: Destination path of the .srt file
        byte_order_mark: Prefix the file with a UTF-8 BOM, which some players need
                         to detect the encoding

    Returns:
        str: The output path
    """
    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    with open(output_path, "wb") as f:
        f.write(srt_bytes(cues, byte_order_mark=byte_order_mark))
    logger.info(f"Wrote {len(cues)} subtitle cues to {output_path}")
    return output_path

from podcast_gen.common.tools import cached, chunk_subtitle_text, clean_subtitle_text, srt_bytes
from podcast_gen.podcast.models import SubtitleCue


def test_clean_subtitle_text():
    assert clean_subtitle_text("Itâ€™s  a\tnice\x07 day {\\i1}") == "It's a nice day \\i1"
    assert clean_subtitle_text("  CafÃ©\n\nlatte ") == "Café latte"


def test_chunk_subtitle_text():
    chunks = chunk_subtitle_text("one two three four five six seven eight nine ten", max_line_length=10, max_lines=2)

    assert chunks == ["one two\nthree four", "five six\nseven", "eight nine\nten"]


def test_srt_bytes_multiline():
    cues = [
        SubtitleCue(index=1, start=0.0, end=1.25, text="first line\nsecond line"),
        SubtitleCue(index=2, start=61.5, end=3723.004, text="later"),
    ]

    text = srt_bytes(cues, byte_order_mark=False).decode("utf-8")

    assert text == (
        "1\n00:00:00,000 --> 00:00:01,250\nfirst line\nsecond line\n\n"
        "2\n00:01:01,500 --> 01:02:03,004\nlater\n\n"
    )


def test_cached_results_are_reused(tmp_path):
    calls = []

    @cached(cache_dir=str(tmp_path))
    def square(value):
        calls.append(value)
        return value * value

    assert square(4) == 16
    assert square(4) == 16
    assert square(5) == 25
    assert calls == [4, 5]

"""
数据模型测试

测试歌词、幻灯片和工程文件模型:
1. 歌词行时间边界
2. 歌词偏移
3. 逐字卡拉OK分类
4. 幻灯片校验与图层选择
5. 工程文件加载

运行方式:
    uv run pytest tests/test_01_models.py -v -s
"""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from lyric_video.core.config import ExportSettings
from lyric_video.core.exceptions import ConfigError
from lyric_video.models.lyrics import (
    DEFAULT_WORD_TAIL,
    LyricLine,
    Word,
    WordState,
    active_line_index,
    classify_words,
    effective_end,
    shift_lines,
    upcoming_line_index,
    word_end,
    word_progress,
)
from lyric_video.models.render_config import RenderConfig, VideoPreset
from lyric_video.models.slide import Slide, active_visual_slide, previous_visual_slide
from lyric_video.models.task import ExportOptions, ExportProgress, ExportState
from lyric_video.models.track import Project


class TestLyricTiming:
    """歌词行时间测试"""

    def test_line_boundaries(self, sample_lines):
        """结束时间是开区间，下一行在同一时刻接管"""
        assert active_line_index(sample_lines, 3.99) == 0
        assert active_line_index(sample_lines, 4.0) == 1
        print("✓ 3.99 -> A, 4.0 -> B")

    def test_missing_end_inherits_next_start(self):
        """缺失结束时间的行继承下一行开始时间"""
        lines = [
            LyricLine(start_time=1.0, text="first"),
            LyricLine(start_time=3.0, end_time=5.0, text="second"),
        ]
        assert effective_end(lines, 0) == 3.0
        assert active_line_index(lines, 2.5) == 0
        assert active_line_index(lines, 3.0) == 1

    def test_last_line_without_end_never_expires(self, sample_lines):
        assert effective_end(sample_lines, 1) == float("inf")
        assert active_line_index(sample_lines, 1000.0) == 1

    def test_gap_has_no_active_line(self):
        """两行之间的空隙没有活动行，布局以下一行为中心"""
        lines = [
            LyricLine(start_time=1.0, end_time=2.0, text="a"),
            LyricLine(start_time=5.0, end_time=6.0, text="b"),
        ]
        assert active_line_index(lines, 0.5) == -1
        assert active_line_index(lines, 3.0) == -1
        assert upcoming_line_index(lines, 0.5) == 0
        assert upcoming_line_index(lines, 3.0) == 1
        assert upcoming_line_index(lines, 10.0) == 1

    def test_empty_lyrics(self):
        assert active_line_index([], 1.0) == -1
        assert upcoming_line_index([], 1.0) == -1


class TestLyricOffset:
    """歌词偏移测试"""

    def test_shift_moves_lines_and_words(self, karaoke_line):
        shifted = shift_lines([karaoke_line], 0.5)
        line = shifted[0]
        assert line.start_time == 1.5
        assert line.end_time == 3.5
        assert [w.start_time for w in line.words] == [1.5, 2.0, 2.7]
        print(f"✓ 偏移后: {line.start_time} - {line.end_time}")

    def test_shift_leaves_source_untouched(self, sample_lines):
        shifted = shift_lines(sample_lines, -1.0)
        assert sample_lines[0].start_time == 0.0
        assert shifted[0].start_time == -1.0
        assert shifted[1].end_time is None

    def test_zero_offset_returns_same_list(self, sample_lines):
        assert shift_lines(sample_lines, 0) is sample_lines


class TestWordClassification:
    """逐字卡拉OK分类测试"""

    def test_partition_has_single_active_word(self, karaoke_line):
        """时间点落在某个字内时，只有一个字处于活动状态"""
        states = classify_words(karaoke_line.words, 1.7, karaoke_line.end_time)
        assert states == [WordState.COMPLETED, WordState.ACTIVE, WordState.UPCOMING]
        print(f"✓ 1.7s: {[s.value for s in states]}")

    def test_every_word_classified(self, karaoke_line):
        for t in (0.0, 1.0, 1.49, 1.5, 2.2, 2.9, 3.0, 4.0):
            states = classify_words(karaoke_line.words, t, karaoke_line.end_time)
            assert len(states) == len(karaoke_line.words)
            assert states.count(WordState.ACTIVE) <= 1

    def test_zero_length_word_uses_line_end(self, karaoke_line):
        """结束时间缺失的最后一个字延续到行尾"""
        assert word_end(karaoke_line.words, 2, karaoke_line.end_time) == 3.0
        states = classify_words(karaoke_line.words, 2.5, karaoke_line.end_time)
        assert states[2] == WordState.ACTIVE

    def test_default_tail_without_line_end(self):
        words = [Word(text="solo", start_time=2.0, end_time=2.0)]
        assert word_end(words, 0) == 2.0 + DEFAULT_WORD_TAIL
        assert word_end(words, 0, float("inf")) == 2.0 + DEFAULT_WORD_TAIL

    def test_word_progress_clamped(self, karaoke_line):
        words = karaoke_line.words
        assert word_progress(words, 0, 0.0) == 0.0
        assert word_progress(words, 0, 1.25) == pytest.approx(0.5)
        assert word_progress(words, 0, 9.0) == 1.0


class TestSlides:
    """幻灯片模型测试"""

    def test_invalid_range_rejected(self):
        with pytest.raises(ValidationError):
            Slide(id="bad", kind="image", source="a.png", start_time=3.0, end_time=3.0)

    def test_default_mute_by_kind(self):
        video = Slide(id="v", kind="video", source="v.mp4", start_time=0, end_time=1)
        audio = Slide(id="a", kind="audio", source="a.wav", start_time=0, end_time=1)
        unmuted = Slide(id="u", kind="video", source="v.mp4", start_time=0, end_time=1, muted=False)
        assert video.is_muted
        assert not audio.is_muted
        assert not unmuted.is_muted
        assert not audio.is_visual

    def test_highest_layer_wins(self):
        low = Slide(id="low", kind="image", source="a.png", start_time=0, end_time=10, layer=0)
        high = Slide(id="high", kind="image", source="b.png", start_time=2, end_time=4, layer=1)
        assert active_visual_slide([low, high], 3.0).id == "high"
        assert active_visual_slide([low, high], 5.0).id == "low"
        assert active_visual_slide([low, high], 10.0) is None

    def test_layer_tie_later_slide_wins(self):
        first = Slide(id="first", kind="image", source="a.png", start_time=0, end_time=5)
        second = Slide(id="second", kind="image", source="b.png", start_time=0, end_time=5)
        assert active_visual_slide([first, second], 1.0).id == "second"

    def test_hidden_layer_skipped(self):
        low = Slide(id="low", kind="image", source="a.png", start_time=0, end_time=10, layer=0)
        high = Slide(id="high", kind="image", source="b.png", start_time=0, end_time=10, layer=1)
        assert active_visual_slide([low, high], 1.0, {1: False}).id == "low"

    def test_audio_slide_never_visual(self):
        audio = Slide(id="a", kind="audio", source="a.wav", start_time=0, end_time=10, layer=5)
        assert active_visual_slide([audio], 1.0) is None

    def test_previous_slide(self):
        a = Slide(id="a", kind="image", source="a.png", start_time=0, end_time=5)
        b = Slide(id="b", kind="image", source="b.png", start_time=5, end_time=10)
        assert previous_visual_slide([a, b], b).id == "a"
        assert previous_visual_slide([a, b], a) is None


class TestExportModels:
    """导出参数与进度模型测试"""

    def test_options_fill_from_settings(self):
        defaults = ExportSettings(fps=24, quality="high", resolution="720p", backend="sequence")
        options = ExportOptions(fps=60).with_defaults(defaults)
        assert options.fps == 60
        assert options.quality == "high"
        assert options.resolution == "720p"
        assert options.backend_name == "sequence"

    def test_auto_backend_is_pipe(self):
        assert ExportOptions(backend="auto").backend_name == "pipe"
        assert ExportOptions().backend_name == "pipe"

    def test_progress_overall(self):
        progress = ExportProgress(total_tracks=2).update(track_index=1, progress=50)
        assert progress.overall == pytest.approx(0.75)
        assert not progress.state.is_terminal
        assert ExportState.ABORTED.is_terminal


class TestProjectFile:
    """工程文件加载测试"""

    def test_load_resolves_relative_paths(self, temp_dir: Path):
        data = {
            "tracks": [
                {
                    "audio_source": "song.wav",
                    "lyrics": [{"start_time": 0, "end_time": 2, "text": "hi"}],
                    "metadata": {"title": "Song", "artist": "Band", "cover_source": "cover.png"},
                }
            ],
            "slides": [
                {"id": "s1", "kind": "image", "source": "https://example.com/a.png", "start_time": 0, "end_time": 1}
            ],
            "preset": "large",
            "render": {"font_color": "#ff0000", "background_source": "image", "background_image": "bg.jpg"},
            "export": {"backend": "sequence", "lyric_offset": 0.25},
        }
        path = temp_dir / "project.yaml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")

        project = Project.from_yaml(path)
        assert project.preset == VideoPreset.LARGE
        assert project.tracks[0].audio_source == str(temp_dir / "song.wav")
        assert project.tracks[0].metadata.cover_source == str(temp_dir / "cover.png")
        assert project.render.background_image == str(temp_dir / "bg.jpg")
        assert project.slides[0].source == "https://example.com/a.png"
        assert project.export.backend == "sequence"
        assert project.export.lyric_offset == 0.25
        print(f"✓ 工程加载成功: {project.tracks[0].metadata.title}")

    def test_missing_file(self, temp_dir: Path):
        with pytest.raises(ConfigError):
            Project.from_yaml(temp_dir / "missing.yaml")

    def test_invalid_file(self, temp_dir: Path):
        path = temp_dir / "bad.yaml"
        path.write_text("tracks: []\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            Project.from_yaml(path)

    def test_render_config_defaults(self):
        config = RenderConfig()
        assert config.background_source == "timeline"
        assert config.layer_visibility.visual == {}
        assert config.show_intro

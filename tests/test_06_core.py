"""
核心组件测试

测试基础设施:
1. 资源释放（只释放一次）
2. 取消令牌
3. 编码器运行时
4. 配置加载
5. 媒体加载
6. 命令行参数

运行方式:
    uv run pytest tests/test_06_core.py -v -s
"""

import asyncio
from pathlib import Path

import pytest
from PIL import Image
from pydantic import ValidationError

from lyric_video.core.cancellation import CancellationToken
from lyric_video.core.config import ExportSettings, Settings
from lyric_video.core.exceptions import AbortRequested, EncoderConfigurationUnsupported, EncoderRuntimeError
from lyric_video.core.resources import ResourceTracker
from lyric_video.core.runtime import EncoderRuntime
from lyric_video.encode.codecs import select_codec
from lyric_video.main import build_parser
from lyric_video.media.loader import MediaLoader, is_url
from lyric_video.media.sources import AudioSource, ImageSource, MediaHandles
from lyric_video.models.render_config import RenderConfig
from lyric_video.models.slide import Slide
from lyric_video.models.track import AudioMetadata
from lyric_video.utils.color import parse_color, with_alpha
from lyric_video.utils.time import TimeUtils


class TestResourceTracker:
    """资源释放测试"""

    @pytest.mark.asyncio
    async def test_release_in_reverse_order(self):
        order = []
        tracker = ResourceTracker()
        tracker.track("first", lambda: order.append("first"))
        tracker.track("second", lambda: order.append("second"))

        await tracker.release_all()
        assert order == ["second", "first"]
        assert tracker.released == ["second", "first"]

    @pytest.mark.asyncio
    async def test_release_all_is_idempotent(self):
        """多个退出路径调用 release_all，每个资源只释放一次"""
        calls = []
        tracker = ResourceTracker()

        async def close():
            calls.append("closed")

        tracker.track("encoder", close)
        await tracker.release_all()
        await tracker.release_all()
        assert calls == ["closed"]
        print("✓ 资源只释放一次")

    @pytest.mark.asyncio
    async def test_early_release(self):
        calls = []
        tracker = ResourceTracker()
        tracker.track("media", lambda: calls.append("media"))

        assert await tracker.release("media")
        assert not await tracker.release("media")
        await tracker.release_all()
        assert calls == ["media"]

    @pytest.mark.asyncio
    async def test_failing_release_does_not_stop_others(self):
        calls = []
        tracker = ResourceTracker()
        tracker.track("ok", lambda: calls.append("ok"))

        def broken():
            raise OSError("disk gone")

        tracker.track("broken", broken)
        await tracker.release_all()
        assert calls == ["ok"]
        assert tracker.released == ["broken", "ok"]

    def test_duplicate_name_rejected(self):
        tracker = ResourceTracker()
        tracker.track("x", lambda: None)
        with pytest.raises(ValueError):
            tracker.track("x", lambda: None)


class TestCancellation:
    """取消令牌测试"""

    def test_cancel_once(self):
        token = CancellationToken()
        assert not token.cancelled
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled("frame")
        token.cancel("stop")
        with pytest.raises(AbortRequested) as excinfo:
            token.raise_if_cancelled("frame")
        assert "frame" in str(excinfo.value)


class TestEncoderRuntime:
    """编码器运行时测试"""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_probe(self, test_settings, monkeypatch):
        """并发调用只探测一次"""
        calls = []

        async def fake_load(self):
            calls.append(True)
            await asyncio.sleep(0.01)
            self._encoders = {"libx264", "aac"}
            self._ffmpeg = "wrapper"
            return "wrapper"

        monkeypatch.setattr(EncoderRuntime, "_load", fake_load)
        runtime = EncoderRuntime(test_settings)
        results = await asyncio.gather(*(runtime.ensure_loaded() for _ in range(5)))

        assert results == ["wrapper"] * 5
        assert calls == [True]
        assert runtime.loaded
        print("✓ 运行时只加载一次")

    @pytest.mark.asyncio
    async def test_check_codec(self, test_settings, monkeypatch):
        async def fake_load(self):
            self._encoders = {"libx264", "aac"}
            return "wrapper"

        monkeypatch.setattr(EncoderRuntime, "_load", fake_load)
        runtime = EncoderRuntime(test_settings)

        await runtime.check_codec(select_codec("1080p", "med", "h264"))
        with pytest.raises(EncoderConfigurationUnsupported):
            await runtime.check_codec(select_codec("1080p", "med", "vp9"))

    @pytest.mark.asyncio
    async def test_missing_binary(self, test_settings):
        test_settings.ffmpeg_path = "/nonexistent/bin/ffmpeg"
        runtime = EncoderRuntime(test_settings)
        with pytest.raises(EncoderConfigurationUnsupported):
            await runtime.ensure_loaded()
        assert not runtime.loaded
        assert not runtime.loading

    @pytest.mark.asyncio
    async def test_failed_probe_retries(self, test_settings, monkeypatch):
        """探测失败不缓存，下次调用重新探测"""
        calls = []

        async def flaky_load(self):
            calls.append(True)
            if len(calls) == 1:
                raise EncoderRuntimeError("ffmpeg -encoders exited with code 1")
            self._encoders = {"libx264", "aac"}
            return "wrapper"

        monkeypatch.setattr(EncoderRuntime, "_load", flaky_load)
        runtime = EncoderRuntime(test_settings)

        with pytest.raises(EncoderRuntimeError):
            await runtime.ensure_loaded()
        assert not runtime.loading

        assert await runtime.ensure_loaded() == "wrapper"
        assert len(calls) == 2
        print("✓ 探测失败后可重试")

    def test_ffmpeg_before_load(self, test_settings):
        with pytest.raises(EncoderConfigurationUnsupported):
            EncoderRuntime(test_settings).ffmpeg


class TestConfig:
    """配置测试"""

    def test_defaults(self):
        settings = Settings()
        assert settings.export.fps == 30
        assert settings.export.backend == "auto"
        assert settings.sync.seek_timeout == 0.5

    def test_yaml_roundtrip(self, temp_dir: Path):
        settings = Settings(export=ExportSettings(fps=24, quality="high"), fonts={"serif": "/fonts/serif.ttf"})
        path = temp_dir / "config.yaml"
        settings.to_yaml(path)

        loaded = Settings.from_yaml(path)
        assert loaded.export.fps == 24
        assert loaded.export.quality == "high"
        assert loaded.fonts["serif"] == Path("/fonts/serif.ttf")
        print(f"✓ 配置已保存并重新加载: {path.name}")

    def test_missing_yaml_gives_defaults(self, temp_dir: Path):
        assert Settings.from_yaml(temp_dir / "nope.yaml").export.fps == 30

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("EXPORT_FPS", "60")
        assert ExportSettings().fps == 60

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            ExportSettings(fps=0)
        with pytest.raises(ValidationError):
            ExportSettings(quality="ultra")


class TestMediaLoader:
    """媒体加载测试"""

    @pytest.fixture
    def image_path(self, temp_dir: Path) -> Path:
        path = temp_dir / "slide.png"
        Image.new("RGB", (40, 30), (10, 20, 30)).save(path)
        return path

    def make_loader(self, test_settings, temp_dir, token=None) -> MediaLoader:
        return MediaLoader(test_settings, temp_dir / "media", ResourceTracker(), token)

    @pytest.mark.asyncio
    async def test_preload_skips_failed_assets(self, test_settings, temp_dir, image_path):
        """单个素材失败只记录，不影响其他素材"""
        slides = [
            Slide(id="ok", kind="image", source=str(image_path), start_time=0, end_time=1),
            Slide(id="missing", kind="image", source=str(temp_dir / "gone.png"), start_time=1, end_time=2),
        ]
        loader = self.make_loader(test_settings, temp_dir)
        handles = await loader.preload(slides, RenderConfig())

        assert isinstance(handles.slide("ok"), ImageSource)
        assert handles.slide("missing") is None
        assert len(loader.failures) == 1
        assert loader.tracker.pending == ["media:slide:ok"]
        print(f"✓ 加载 {len(handles)} 个素材, 失败 {len(loader.failures)} 个")

    @pytest.mark.asyncio
    async def test_release_drops_image(self, test_settings, temp_dir, image_path):
        slides = [Slide(id="ok", kind="image", source=str(image_path), start_time=0, end_time=1)]
        loader = self.make_loader(test_settings, temp_dir)
        handles = await loader.preload(slides, RenderConfig())

        await loader.tracker.release_all()
        assert handles.slide("ok").frame() is None

    @pytest.mark.asyncio
    async def test_audio_slide(self, test_settings, temp_dir, tone_path):
        slides = [Slide(id="a", kind="audio", source=str(tone_path), start_time=0, end_time=1)]
        handles = await self.make_loader(test_settings, temp_dir).preload(slides, RenderConfig())

        source = handles.slide("a")
        assert isinstance(source, AudioSource)
        assert source.duration == pytest.approx(2.05)

    @pytest.mark.asyncio
    async def test_config_images(self, test_settings, temp_dir, image_path):
        config = RenderConfig(
            background_source="image",
            background_image=str(image_path),
            show_channel_info=True,
            channel_info_image=str(image_path),
        )
        handles = await self.make_loader(test_settings, temp_dir).preload([], config)
        assert MediaHandles.BACKGROUND_IMAGE in handles
        assert MediaHandles.CHANNEL in handles

    @pytest.mark.asyncio
    async def test_track_cover_swapped(self, test_settings, temp_dir, image_path):
        loader = self.make_loader(test_settings, temp_dir)
        handles = MediaHandles()

        await loader.load_track_media(AudioMetadata(cover_source=str(image_path), background_kind="image"), handles)
        assert MediaHandles.COVER in handles

        await loader.load_track_media(AudioMetadata(), handles)
        assert MediaHandles.COVER not in handles
        assert loader.tracker.released == ["media:cover"]

    @pytest.mark.asyncio
    async def test_cancelled_preload_raises(self, test_settings, temp_dir, image_path):
        token = CancellationToken()
        token.cancel("stop")
        slides = [Slide(id="ok", kind="image", source=str(image_path), start_time=0, end_time=1)]
        loader = self.make_loader(test_settings, temp_dir, token)
        with pytest.raises(AbortRequested):
            await loader.preload(slides, RenderConfig())
        assert loader.tracker.pending == []

    def test_is_url(self):
        assert is_url("https://example.com/a.png")
        assert not is_url("/tmp/a.png")
        assert not is_url("C:/media/a.png")


class TestUtils:
    """工具函数测试"""

    def test_clock_format(self):
        assert TimeUtils.seconds_to_clock(3725.5) == "01:02:05.500"
        assert TimeUtils.seconds_to_clock(-1) == "00:00:00.000"

    def test_duration_format(self):
        assert TimeUtils.format_duration(3725) == "1h 2m 5s"
        assert TimeUtils.format_duration(125) == "2m 5s"
        assert TimeUtils.format_duration(45) == "45s"

    def test_parse_color(self):
        assert parse_color("#ff000080") == (255, 0, 0, 128)
        assert parse_color("white") == (255, 255, 255, 255)
        assert parse_color("not-a-color", (1, 2, 3, 4)) == (1, 2, 3, 4)
        assert with_alpha((10, 20, 30, 255), 0.5) == (10, 20, 30, 128)


class TestCli:
    """命令行参数测试"""

    def test_export_arguments(self):
        args = build_parser().parse_args(
            ["export", "project.yaml", "-o", "out.mp4", "--backend", "sequence", "--fps", "24"]
        )
        assert args.command == "export"
        assert args.project == Path("project.yaml")
        assert args.output == Path("out.mp4")
        assert args.backend == "sequence"
        assert args.fps == 24
        assert args.codec is None

    def test_invalid_backend_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["export", "project.yaml", "--backend", "gpu"])

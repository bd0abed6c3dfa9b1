"""
媒体同步测试

测试辅助媒体同步与混音:
1. 精确模式定位
2. 实时模式容差
3. 静音与音量
4. 混音图

运行方式:
    uv run pytest tests/test_03_sync.py -v -s
"""

import asyncio

import numpy as np
import pytest

from lyric_video.core.cancellation import CancellationToken
from lyric_video.core.config import SyncSettings
from lyric_video.core.exceptions import AbortRequested
from lyric_video.media.audio import AudioMixGraph, DecodedAudio
from lyric_video.media.sources import AudioSource, MediaHandles
from lyric_video.models.render_config import LayerVisibility, RenderConfig
from lyric_video.models.slide import Slide
from lyric_video.sync.synchronizer import (
    MediaSynchronizer,
    background_target_time,
    target_media_time,
    wrapped_drift,
)

from conftest import FakeVideo


class SlowVideo(FakeVideo):
    """Video whose seeks never finish within the bounded wait."""

    async def _seek(self, target: float) -> None:
        await asyncio.sleep(5)


def constant_audio(value: float, duration: float, sample_rate: int = 1000) -> DecodedAudio:
    frames = round(duration * sample_rate)
    return DecodedAudio(np.full((frames, 2), value, dtype=np.float32), sample_rate)


@pytest.fixture
def video_slide() -> Slide:
    """[2, 5) 区间的视频幻灯片，素材偏移 1 秒"""
    return Slide(id="v1", kind="video", source="clip.mp4", start_time=2.0, end_time=5.0, media_start_offset=1.0)


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(seek_timeout=0.05, live_overlay_tolerance=0.5, live_background_tolerance=1.0)


class TestTargetTime:
    """目标时间计算测试"""

    def test_offset_applied(self, video_slide):
        assert target_media_time(video_slide, 3.0) == pytest.approx(2.0)
        assert target_media_time(video_slide, 1.9) is None
        assert target_media_time(video_slide, 5.0) is None

    def test_playback_rate(self):
        slide = Slide(id="s", kind="video", source="x.mp4", start_time=2.0, end_time=8.0, playback_rate=2.0)
        assert target_media_time(slide, 3.0) == pytest.approx(2.0)

    def test_loops_past_duration(self):
        slide = Slide(id="s", kind="video", source="x.mp4", start_time=0.0, end_time=10.0)
        assert target_media_time(slide, 3.5, source_duration=1.5) == pytest.approx(0.5)

    def test_background_loops(self):
        assert background_target_time(9.0, 4.0) == pytest.approx(1.0)
        assert background_target_time(9.0, 0.0) == 0.0

    def test_wrapped_drift(self):
        assert wrapped_drift(3.9, 0.1, 4.0) == pytest.approx(0.2)
        assert wrapped_drift(1.0, 2.0, 4.0) == pytest.approx(1.0)


class TestExactSync:
    """精确模式测试"""

    @pytest.mark.asyncio
    async def test_seek_before_draw(self, video_slide, sync_settings):
        """t=3.0 时视频定位到 2.0，绘制前完成"""
        media = MediaHandles()
        video = FakeVideo("slide:v1", 10.0)
        media.set(MediaHandles.slide_key("v1"), video)

        sync = MediaSynchronizer(sync_settings)
        await sync.sync_exact(3.0, [video_slide], media)

        assert video.seeks == [pytest.approx(2.0)]
        assert video.current_time == pytest.approx(2.0)
        video.frame()
        assert video.drawn_at == [pytest.approx(2.0)]
        print(f"✓ 定位到 {video.current_time:.3f}s")

    @pytest.mark.asyncio
    async def test_no_seek_when_aligned(self, video_slide, sync_settings):
        media = MediaHandles()
        video = FakeVideo("slide:v1", 10.0)
        media.set(MediaHandles.slide_key("v1"), video)

        sync = MediaSynchronizer(sync_settings)
        await sync.sync_exact(3.0, [video_slide], media)
        await sync.sync_exact(3.0, [video_slide], media)
        assert video.seek_count == 1

    @pytest.mark.asyncio
    async def test_every_frame_positions(self, video_slide, sync_settings):
        media = MediaHandles()
        video = FakeVideo("slide:v1", 10.0)
        media.set(MediaHandles.slide_key("v1"), video)
        sync = MediaSynchronizer(sync_settings)

        fps = 10
        for i in range(20, 50):
            t = i / fps
            await sync.sync_exact(t, [video_slide], media)
            assert video.current_time == pytest.approx(t - 2.0 + 1.0)

    @pytest.mark.asyncio
    async def test_seek_timeout_draws_stale(self, video_slide, sync_settings):
        """定位超时不抛异常，记录后继续使用旧帧"""
        media = MediaHandles()
        video = SlowVideo("slide:v1", 10.0)
        media.set(MediaHandles.slide_key("v1"), video)

        sync = MediaSynchronizer(sync_settings)
        await sync.sync_exact(3.0, [video_slide], media)

        assert len(sync.timeouts) == 1
        assert sync.timeouts[0].source_id == "slide:v1"
        assert video.current_time == 0.0
        print(f"✓ 超时已记录: {sync.timeouts[0]}")

    @pytest.mark.asyncio
    async def test_background_positioned(self, sync_settings):
        media = MediaHandles()
        background = FakeVideo(MediaHandles.BACKGROUND, 4.0, loop=True)
        background.muted = False
        media.set(MediaHandles.BACKGROUND, background)

        await MediaSynchronizer(sync_settings).sync_exact(9.0, [], media)
        assert background.current_time == pytest.approx(1.0)
        assert background.muted

    @pytest.mark.asyncio
    async def test_cancelled_token_raises(self, video_slide, sync_settings):
        token = CancellationToken()
        token.cancel("stop")
        sync = MediaSynchronizer(sync_settings, token)
        with pytest.raises(AbortRequested):
            await sync.sync_exact(3.0, [video_slide], MediaHandles())


class TestLiveSync:
    """实时模式测试"""

    @pytest.mark.asyncio
    async def test_within_tolerance_no_seek(self, video_slide, sync_settings):
        media = MediaHandles()
        video = FakeVideo("slide:v1", 10.0)
        video.current_time = 1.8
        media.set(MediaHandles.slide_key("v1"), video)

        sync = MediaSynchronizer(sync_settings)
        sync.sync_live(3.0, [video_slide], media)
        await asyncio.sleep(0)

        assert video.seeks == []
        assert not video.paused
        await sync.close()

    @pytest.mark.asyncio
    async def test_outside_tolerance_schedules_seek(self, video_slide, sync_settings):
        """实时模式不阻塞，定位在后台任务中完成"""
        media = MediaHandles()
        video = FakeVideo("slide:v1", 10.0)
        media.set(MediaHandles.slide_key("v1"), video)

        sync = MediaSynchronizer(sync_settings)
        sync.sync_live(3.0, [video_slide], media)
        assert video.current_time == 0.0

        await asyncio.sleep(0.01)
        assert video.seeks == [pytest.approx(2.0)]
        assert video.current_time == pytest.approx(2.0)
        await sync.close()

    @pytest.mark.asyncio
    async def test_inactive_slide_paused(self, video_slide, sync_settings):
        media = MediaHandles()
        video = FakeVideo("slide:v1", 10.0)
        video.play()
        media.set(MediaHandles.slide_key("v1"), video)

        sync = MediaSynchronizer(sync_settings)
        sync.sync_live(6.0, [video_slide], media)
        assert video.paused
        await sync.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self, video_slide, sync_settings):
        media = MediaHandles()
        video = SlowVideo("slide:v1", 10.0)
        media.set(MediaHandles.slide_key("v1"), video)

        sync = MediaSynchronizer(sync_settings)
        sync.sync_live(3.0, [video_slide], media)
        await asyncio.sleep(0)
        await sync.close()
        assert video.current_time == 0.0


class TestAudioRouting:
    """静音与混音路由测试"""

    @pytest.mark.asyncio
    async def test_video_slide_muted_by_default(self, video_slide, sync_settings):
        media = MediaHandles()
        video = FakeVideo("slide:v1", 10.0)
        media.set(MediaHandles.slide_key("v1"), video)
        await MediaSynchronizer(sync_settings).sync_exact(3.0, [video_slide], media)
        assert video.muted

    @pytest.mark.asyncio
    async def test_audio_slide_unmuted_while_active(self, sync_settings):
        slide = Slide(id="a1", kind="audio", source="a.wav", start_time=1.0, end_time=3.0, volume=0.4)
        media = MediaHandles()
        source = AudioSource("slide:a1", constant_audio(0.5, 5.0))
        media.set(MediaHandles.slide_key("a1"), source)
        sync = MediaSynchronizer(sync_settings)

        await sync.sync_exact(2.0, [slide], media)
        assert not source.muted
        assert source.volume == pytest.approx(0.4)

        await sync.sync_exact(3.5, [slide], media)
        assert source.muted
        print("✓ 音频幻灯片在区间外静音")

    @pytest.mark.asyncio
    async def test_hidden_audio_layer_muted(self, sync_settings):
        slide = Slide(id="a1", kind="audio", source="a.wav", start_time=0.0, end_time=3.0, layer=1)
        media = MediaHandles()
        source = AudioSource("slide:a1", constant_audio(0.5, 5.0))
        source.muted = False
        media.set(MediaHandles.slide_key("a1"), source)
        config = RenderConfig(layer_visibility=LayerVisibility(audio={1: False}))

        await MediaSynchronizer(sync_settings).sync_exact(1.0, [slide], media, config=config)
        assert source.muted

    @pytest.mark.asyncio
    async def test_live_connects_audible_source(self, sync_settings):
        slide = Slide(id="a1", kind="audio", source="a.wav", start_time=1.0, end_time=3.0)
        media = MediaHandles()
        media.set(MediaHandles.slide_key("a1"), AudioSource("slide:a1", constant_audio(0.5, 5.0)))
        graph = AudioMixGraph(sample_rate=1000)

        sync = MediaSynchronizer(sync_settings, mix_graph=graph)
        sync.sync_live(0.5, [slide], media)
        assert not graph.is_connected("a1")
        sync.sync_live(1.5, [slide], media)
        assert graph.is_connected("a1")
        await sync.close()


class TestMixGraph:
    """混音图测试"""

    def test_primary_and_slide_mix(self):
        graph = AudioMixGraph(sample_rate=1000)
        graph.connect("primary", constant_audio(0.2, 4.0))
        graph.connect("slide", constant_audio(0.5, 1.0), volume=0.5, start_time=1.0, end_time=2.0, loop=True)

        mix = graph.mixdown(4.0)
        assert mix.frames == 4000
        assert mix.samples[500, 0] == pytest.approx(0.2)
        assert mix.samples[1500, 0] == pytest.approx(0.45)
        assert mix.samples[2500, 0] == pytest.approx(0.2)

    def test_mix_pads_past_primary(self):
        graph = AudioMixGraph(sample_rate=1000)
        graph.connect("primary", constant_audio(0.2, 1.0))
        mix = graph.mixdown(2.0)
        assert mix.frames == 2000
        assert mix.samples[1500, 0] == 0.0

    def test_mix_is_clipped(self):
        graph = AudioMixGraph(sample_rate=1000)
        graph.connect("a", constant_audio(0.8, 1.0))
        graph.connect("b", constant_audio(0.8, 1.0))
        assert graph.mixdown(1.0).samples.max() == pytest.approx(1.0)

    def test_sample_rate_mismatch(self):
        graph = AudioMixGraph(sample_rate=44100)
        with pytest.raises(ValueError):
            graph.connect("bad", constant_audio(0.1, 1.0, sample_rate=1000))

    def test_released_graph_rejects_connect(self):
        graph = AudioMixGraph(sample_rate=1000)
        graph.connect("primary", constant_audio(0.2, 1.0))
        graph.release()
        assert graph.released
        assert graph.connected == []
        with pytest.raises(RuntimeError):
            graph.connect("late", constant_audio(0.2, 1.0))

    def test_reconnect_updates_volume(self):
        graph = AudioMixGraph(sample_rate=1000)
        graph.connect("s", constant_audio(0.2, 1.0), volume=1.0)
        graph.connect("s", constant_audio(0.2, 1.0), volume=0.5)
        assert graph.connected == ["s"]
        assert graph.mixdown(1.0).samples[0, 0] == pytest.approx(0.1)

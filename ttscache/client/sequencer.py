"""
Playback sequencer.

Plays an ordered playlist of local chunk files back to back as one
timeline, maps global seek fractions onto (chunk, offset) pairs and
persists the resume position.

State is published as immutable ``PlaybackSnapshot`` values. Each change
is an event folded into the current snapshot by ``reduce``.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from ttscache.client.player import AudioPlayer
from ttscache.client.resume import ResumeStore
from ttscache.config import PROGRESS_TICK_INTERVAL
from ttscache.schemas.playback import ResumeRecord

logger = logging.getLogger(__name__)

DurationProbe = Callable[[Path], Optional[float]]
Subscriber = Callable[['PlaybackSnapshot'], None]


class PlaybackStatus(str, Enum):
    idle = 'idle'
    loading = 'loading'
    playing = 'playing'
    paused = 'paused'
    finished = 'finished'


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Everything a UI needs to render the current playback."""
    status: PlaybackStatus = PlaybackStatus.idle
    session: int = 0
    chunk_index: int = 0
    chunk_count: int = 0
    elapsed_seconds: float = 0.0
    position: float = 0.0
    rate: float = 1.0
    loading_completed: int = 0
    loading_total: int = 0
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in (PlaybackStatus.playing, PlaybackStatus.paused)


# Events

@dataclass(frozen=True)
class LoadingStarted:
    total: int


@dataclass(frozen=True)
class LoadingProgressed:
    completed: int
    total: int


@dataclass(frozen=True)
class SessionStarted:
    session: int
    chunk_count: int
    rate: float


@dataclass(frozen=True)
class ChunkStarted:
    chunk_index: int
    elapsed_seconds: float
    position: float
    paused: bool = False


@dataclass(frozen=True)
class Progressed:
    elapsed_seconds: float
    position: float


@dataclass(frozen=True)
class Paused:
    elapsed_seconds: float
    position: float


@dataclass(frozen=True)
class Resumed:
    pass


@dataclass(frozen=True)
class RateChanged:
    rate: float


@dataclass(frozen=True)
class Finished:
    pass


@dataclass(frozen=True)
class Stopped:
    pass


@dataclass(frozen=True)
class Failed:
    message: str


def reduce(snapshot: PlaybackSnapshot, event) -> PlaybackSnapshot:
    """Apply one event to a snapshot. Events that do not apply are ignored."""
    if isinstance(event, LoadingStarted):
        return PlaybackSnapshot(
            status=PlaybackStatus.loading,
            session=snapshot.session,
            chunk_count=event.total,
            rate=snapshot.rate,
            loading_total=event.total,
        )
    if isinstance(event, LoadingProgressed):
        if snapshot.status != PlaybackStatus.loading:
            return snapshot
        return replace(snapshot, loading_completed=event.completed, loading_total=event.total)
    if isinstance(event, SessionStarted):
        return PlaybackSnapshot(
            status=PlaybackStatus.loading,
            session=event.session,
            chunk_count=event.chunk_count,
            rate=event.rate,
            loading_completed=event.chunk_count,
            loading_total=event.chunk_count,
        )
    if isinstance(event, ChunkStarted):
        return replace(
            snapshot,
            status=PlaybackStatus.paused if event.paused else PlaybackStatus.playing,
            chunk_index=event.chunk_index,
            elapsed_seconds=event.elapsed_seconds,
            position=event.position,
        )
    if isinstance(event, Progressed):
        if not snapshot.is_active:
            return snapshot
        return replace(snapshot, elapsed_seconds=event.elapsed_seconds, position=event.position)
    if isinstance(event, Paused):
        if snapshot.status != PlaybackStatus.playing:
            return snapshot
        return replace(
            snapshot,
            status=PlaybackStatus.paused,
            elapsed_seconds=event.elapsed_seconds,
            position=event.position,
        )
    if isinstance(event, Resumed):
        if snapshot.status != PlaybackStatus.paused:
            return snapshot
        return replace(snapshot, status=PlaybackStatus.playing)
    if isinstance(event, RateChanged):
        return replace(snapshot, rate=event.rate)
    if isinstance(event, Finished):
        return replace(
            snapshot,
            status=PlaybackStatus.finished,
            chunk_index=max(snapshot.chunk_count - 1, 0),
            position=1.0,
        )
    if isinstance(event, Stopped):
        return PlaybackSnapshot(session=snapshot.session, rate=snapshot.rate)
    if isinstance(event, Failed):
        return PlaybackSnapshot(session=snapshot.session, rate=snapshot.rate, error=event.message)
    raise TypeError(f'Unknown playback event: {event!r}')


@dataclass(frozen=True)
class SeekTarget:
    """Where a global seek lands.

    ``offset_seconds`` is None when chunk durations are unknown; the offset
    is then ``offset_fraction`` of the target chunk's length.
    """
    chunk_index: int
    offset_seconds: Optional[float] = None
    offset_fraction: float = 0.0
    at_end: bool = False


def _known(durations: Optional[Sequence[Optional[float]]], count: int) -> bool:
    return (
        durations is not None
        and len(durations) == count
        and all(d is not None and d > 0 for d in durations)
    )


def locate(fraction: float, durations: Optional[Sequence[Optional[float]]], count: int) -> SeekTarget:
    """
    Map a global fraction of the playlist onto a chunk and offset.

    Uses the cumulative duration timeline when every chunk duration is
    known, and treats chunks as equal length otherwise.

    Raises:
        ValueError: If the playlist is empty or the fraction is not finite
    """
    if count < 1:
        raise ValueError('Cannot seek in an empty playlist')
    if not math.isfinite(fraction):
        raise ValueError(f'Seek fraction must be finite, got {fraction}')
    fraction = min(max(fraction, 0.0), 1.0)

    if _known(durations, count):
        if fraction >= 1.0:
            return SeekTarget(chunk_index=count - 1, offset_seconds=durations[-1], offset_fraction=1.0, at_end=True)
        target = fraction * sum(durations)
        start = 0.0
        for index, duration in enumerate(durations):
            if target < start + duration:
                offset = target - start
                return SeekTarget(chunk_index=index, offset_seconds=offset, offset_fraction=offset / duration)
            start += duration
        return SeekTarget(chunk_index=count - 1, offset_seconds=durations[-1], offset_fraction=1.0, at_end=True)

    if fraction >= 1.0:
        return SeekTarget(chunk_index=count - 1, offset_fraction=1.0, at_end=True)
    scaled = fraction * count
    index = min(int(scaled), count - 1)
    return SeekTarget(chunk_index=index, offset_fraction=scaled - index)


def position_of(
    chunk_index: int,
    elapsed_seconds: float,
    durations: Optional[Sequence[Optional[float]]],
    count: int,
    current_duration: Optional[float] = None,
) -> float:
    """Global fraction for a (chunk, offset) pair; inverse of ``locate``."""
    if count < 1:
        return 0.0
    if _known(durations, count):
        total = sum(durations)
        played = sum(durations[:chunk_index]) + min(elapsed_seconds, durations[chunk_index])
        return min(played / total, 1.0)
    within = 0.0
    if current_duration:
        within = min(elapsed_seconds / current_duration, 1.0)
    return min((chunk_index + within) / count, 1.0)


class PlaybackSequencer:
    """
    Plays chunk files as one seekable session.

    Only one session exists at a time. Every new session bumps a session
    counter; tickers and callbacks from an older session see the mismatch
    and do nothing.

    Example:
        sequencer = PlaybackSequencer(player, FileResumeStore())
        unsubscribe = sequencer.subscribe(render)
        await sequencer.speak(paths, text_fingerprint, resume_key='doc-42')
        await sequencer.seek(0.5)
    """

    def __init__(
        self,
        player: AudioPlayer,
        resume_store: Optional[ResumeStore] = None,
        tick_interval: float = PROGRESS_TICK_INTERVAL,
        duration_probe: Optional[DurationProbe] = None,
    ):
        self.player = player
        self.resume_store = resume_store
        self.tick_interval = tick_interval
        self.duration_probe = duration_probe

        self._snapshot = PlaybackSnapshot()
        self._subscribers: List[Subscriber] = []
        self._session = 0
        self._playlist: List[Path] = []
        self._durations: List[Optional[float]] = []
        self._text_fingerprint: Optional[str] = None
        self._resume_key: Optional[str] = None
        self._rate = 1.0
        self._ticker: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        self.player.set_finished_callback(self._on_chunk_finished)

    @property
    def snapshot(self) -> PlaybackSnapshot:
        return self._snapshot

    @property
    def playlist(self) -> List[Path]:
        return list(self._playlist)

    @property
    def durations(self) -> List[Optional[float]]:
        return list(self._durations)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with every new snapshot. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _dispatch(self, event) -> None:
        snapshot = reduce(self._snapshot, event)
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception('Playback subscriber failed')

    # Loading

    def begin_loading(self, total: int) -> None:
        """Tear down any session and show chunk loading progress."""
        self._teardown()
        self._dispatch(LoadingStarted(total))

    def report_loading(self, completed: int, total: int) -> None:
        self._dispatch(LoadingProgressed(completed, total))

    def fail(self, message: str) -> None:
        self._teardown()
        self._dispatch(Failed(message))

    # Session lifecycle

    async def speak(
        self,
        playlist: Sequence[Path],
        text_fingerprint: str,
        resume_key: Optional[str] = None,
        durations: Optional[Sequence[Optional[float]]] = None,
        rate: Optional[float] = None,
    ) -> None:
        """
        Start a new session over ``playlist``.

        A saved resume record for ``resume_key`` is honoured only when its
        text fingerprint matches; a stale record is cleared and playback
        starts from the beginning.
        """
        if not playlist:
            raise ValueError('Playlist is empty')

        self._teardown()
        session = self._session
        self._playlist = [Path(p) for p in playlist]
        self._text_fingerprint = text_fingerprint
        self._resume_key = resume_key
        if rate is not None:
            self._rate = self._clamp_rate(rate)
        self._dispatch(SessionStarted(session, len(self._playlist), self._rate))

        if durations is not None:
            self._durations = list(durations)
        else:
            self._durations = await self._probe_durations(self._playlist)

        start_index, start_offset = await self._resume_point()
        if session != self._session:
            logger.debug('Session %d superseded before playback started', session)
            return

        self._play_chunk(start_index, offset_seconds=start_offset)
        self._ticker = asyncio.create_task(self._tick_loop(session))

    async def _probe_durations(self, playlist: List[Path]) -> List[Optional[float]]:
        if self.duration_probe is None:
            return [None] * len(playlist)
        loop = asyncio.get_running_loop()
        durations = []
        for path in playlist:
            try:
                durations.append(await loop.run_in_executor(None, self.duration_probe, path))
            except OSError as e:
                logger.warning('Could not probe duration of %s: %s', path.name, e)
                durations.append(None)
        return durations

    async def _resume_point(self):
        if not (self.resume_store and self._resume_key):
            return 0, 0.0

        record = await self.resume_store.load(self._resume_key)
        if record is None:
            return 0, 0.0
        if record.text_fingerprint == self._text_fingerprint and record.chunk_index < len(self._playlist):
            logger.info(
                'Resuming %s at chunk %d, %.1fs',
                self._resume_key, record.chunk_index, record.elapsed_seconds,
            )
            return record.chunk_index, record.elapsed_seconds

        logger.info('Discarding stale resume record for %s', self._resume_key)
        await self.resume_store.clear(self._resume_key)
        return 0, 0.0

    def stop(self) -> None:
        """Stop audio and end the session. The resume record is kept."""
        self._teardown()
        self._dispatch(Stopped())

    def _teardown(self) -> None:
        self._session += 1
        if self._ticker:
            self._ticker.cancel()
            self._ticker = None
        if self._playlist:
            self.player.stop()
        self._playlist = []
        self._durations = []
        self._text_fingerprint = None
        self._resume_key = None

    async def pause(self) -> None:
        if self._snapshot.status != PlaybackStatus.playing:
            return
        self.player.pause()
        elapsed = self.player.current_time
        self._dispatch(Paused(elapsed, self._position(self._snapshot.chunk_index, elapsed)))
        await self._persist()

    async def resume(self) -> None:
        if self._snapshot.status != PlaybackStatus.paused:
            return
        self.player.play()
        self._dispatch(Resumed())

    # Navigation

    async def seek(self, fraction: float) -> None:
        """
        Jump to a global fraction of the session.

        1.0 lands at the end of the last chunk and finishes the session.
        A paused session stays paused at the new position.
        """
        if not self._snapshot.is_active:
            return
        target = locate(fraction, self._durations, len(self._playlist))
        if target.at_end:
            await self._finish(self._session)
            return

        self._play_chunk(
            target.chunk_index,
            offset_seconds=target.offset_seconds,
            offset_fraction=target.offset_fraction,
            paused=self._snapshot.status == PlaybackStatus.paused,
        )
        await self._persist()

    async def next_chunk(self) -> bool:
        if not self._snapshot.is_active or self._snapshot.chunk_index >= len(self._playlist) - 1:
            return False
        self._play_chunk(self._snapshot.chunk_index + 1, paused=self._snapshot.status == PlaybackStatus.paused)
        await self._persist()
        return True

    async def previous_chunk(self) -> bool:
        if not self._snapshot.is_active or self._snapshot.chunk_index == 0:
            return False
        self._play_chunk(self._snapshot.chunk_index - 1, paused=self._snapshot.status == PlaybackStatus.paused)
        await self._persist()
        return True

    def _clamp_rate(self, rate: float) -> float:
        return min(max(rate, self.player.min_rate), self.player.max_rate)

    def set_rate(self, rate: float) -> float:
        """Set the playback rate for this and later chunks. Returns the clamped rate."""
        self._rate = self._clamp_rate(rate)
        if self._snapshot.is_active:
            self.player.rate = self._rate
        self._dispatch(RateChanged(self._rate))
        return self._rate

    # Progress

    async def tick(self) -> None:
        """Publish progress and persist the resume position."""
        if self._snapshot.status != PlaybackStatus.playing:
            return
        elapsed = self.player.current_time
        self._dispatch(Progressed(elapsed, self._position(self._snapshot.chunk_index, elapsed)))
        await self._persist()

    async def _tick_loop(self, session: int) -> None:
        while session == self._session:
            await asyncio.sleep(self.tick_interval)
            if session != self._session:
                break
            try:
                await self.tick()
            except Exception:
                logger.exception('Progress tick failed')

    async def flush(self) -> None:
        """Wait for resume store writes started from player callbacks."""
        while self._background:
            await asyncio.gather(*list(self._background))

    # Internals

    def _position(self, chunk_index: int, elapsed: float) -> float:
        return position_of(chunk_index, elapsed, self._durations, len(self._playlist), self.player.duration)

    def _play_chunk(
        self,
        index: int,
        offset_seconds: Optional[float] = 0.0,
        offset_fraction: float = 0.0,
        paused: bool = False,
    ) -> None:
        while True:
            try:
                self.player.load(self._playlist[index])
                break
            except OSError as e:
                logger.error('Failed to load chunk %d (%s): %s', index, self._playlist[index].name, e)
                if index + 1 >= len(self._playlist):
                    self._spawn(self._finish(self._session))
                    return
                index += 1
                offset_seconds, offset_fraction = 0.0, 0.0

        if offset_seconds is None:
            offset_seconds = offset_fraction * (self.player.duration or 0.0)
        self.player.rate = self._rate
        if offset_seconds:
            self.player.current_time = offset_seconds
        if not paused:
            self.player.play()
        self._dispatch(ChunkStarted(index, offset_seconds, self._position(index, offset_seconds), paused=paused))

    def _on_chunk_finished(self) -> None:
        if self._snapshot.status != PlaybackStatus.playing:
            return
        next_index = self._snapshot.chunk_index + 1
        if next_index < len(self._playlist):
            self._play_chunk(next_index)
            self._spawn(self._persist())
        else:
            self._spawn(self._finish(self._session))

    async def _finish(self, session: int) -> None:
        if session != self._session:
            return
        resume_key = self._resume_key
        self._session += 1
        ticker, self._ticker = self._ticker, None
        if ticker:
            ticker.cancel()
        self.player.stop()
        self._dispatch(Finished())
        if self.resume_store and resume_key:
            await self._settle(ticker)
            await self.resume_store.clear(resume_key)
        logger.info('Playback finished')

    async def _settle(self, ticker: Optional[asyncio.Task]) -> None:
        """Wait for saves still in flight so none lands after the record is cleared."""
        current = asyncio.current_task()
        pending = [task for task in self._background if task is not current]
        if ticker is not None and ticker is not current:
            pending.append(ticker)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _persist(self) -> None:
        if not (self.resume_store and self._resume_key and self._text_fingerprint):
            return
        if not self._snapshot.is_active:
            return
        record = ResumeRecord(
            text_fingerprint=self._text_fingerprint,
            chunk_index=self._snapshot.chunk_index,
            elapsed_seconds=max(self._snapshot.elapsed_seconds, 0.0),
        )
        await self.resume_store.save(self._resume_key, record)

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(self._guarded(coro))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _guarded(coro: Awaitable) -> None:
        try:
            await coro
        except Exception:
            logger.exception('Background playback task failed')

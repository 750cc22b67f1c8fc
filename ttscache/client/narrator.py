"""
Read-aloud sessions: fetch a text's chunks, then play them.
"""
import logging
from typing import Optional

from ttscache.client.coordinator import CancellationToken, SyncCoordinator
from ttscache.client.sequencer import PlaybackSequencer, PlaybackSnapshot
from ttscache.errors import SyncCancelledError, TTSCacheError

logger = logging.getLogger(__name__)


class Narrator:
    """
    Ties chunk synchronisation to playback.

    While chunks are being fetched the sequencer reports ``loading`` with
    chunk progress. Starting a new text cancels the previous one.
    """

    def __init__(self, coordinator: SyncCoordinator, sequencer: PlaybackSequencer, rate: Optional[float] = None):
        self.coordinator = coordinator
        self.sequencer = sequencer
        self.rate = rate
        self._token: Optional[CancellationToken] = None

    @property
    def snapshot(self) -> PlaybackSnapshot:
        return self.sequencer.snapshot

    async def play_text(self, text: str, resume_key: Optional[str] = None) -> PlaybackSnapshot:
        """
        Fetch every chunk of ``text`` and start playing it.

        Raises:
            SyncCancelledError: If ``stop`` or another ``play_text`` call
                cancelled this one while chunks were being fetched
            TTSCacheError: If fetching failed; the sequencer shows the error
        """
        self.stop()
        token = CancellationToken()
        self._token = token

        self.sequencer.begin_loading(len(self.coordinator.chunks_for(text)))
        try:
            playlist = await self.coordinator.prepare(text, token, on_progress=self.sequencer.report_loading)
        except SyncCancelledError:
            logger.info('Narration cancelled while loading')
            raise
        except TTSCacheError as e:
            logger.error('Could not prepare narration: %s', e.message)
            self.sequencer.fail(e.message)
            raise

        token.raise_if_cancelled()
        await self.sequencer.speak(
            playlist,
            self.coordinator.resume_fingerprint(text),
            resume_key=resume_key,
            rate=self.rate,
        )
        return self.sequencer.snapshot

    def stop(self) -> None:
        """Cancel any chunk fetch in flight and stop playback."""
        if self._token:
            self._token.cancel()
            self._token = None
        self.sequencer.stop()

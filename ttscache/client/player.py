"""
Audio player interface used by the playback sequencer.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional


class AudioPlayer(ABC):
    """
    Plays one local audio file at a time.

    Implementations wrap a platform player. The sequencer drives it and
    listens for the end of each file through ``set_finished_callback``.
    """

    min_rate: float = 0.5
    max_rate: float = 2.0

    @abstractmethod
    def load(self, path: Path) -> None:
        """Load a file, replacing whatever was loaded before."""

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop playback and unload the current file."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Position within the loaded file in seconds."""

    @current_time.setter
    @abstractmethod
    def current_time(self, seconds: float) -> None:
        pass

    @property
    @abstractmethod
    def duration(self) -> Optional[float]:
        """Length of the loaded file in seconds, None if unknown."""

    @property
    @abstractmethod
    def rate(self) -> float:
        pass

    @rate.setter
    @abstractmethod
    def rate(self, value: float) -> None:
        pass

    @abstractmethod
    def set_finished_callback(self, callback: Optional[Callable[[], None]]) -> None:
        """Register the function called when the loaded file plays to its end."""

"""
Shadow state.

A StateCell is written and read synchronously by the stage controller, so
a decision always sees the latest value. Observers (UI, CLI printers) are
notified asynchronously via the event loop and are never consulted for
decisions.
"""

import asyncio
import logging
from typing import Callable, Generic, List, TypeVar

from viraltube.domain.models import AssetBundle, AssetPatch, apply_patch

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateCell(Generic[T]):
    """Explicit mutable cell with an asynchronous observation channel."""

    def __init__(self, initial: T):
        self._value = initial
        self._observers: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._notify(value)

    def subscribe(self, observer: Callable[[T], None]) -> Callable[[], None]:
        """Register an observer; returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, value: T) -> None:
        if not self._observers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for observer in list(self._observers):
            if loop is not None:
                loop.call_soon(observer, value)
            else:
                observer(value)


class AssetStore(StateCell[AssetBundle]):
    """Authoritative, immediately consistent AssetBundle for the live Run."""

    def __init__(self, initial: AssetBundle = None):
        super().__init__(initial or AssetBundle())

    def apply(self, patch: AssetPatch) -> AssetBundle:
        bundle = apply_patch(self.value, patch)
        self.set(bundle)
        return bundle

    def reset(self) -> None:
        self.set(AssetBundle())

    def snapshot(self) -> AssetBundle:
        """Deep copy for read-only consumers such as the compositor."""
        return self.value.model_copy(deep=True)

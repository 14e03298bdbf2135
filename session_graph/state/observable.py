"""Synchronous observable value holders.

Observable holds a value and notifies subscribers on every set. Derived
computes a value from one or more sources on demand and memoizes it by the
identity of the source values, so a view is recomputed only after one of
its inputs was replaced.
"""

from typing import Any, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class Observable(Generic[T]):
    def __init__(self, value: T):
        self._value = value
        self._subscribers: list[Callable[[T], None]] = []

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        """Store a value and notify; setting the identical object is a no-op."""
        if value is self._value:
            return
        self._value = value
        for callback in list(self._subscribers):
            callback(value)

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Call `callback` now and after every change. Returns an unsubscriber."""
        self._subscribers.append(callback)
        callback(self._value)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def clear_subscribers(self) -> None:
        self._subscribers.clear()


class Derived(Generic[T]):
    """A lazily computed, memoized view over observable sources."""

    def __init__(
        self,
        sources: Sequence["Observable[Any] | Derived[Any]"],
        compute: Callable[..., T],
    ):
        self._sources = list(sources)
        self._compute = compute
        self._inputs: tuple[Any, ...] | None = None
        self._value: T | None = None
        self._subscribers: list[Callable[[T], None]] = []
        self._source_unsubscribers: list[Unsubscribe] = []
        self.computations = 0

    def get(self) -> T:
        inputs = tuple(source.get() for source in self._sources)
        if self._inputs is None or any(
            new is not old for new, old in zip(inputs, self._inputs)
        ):
            self._value = self._compute(*inputs)
            self._inputs = inputs
            self.computations += 1
        return self._value

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        if not self._subscribers:
            self._attach()
        self._subscribers.append(callback)
        callback(self.get())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
            if not self._subscribers:
                self._detach()

        return unsubscribe

    def _attach(self) -> None:
        last = [self.get()]

        def on_source_change(_: Any) -> None:
            value = self.get()
            if value is last[0]:
                return
            last[0] = value
            for callback in list(self._subscribers):
                callback(value)

        # Sources call back immediately on subscribe; memoization absorbs it.
        self._source_unsubscribers = [
            source.subscribe(on_source_change) for source in self._sources
        ]

    def _detach(self) -> None:
        for unsubscribe in self._source_unsubscribers:
            unsubscribe()
        self._source_unsubscribers = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def clear_subscribers(self) -> None:
        self._subscribers.clear()
        self._detach()

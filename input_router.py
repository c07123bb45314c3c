# -*- coding: utf-8 -*-
########################
# input_router.py
########################
# Purpose:
# - Input boundary of the gameplay core.
# - InputSource produces timestamped lane and tap events; GameSession polls it once per tick.
# - KeyboardLaneMapper turns raw key presses into lane InputEvents.
#
# Design notes:
# - The core never touches windowing or DOM input APIs. Frontends translate their key and pointer
#   callbacks into calls on KeyboardLaneMapper / ScriptedInputSource.
# - One event per physical press: auto repeat and repeated down events of a held key are dropped.
# - Presses are stamped with song time from an injected callable, normally the session clock.
#
########################
# Interfaces:
# Public protocols:
# - InputSource: poll(now: float) -> Iterable[InputEvent | TapEvent]
#
# Public classes:
# - class ScriptedInputSource(events: Iterable[InputEvent | TapEvent])
#   - poll(now: float) -> Iterator[...]
#   - remaining() -> int
# - class KeyboardLaneMapper(song_time_provider, key_to_lane_map=None)
#   - handle_key_press(key: str, *, is_auto_repeat: bool = False) -> bool
#   - handle_key_release(key: str, *, is_auto_repeat: bool = False) -> bool
#   - handle_pointer_press(x: float, y: float) -> None
#   - clear_pressed_keys() -> None
#   - reset_stats() -> None
#   - poll(now: float) -> Iterator[...]
#
# Public functions:
# - build_key_to_lane_map(lane_keys: Sequence[str]) -> dict[str, int]
#
########################

from __future__ import annotations

import collections
import heapq
from typing import Callable, Deque, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Set, Tuple

import gameplay_models


DEFAULT_LANE_KEYS: Tuple[str, ...] = ("w", "a", "s", "d")


class InputSource(Protocol):
    def poll(self, now: float) -> Iterable[gameplay_models.GameplayInput]:
        ...


class ScriptedInputSource:
    """
    Replays a recorded input trace.

    poll(now) lazily yields every event with at_time <= now that has not been yielded yet,
    in time order. Replaying the same trace against the same chart gives the same result.
    """

    def __init__(self, events: Iterable[gameplay_models.GameplayInput]) -> None:
        self._heap: List[Tuple[float, int, gameplay_models.GameplayInput]] = [
            (float(event.at_time), order, event) for order, event in enumerate(events)
        ]
        heapq.heapify(self._heap)

    def remaining(self) -> int:
        return len(self._heap)

    def poll(self, now: float) -> Iterator[gameplay_models.GameplayInput]:
        while self._heap and self._heap[0][0] <= float(now):
            yield heapq.heappop(self._heap)[2]


def build_key_to_lane_map(lane_keys: Sequence[str] = DEFAULT_LANE_KEYS) -> Dict[str, int]:
    """
    Lane mapping for a four lane chart by default.

    Lane indexes follow lane_keys order:
      0 = W
      1 = A
      2 = S
      3 = D
    """
    return {str(key).strip().lower(): lane_index for lane_index, key in enumerate(lane_keys)}


class KeyboardLaneMapper:
    """
    Keyboard and pointer front of the gameplay input path.

    Frontends forward raw key and pointer callbacks here. Each accepted key press becomes one
    InputEvent stamped with song time at the moment of the press; pointer presses become TapEvents.
    Events wait in a queue until the session polls them, so judgement stays inside GameSession.tick().
    """

    def __init__(
        self,
        song_time_provider: Callable[[], float],
        key_to_lane_map: Optional[Dict[str, int]] = None,
    ) -> None:
        if key_to_lane_map is None:
            key_to_lane_map = build_key_to_lane_map()
        self._now = song_time_provider
        self._lanes_by_key: Dict[str, int] = {str(key).lower(): int(lane) for key, lane in key_to_lane_map.items()}
        self._held: Set[str] = set()
        self._queue: Deque[gameplay_models.GameplayInput] = collections.deque()
        self._press_count = 0
        self._suppressed_count = 0

    def handle_key_press(self, key: str, *, is_auto_repeat: bool = False) -> bool:
        """Queue a lane event for a fresh press. Returns True when the key is a lane key."""
        key_name = str(key).lower()
        lane = self._lanes_by_key.get(key_name)
        if lane is None:
            return False

        # OS auto repeat and a second down event for a held key both count as one press.
        if is_auto_repeat or key_name in self._held:
            self._suppressed_count += 1
            return True

        self._held.add(key_name)
        self._press_count += 1
        self._queue.append(gameplay_models.InputEvent(lane=lane, at_time=float(self._now())))
        return True

    def handle_key_release(self, key: str, *, is_auto_repeat: bool = False) -> bool:
        key_name = str(key).lower()
        if not is_auto_repeat:
            self._held.discard(key_name)
        return key_name in self._lanes_by_key

    def handle_pointer_press(self, x: float, y: float) -> None:
        self._press_count += 1
        self._queue.append(gameplay_models.TapEvent(x=float(x), y=float(y), at_time=float(self._now())))

    def clear_pressed_keys(self) -> None:
        """Forget held keys, e.g. after the window loses focus and release events were never delivered."""
        self._held.clear()

    def reset_stats(self) -> None:
        self._press_count = 0
        self._suppressed_count = 0

    def poll(self, now: float) -> Iterator[gameplay_models.GameplayInput]:
        while self._queue:
            yield self._queue.popleft()

    @property
    def key_to_lane_map(self) -> Dict[str, int]:
        return dict(self._lanes_by_key)

    @property
    def total_presses(self) -> int:
        return self._press_count

    @property
    def ignored_presses(self) -> int:
        return self._suppressed_count


def _run_unit_tests() -> None:
    router = KeyboardLaneMapper(lambda: 1.25)

    assert router.key_to_lane_map["w"] == 0
    assert router.key_to_lane_map["d"] == 3

    assert router.handle_key_press("A")
    assert router.handle_key_press("a")
    assert router.handle_key_press("a", is_auto_repeat=True)
    assert not router.handle_key_press("x")
    events = list(router.poll(2.0))
    assert events == [gameplay_models.InputEvent(lane=1, at_time=1.25)]
    assert router.ignored_presses == 2


if __name__ == "__main__":
    _run_unit_tests()
    print("input_router.py: ok")

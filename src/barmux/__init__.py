# -*- coding: utf-8 -*-
"""
Barmux – Multiplexed terminal progress bars for concurrent workers.
Copyright (c) 2026 The barmux authors
Licensed under the MIT License.
"""

import os
import sys
import time
import itertools
import threading
from collections import deque
from dataclasses import dataclass
from queue import Empty
from typing import (
        Protocol,
        Optional,
        List,
        Dict,
        Any,
        Iterable,
        Iterator,
        TextIO,
)
from enum import Enum
import logging

__all__ = [
    'progress',
    'bar_status',
    'create_single_bar',
    'BarManager',
    'ProgressUnit',
    'Snapshot',
    'Status',
    'Channel',
    'Terminal',
    'AnsiTerminal',
    'BarmuxError',
    'OutOfRangeError',
    'ChannelClosedError',
    'BAR_WIDTH',
    'MESSAGE_WIDTH',
    'CHANNEL_CAPACITY',
    'NAME_DISPLAY_LIMIT',
]

logger = logging.getLogger('barmux')


BAR_WIDTH = 40
MESSAGE_WIDTH = 40
CHANNEL_CAPACITY = 100
NAME_DISPLAY_LIMIT = 7

CHAR_START_BRACKET = '['
CHAR_END_BRACKET = ']'
CHAR_COMPLETE = '#'
CHAR_INCOMPLETE = ' '

_HIDE_CURSOR = '\033[?25l'
_SHOW_CURSOR = '\033[?25h'


# ============================================================================
# Errors
# ============================================================================

class BarmuxError(Exception):
    """Base class for barmux errors"""


class OutOfRangeError(BarmuxError):
    """Cumulative progress went past the declared total"""


class ChannelClosedError(BarmuxError):
    """Send, receive or close on a channel that is already closed"""


# ============================================================================
# Gauge rendering
# ============================================================================

def bar_status(current: int, total: int, width: int = BAR_WIDTH) -> str:
    """
    Render a fixed-width gauge with an integer percentage suffix.

    Example:
        >>> bar_status(5, 10, width=10)
        '[#####     ] 50%'

    The filled cell count is clamped into [0, width]; the percentage is not,
    so an overshooting bar still shows a value above 100.
    """
    if total <= 0:
        raise ValueError("total must be positive")
    if width <= 0:
        raise ValueError("width must be positive")

    loaded_count = min(max(current * width // total, 0), width)
    gauge = (CHAR_START_BRACKET +
             CHAR_COMPLETE * loaded_count +
             CHAR_INCOMPLETE * (width - loaded_count) +
             CHAR_END_BRACKET)

    return '{} {:02d}%'.format(gauge, current * 100 // total)


def _fit_message(message: str, width: int = MESSAGE_WIDTH) -> str:
    """Flatten line breaks and fix the message to exactly width characters"""
    message = message.replace('\r\n', ' ').replace('\n', ' ').replace('\r', ' ')

    if len(message) > width:
        return message[len(message) - width:]
    return message.ljust(width)


def _display_name(name: str) -> str:
    """Abbreviate long bar names for the multi-bar view"""
    if len(name) <= NAME_DISPLAY_LIMIT:
        return name
    return name[:NAME_DISPLAY_LIMIT - 1] + '...'


def _render_block(name: str, message: str, current: int, total: int) -> List[str]:
    return [
        f'  {name} : {message}',
        f'    {bar_status(current, total)}',
    ]


# ============================================================================
# Terminal utilities
# ============================================================================

class Terminal(Protocol):
    """Output surface the bars draw on"""

    def write(self, text: str) -> None:
        ...

    def print_multiline(self, lines: List[str]) -> None:
        ...

    def move_cursor_back(self) -> None:
        ...

    def stop(self) -> None:
        ...


def _detect_ansi_support(stream: TextIO) -> bool:
    """Check whether the stream is a terminal that understands ANSI escapes"""
    term = os.environ.get('TERM', '')
    if not term or term == 'dumb':
        return False

    isatty = getattr(stream, 'isatty', None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # Closed stream
        return False


class AnsiTerminal:
    """Redraws blocks of lines in place using ANSI cursor control"""

    def __init__(self, stream: Optional[TextIO] = None, use_ansi: Optional[bool] = None):
        """
        Create a terminal writer.

        Args:
            stream: Output stream (default is sys.stderr)
            use_ansi: Whether to emit cursor control sequences
                      (auto-detected from TERM and isatty if None)
        """
        self.stream = stream if stream is not None else sys.stderr

        if use_ansi is None:
            use_ansi = _detect_ansi_support(self.stream)

        self.use_ansi = use_ansi
        self._last_lines_drawn_count = 0
        self._rewound_lines_count = 0
        self._lock = threading.Lock()

    def write(self, text: str) -> None:
        with self._lock:
            self._write_internal(text)

    def _write_internal(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def print_multiline(self, lines: List[str]) -> None:
        """Print lines, overwriting the block left by move_cursor_back"""
        with self._lock:
            if not self.use_ansi:
                self._write_internal(''.join(f'{line}\n' for line in lines))
                self._last_lines_drawn_count = len(lines)
                return

            try:
                # Hide cursor during update
                self.stream.write(_HIDE_CURSOR)
                # Clear leftovers of a previous, taller block
                stale = max(0, self._rewound_lines_count - len(lines))
                output = ''.join(f'\r\033[K{line}\n' for line in lines)
                output += '\r\033[K\n' * stale + '\033[F' * stale
                self.stream.write(output)
                self._last_lines_drawn_count = len(lines)
                self._rewound_lines_count = 0
            finally:
                # Show cursor again
                self._write_internal(_SHOW_CURSOR)

    def move_cursor_back(self) -> None:
        """Move the cursor to the first line of the last printed block"""
        with self._lock:
            if not self.use_ansi or self._last_lines_drawn_count == 0:
                return

            self._write_internal('\r' + '\033[F' * self._last_lines_drawn_count)
            self._rewound_lines_count = self._last_lines_drawn_count
            self._last_lines_drawn_count = 0

    def stop(self) -> None:
        """Leave the cursor below the last block and make it visible"""
        with self._lock:
            if not self.use_ansi:
                self.stream.flush()
                return

            output = '\n' * self._rewound_lines_count + _SHOW_CURSOR
            self._rewound_lines_count = 0
            self._write_internal(output)


# ============================================================================
# Channel
# ============================================================================

class Channel:
    """Bounded multi-producer, single-consumer queue that can be closed once"""

    def __init__(self, maxsize: int = CHANNEL_CAPACITY):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")

        self.maxsize = maxsize
        self._items: deque = deque()
        self._closed = False
        self._mutex = threading.Lock()
        self._not_empty = threading.Condition(self._mutex)
        self._not_full = threading.Condition(self._mutex)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._mutex:
            return len(self._items)

    def put(self, item: Any) -> None:
        """Append an item, blocking while the channel is full"""
        with self._not_full:
            while not self._closed and len(self._items) >= self.maxsize:
                self._not_full.wait()

            if self._closed:
                raise ChannelClosedError("send on closed channel")

            self._items.append(item)
            self._not_empty.notify()

    def get(self, timeout: Optional[float] = None) -> Any:
        """
        Remove and return the oldest item.

        Raises queue.Empty when nothing arrives within timeout seconds.
        """
        with self._not_empty:
            if timeout is None:
                while not self._items and not self._closed:
                    self._not_empty.wait()
            elif timeout < 0:
                raise ValueError("timeout must be non-negative")
            else:
                deadline = time.monotonic() + timeout
                while not self._items and not self._closed:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0.0:
                        raise Empty
                    self._not_empty.wait(remaining)

            if not self._items:
                raise ChannelClosedError("receive on closed channel")

            item = self._items.popleft()
            self._not_full.notify()
            return item

    def close(self) -> List[Any]:
        """Close the channel, wake every waiter and return undelivered items"""
        with self._mutex:
            if self._closed:
                raise ChannelClosedError("close of closed channel")

            self._closed = True
            drained = list(self._items)
            self._items.clear()
            self._not_full.notify_all()
            self._not_empty.notify_all()

        return drained


# ============================================================================
# Progress Unit
# ============================================================================

class Status(Enum):
    """Lifecycle of a progress unit"""
    IN_PROGRESS = 'in_progress'
    NORMAL = 'normal'          # completed exactly
    HAVE_ERR = 'have_err'      # overshoot
    FORCE_STOP = 'force_stop'  # aborted by its owner

    @property
    def is_terminal(self) -> bool:
        return self is not Status.IN_PROGRESS


@dataclass(frozen=True)
class Snapshot:
    """Immutable copy of a progress unit sent to the manager"""
    name: str
    current: int
    total: int
    status: Status
    message: str
    error: Optional[BaseException] = None
    source: int = 0
    sequence: int = 0

    def is_finished(self) -> bool:
        return self.status is Status.NORMAL

    def render(self, display_name: Optional[str] = None) -> List[str]:
        """Render the label line and the gauge line"""
        name = self.name if display_name is None else display_name
        return _render_block(name, self.message, self.current, self.total)


_unit_ids = itertools.count(1)


class ProgressUnit:
    """One tracked task, rendered directly or reported to a BarManager"""

    def __init__(self,
                 total: int,
                 name: str,
                 channel: Optional[Channel] = None,
                 single_line: bool = True,
                 terminal: Optional[Terminal] = None):
        """
        Create a progress unit.

        Args:
            total: Total units of work (must be positive)
            name: Bar name, the aggregation key inside one manager
            channel: Manager channel; None for a standalone bar
            single_line: Standalone bars only, redraw one line instead of a block
            terminal: Standalone bars only, output surface
        """
        if total <= 0:
            raise ValueError("total must be positive")

        self.name = name
        self.total = total
        self.single_line = single_line
        self.current = 0
        self.message = _fit_message('')
        self.status = Status.IN_PROGRESS
        self.error: Optional[BaseException] = None

        self._channel = channel
        self._terminal = terminal
        self._lock = threading.Lock()
        self._source = next(_unit_ids)
        self._sequence = 0

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r}, {self.current}/{self.total}, {self.status.name})'

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Force stop the unit when its block raised"""
        if exc_val is not None:
            self.force_stop(exc_val)
        return False

    @property
    def is_single_mode(self) -> bool:
        return self._channel is None

    def is_finished(self) -> bool:
        """Check if the unit completed exactly"""
        return self.status is Status.NORMAL

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snapshot_internal()

    def _snapshot_internal(self) -> Snapshot:
        # Stamped under the lock, so the manager can spot reordered sends
        self._sequence += 1
        return Snapshot(name=self.name,
                        current=self.current,
                        total=self.total,
                        status=self.status,
                        message=self.message,
                        error=self.error,
                        source=self._source,
                        sequence=self._sequence)

    def increment(self, count: int = 1, message: str = ''):
        """
        Advance progress by count and publish the new state.

        Ignored once the unit overshot or was force stopped. A completed unit
        still accepts a zero count, e.g. to show a trailing message.
        In managed mode this blocks while the manager channel is full.
        """
        if count < 0:
            raise ValueError("count must be non-negative")

        with self._lock:
            if self.status in (Status.HAVE_ERR, Status.FORCE_STOP):
                return

            self.current += count
            self.message = _fit_message(message)

            if self.current > self.total:
                self.error = OutOfRangeError(
                    f"{self.name}: progress {self.current} is out of range (total {self.total})")
                self.status = Status.HAVE_ERR
                logger.debug('Bar %r overshot its total', self.name)
            elif self.current == self.total:
                self.status = Status.NORMAL

            snapshot = self._snapshot_internal()

        self._publish(snapshot)

    def force_stop(self, error: Optional[BaseException] = None):
        """
        Abort the unit, optionally recording the cause.

        The final snapshot is sent from a background thread so the caller
        never blocks on a full channel.
        """
        with self._lock:
            if self.status.is_terminal:
                logger.debug('Bar %r already ended as %s, force stop ignored', self.name, self.status.name)
                return

            self.status = Status.FORCE_STOP
            if error is not None:
                self.error = error

            snapshot = self._snapshot_internal()

        if self._channel is None:
            self._render(snapshot)
            return

        emitter = threading.Thread(target=self._emit,
                                   args=(snapshot,),
                                   name=f'barmux-stop-{self.name}',
                                   daemon=True)
        emitter.start()

    def _emit(self, snapshot: Snapshot):
        try:
            self._channel.put(snapshot)
        except ChannelClosedError:
            logger.warning('Bar %r was force stopped after its manager finished', self.name)

    def _publish(self, snapshot: Snapshot):
        if self._channel is None:
            self._render(snapshot)
        else:
            self._channel.put(snapshot)

    def show(self):
        """Draw a standalone bar"""
        if self._channel is not None:
            raise RuntimeError("bars created by a BarManager are drawn by the manager")

        self._render(self.snapshot())

    def _render(self, snapshot: Snapshot):
        if self._terminal is None:
            self._terminal = AnsiTerminal()

        try:
            if self.single_line:
                line = f'\r {snapshot.name} {bar_status(snapshot.current, snapshot.total)} {snapshot.message}'
                if snapshot.status.is_terminal:
                    line += '\n'
                self._terminal.write(line)
            else:
                self._terminal.print_multiline(snapshot.render())
                if not snapshot.status.is_terminal:
                    self._terminal.move_cursor_back()
        except Exception:
            logger.exception('Display progress failed')


def create_single_bar(total: int,
                      name: str,
                      single_line: bool = True,
                      terminal: Optional[Terminal] = None) -> ProgressUnit:
    """Create a standalone bar that draws itself on every increment"""
    return ProgressUnit(total, name, single_line=single_line, terminal=terminal)


# ============================================================================
# Bar Manager - Multiplexing many bars into one view
# ============================================================================

class BarManager:
    """Collects snapshots from many bars and redraws them as one block"""

    def __init__(self,
                 timeout: float,
                 capacity: int = CHANNEL_CAPACITY,
                 terminal: Optional[Terminal] = None):
        """
        Create a bar manager.

        Args:
            timeout: Seconds without any report before show_and_wait gives up
            capacity: Number of snapshots the channel buffers before
                      increment blocks
            terminal: Output surface (default is an AnsiTerminal on stderr)
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self._timeout = timeout
        self._channel = Channel(capacity)
        self._terminal = terminal
        self._names: List[str] = []
        self._lock = threading.Lock()
        self._waited = False

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def bar_count(self) -> int:
        """Number of bars created by this manager"""
        return len(self._names)

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def create(self, total: int, name: str) -> ProgressUnit:
        """Create a bar reporting to this manager"""
        with self._lock:
            if self._waited:
                raise RuntimeError("cannot create bars after show_and_wait()")

            bar = ProgressUnit(total, name, channel=self._channel)
            self._names.append(name)

        logger.debug('Registered bar %r (total %d)', name, total)
        return bar

    def show_and_wait(self) -> List[str]:
        """
        Draw every bar until all of them ended or the watchdog expires.

        Returns:
            Names of the bars that did not complete exactly
        """
        with self._lock:
            if self._waited:
                raise RuntimeError("show_and_wait() can only run once per manager")
            self._waited = True

        terminal = self._terminal if self._terminal is not None else AnsiTerminal()

        summary: Dict[str, Snapshot] = {}
        order: List[str] = []
        latest_sequence: Dict[int, int] = {}

        while self.bar_count > 0:
            try:
                snapshot = self._channel.get(timeout=self._timeout)
            except Empty:
                logger.warning('No progress reported for %.1fs, giving up', self._timeout)
                self._stop_terminal(terminal)
                break

            if snapshot.sequence <= latest_sequence.get(snapshot.source, 0):
                logger.debug('Dropped stale report from bar %r', snapshot.name)
                continue
            latest_sequence[snapshot.source] = snapshot.sequence

            if snapshot.name not in summary:
                logger.debug('First report from bar %r', snapshot.name)
                order.append(snapshot.name)

            summary[snapshot.name] = snapshot

            finished_count = sum(1 for name in order if summary[name].status.is_terminal)
            self._draw(terminal, [summary[name] for name in order])

            if finished_count == self.bar_count:
                break

            self._move_cursor_back(terminal)

        unfinished = self._collect_unfinished(summary, order)

        drained = self._channel.close()
        if drained:
            logger.debug('Dropped %d undelivered snapshots', len(drained))

        if unfinished:
            logger.warning('%d bars did not finish: %s', len(unfinished), ', '.join(unfinished))
            try:
                terminal.write('Process not finished: \n  ' + '\n  '.join(unfinished) + '\n')
            except Exception:
                logger.exception('Display summary failed')

        return unfinished

    def _collect_unfinished(self, summary: Dict[str, Snapshot], order: List[str]) -> List[str]:
        unfinished = [name for name in order if not summary[name].is_finished()]

        # Bars that never reported at all
        for name in dict.fromkeys(self._names):
            if name not in summary:
                unfinished.append(name)

        return unfinished

    def _draw(self, terminal: Terminal, snapshots: List[Snapshot]):
        lines = []
        for snapshot in snapshots:
            lines.extend(snapshot.render(_display_name(snapshot.name)))

        try:
            terminal.print_multiline(lines)
        except Exception:
            logger.exception('Display progress failed')

    def _move_cursor_back(self, terminal: Terminal):
        try:
            terminal.move_cursor_back()
        except Exception:
            logger.exception('Display progress failed')

    def _stop_terminal(self, terminal: Terminal):
        try:
            terminal.stop()
        except Exception:
            logger.exception('Restoring terminal failed')


# ============================================================================
# Convenience Functions
# ============================================================================

def progress(iterable: Iterable,
             name: str,
             total: Optional[int] = None,
             single_line: bool = True,
             terminal: Optional[Terminal] = None) -> Iterator:
    """
    Wrap an iterable with a standalone bar advanced once per item.
    An empty iterable yields nothing and draws no bar.

    Example:
        for item in progress([1, 2, 3, 4, 5], name="Processing"):
            process(item)

    Args:
        iterable: The iterable to wrap
        name: Bar name
        total: Total items (auto-detected if possible)
        single_line: Redraw one line instead of a two-line block
        terminal: Output surface
    """
    if total is None:
        try:
            total = len(iterable)  # type: ignore[arg-type]
        except TypeError:
            raise ValueError("total is required for iterables without len()") from None

    if total == 0:
        return

    with create_single_bar(total, name, single_line=single_line, terminal=terminal) as bar:
        for item in iterable:
            yield item
            bar.increment(1, str(item))

import pytest


class RecordingTerminal:
    """Terminal double that keeps everything drawn on it"""

    def __init__(self):
        self.writes = []
        self.blocks = []
        self.moves = 0
        self.stopped = False

    def write(self, text):
        self.writes.append(text)

    def print_multiline(self, lines):
        self.blocks.append(list(lines))

    def move_cursor_back(self):
        self.moves += 1

    def stop(self):
        self.stopped = True

    @property
    def output(self):
        return ''.join(self.writes)


@pytest.fixture
def terminal():
    return RecordingTerminal()

import io

from barmux import AnsiTerminal


class _TtyStream(io.StringIO):
    def isatty(self):
        return True


def test_plain_terminal_prints_lines():
    stream = io.StringIO()
    terminal = AnsiTerminal(stream, use_ansi=False)
    terminal.print_multiline(['one', 'two'])
    terminal.move_cursor_back()
    terminal.stop()
    assert stream.getvalue() == 'one\ntwo\n'


def test_ansi_terminal_rewinds_the_block():
    stream = io.StringIO()
    terminal = AnsiTerminal(stream, use_ansi=True)
    terminal.print_multiline(['one', 'two'])
    terminal.move_cursor_back()

    output = stream.getvalue()
    assert '\r\033[Kone\n\r\033[Ktwo\n' in output
    assert output.endswith('\r\033[F\033[F')
    # Cursor is visible between redraws
    assert output.count('\033[?25l') == output.count('\033[?25h') == 1


def test_ansi_terminal_stop_moves_below_block():
    stream = io.StringIO()
    terminal = AnsiTerminal(stream, use_ansi=True)
    terminal.print_multiline(['one', 'two'])
    terminal.move_cursor_back()
    terminal.stop()
    assert stream.getvalue().endswith('\033[F\033[F\n\n\033[?25h')


def test_ansi_terminal_clears_taller_previous_block():
    stream = io.StringIO()
    terminal = AnsiTerminal(stream, use_ansi=True)
    terminal.print_multiline(['one', 'two', 'three'])
    terminal.move_cursor_back()
    terminal.print_multiline(['four'])
    assert '\r\033[Kfour\n\r\033[K\n\r\033[K\n\033[F\033[F' in stream.getvalue()


def test_ansi_detection(monkeypatch):
    monkeypatch.setenv('TERM', 'xterm-256color')
    assert AnsiTerminal(_TtyStream()).use_ansi
    assert not AnsiTerminal(io.StringIO()).use_ansi

    monkeypatch.setenv('TERM', 'dumb')
    assert not AnsiTerminal(_TtyStream()).use_ansi

    monkeypatch.delenv('TERM')
    assert not AnsiTerminal(_TtyStream()).use_ansi

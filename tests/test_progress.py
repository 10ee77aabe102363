import io

from wings.progress import Progress


def test_properly_initializes():
    p = Progress(1000)
    assert p.total == 1000
    assert p.written == 0


def test_increments_written_when_write_is_called():
    v = b"hello"
    p = Progress(1000)
    assert p.write(v) == len(v)
    assert p.written == len(v)


def test_renders_a_progress_bar():
    v = b" " * 100
    p = Progress(1000)
    p.write(v)
    assert p.written == len(v)
    assert p.render(25) == "[==                       ] 100 B / 1000 B"


def test_renders_a_progress_bar_when_written_exceeds_total():
    v = b" " * 1001
    p = Progress(1000)
    p.write(v)
    assert p.written == len(v)
    assert p.render(25) == "[=========================] 1001 B / 1000 B"


def test_passes_through_to_writer():
    sink = io.BytesIO()
    p = Progress(10, writer=sink)
    p.write(b"abc")
    p.write(b"de")
    assert sink.getvalue() == b"abcde"
    assert p.written == 5


def test_set_total():
    p = Progress(10)
    p.set_total(1000)
    assert p.total == 1000


def test_bar_width_is_constant():
    p = Progress(1000)
    for _ in range(12):
        p.write(b" " * 100)
        bar = p.render(25)
        assert bar.index("]") == 26


def test_zero_total_renders_empty_bar():
    p = Progress(0)
    p.write(b"x")
    assert p.render(4).startswith("[    ]")
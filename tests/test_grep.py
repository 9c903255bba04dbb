import io

import pytest

from xvtools.grep import BUF_SIZE, grep, main, match


@pytest.mark.parametrize(
    "pattern,text",
    [
        ("^ab", "abc"),
        ("ab$", "cab"),
        ("a.c", "xabcx"),
        ("a*b", "b"),
        ("^$", ""),
        ("x.*y", "x123y"),
        ("", "anything"),
    ],
)
def test_match_true(pattern, text):
    assert match(pattern, text) is True


@pytest.mark.parametrize(
    "pattern,text",
    [
        ("^x", "abc"),
        ("b$", "abc"),
        ("^$", "a"),
        ("a.c", "ac"),
        ("^a*$", "aab"),
    ],
)
def test_match_false(pattern, text):
    assert match(pattern, text) is False


def test_grep_prints_matching_lines():
    out = io.StringIO()
    grep("an", io.StringIO("apple\nbanana\ncandy\ncherry\n"), out)
    assert out.getvalue() == "banana\ncandy\n"


def test_grep_ignores_unterminated_last_line():
    out = io.StringIO()
    grep("x", io.StringIO("xx\nxx"), out)
    assert out.getvalue() == "xx\n"


def test_grep_stops_on_line_longer_than_buffer():
    out = io.StringIO()
    text = "a" * (BUF_SIZE * 2) + "\n" + "a\n"
    grep("a", io.StringIO(text), out)
    assert out.getvalue() == ""


def test_main_without_pattern_fails(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().err


def test_main_reads_files(tmp_path, capsys):
    path = tmp_path / "words.txt"
    path.write_text("one\ntwo\nthree\n")
    assert main(["^t", str(path)]) == 0
    assert capsys.readouterr().out == "two\nthree\n"


def test_main_missing_file(tmp_path, capsys):
    missing = tmp_path / "nope"
    assert main(["x", str(missing)]) == 1
    assert capsys.readouterr().out == f"grep: cannot open {missing}\n"
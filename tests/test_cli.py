"""
Tests for the command-line entry point.
"""

import io

import pytest

from deconfuser import __version__
from deconfuser.cli import PASS_NAMES, beautify, main

DECOY_JS = 'function f(){} f(log(1), log(2));'


@pytest.fixture
def script(tmp_path):
    path = tmp_path / 'in.js'
    path.write_text(DECOY_JS, encoding='utf-8')
    return path


def test_writes_output_file(script, tmp_path):
    out = tmp_path / 'out.js'
    assert main([str(script), '-o', str(out)]) == 0
    assert out.read_text(encoding='utf-8') == 'log(1);\nlog(2);\n'


def test_writes_stdout(script, capsys):
    assert main([str(script)]) == 0
    assert capsys.readouterr().out == 'log(1);\nlog(2);\n'


def test_reads_stdin(monkeypatch, capsys):
    monkeypatch.setattr('sys.stdin', io.StringIO(DECOY_JS))
    assert main(['-']) == 0
    assert capsys.readouterr().out == 'log(1);\nlog(2);\n'


def test_skip(tmp_path, capsys):
    path = tmp_path / 'in.js'
    path.write_text('function f(){} f(log(1));', encoding='utf-8')
    assert main([str(path), '--skip', 'anti_tooling']) == 0
    assert capsys.readouterr().out == 'function f() {\n}\nf(log(1));\n'


def test_passes_selects(tmp_path, capsys):
    path = tmp_path / 'in.js'
    path.write_text('function f(){} f(x = 1 + 1);', encoding='utf-8')
    assert main([str(path), '--passes', 'anti_tooling']) == 0
    assert capsys.readouterr().out == 'x = 1 + 1;\n'


def test_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / 'absent.js')]) == 1
    assert 'cannot read' in capsys.readouterr().err


def test_parse_failure(tmp_path, capsys):
    path = tmp_path / 'bad.js'
    path.write_text('function (', encoding='utf-8')
    assert main([str(path)]) == 1
    assert capsys.readouterr().err.startswith('deconfuser: ')


def test_unknown_pass(script, capsys):
    with pytest.raises(SystemExit) as info:
        main([str(script), '--passes', 'anti_tooling,bogus'])
    assert info.value.code == 2
    assert 'bogus' in capsys.readouterr().err


def test_version(capsys):
    with pytest.raises(SystemExit) as info:
        main(['--version'])
    assert info.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_stats(script, capsys):
    assert main([str(script), '--stats']) == 0
    err = capsys.readouterr().err
    assert 'anti_tooling' in err
    assert 'oracle:' in err
    assert 'total:' in err


def test_beautify(tmp_path, capsys):
    path = tmp_path / 'in.js'
    path.write_text('if (a) { b(); }', encoding='utf-8')
    assert main([str(path), '--beautify']) == 0
    assert capsys.readouterr().out == beautify('if (a) {\n  b();\n}') + '\n'


def test_pass_names_are_unique():
    assert len(PASS_NAMES) == len(set(PASS_NAMES))
    assert PASS_NAMES[0] == 'anti_tooling'

"""Unit tests for scripts/seed_polls.py."""

import importlib.util
import json
from pathlib import Path

import pytest

SCRIPT_PATH = Path(__file__).resolve().parents[2] / 'scripts' / 'seed_polls.py'


@pytest.fixture
def seed_script():
    spec = importlib.util.spec_from_file_location('seed_polls', SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_seed_default_polls_into_memory(seed_script, capsys):
    exit_code = seed_script.main(['--backend', 'memory', '--list'])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert 'Seeded 2 poll(s) into memory storage' in output
    assert 'poll_1 [active]' in output
    assert 'opt_c=Python' in output


def test_seed_from_file(seed_script, tmp_path, capsys):
    path = tmp_path / 'polls.json'
    path.write_text(json.dumps([{
        'id': 'poll_x',
        'question': 'Coffee or tea?',
        'options': [{'id': 'c', 'text': 'Coffee'}, {'id': 't', 'text': 'Tea'}],
    }]))

    exit_code = seed_script.main(['--backend', 'memory', '--polls-file', str(path), '--list'])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert 'poll_x [active] Coffee or tea? (c=Coffee, t=Tea)' in output


def test_seed_missing_file_fails(seed_script, tmp_path):
    exit_code = seed_script.main(['--backend', 'memory', '--polls-file', str(tmp_path / 'missing.json')])
    assert exit_code == 1

"""Tests for gladiator.problems - the TOML problem bank."""

import random
import textwrap

from gladiator.problems import Problem, ProblemBank


def _write(tmp_path, content):
    path = tmp_path / "problems.toml"
    path.write_text(textwrap.dedent(content))
    return path


class TestFromFile:
    def test_loads_entries(self, tmp_path):
        path = _write(tmp_path, """\
            [[problems]]
            id = "fizzbuzz"
            prompt = "Print fizzbuzz up to 100"

            [[problems]]
            id = "legacy"
            problem = "Reverse a linked list"

            [[problems]]
            id = "retired"
            prompt = "Sort a list"
            active = false
        """)
        bank = ProblemBank.from_file(path)

        assert [p.id for p in bank.problems] == ["fizzbuzz", "legacy", "retired"]
        assert bank.problems[1].prompt == "Reverse a linked list"
        assert [p.id for p in bank.active()] == ["fizzbuzz", "legacy"]

    def test_malformed_entries_skipped(self, tmp_path):
        path = _write(tmp_path, """\
            [[problems]]
            id = "ok"
            prompt = "Do the thing"

            [[problems]]
            prompt = "no id"

            [[problems]]
            id = "blank"
            prompt = "   "
        """)
        assert [p.id for p in ProblemBank.from_file(path).problems] == ["ok"]

    def test_missing_file_is_empty(self, tmp_path):
        bank = ProblemBank.from_file(tmp_path / "missing.toml")
        assert bank.problems == []
        assert bank.pick() is None

    def test_bad_toml_is_empty(self, tmp_path):
        path = _write(tmp_path, "[[problems]\nid = ")
        assert ProblemBank.from_file(path).problems == []


class TestPick:
    def test_only_active_problems_picked(self):
        bank = ProblemBank(
            [Problem(id="on", prompt="x"), Problem(id="off", prompt="y", active=False)],
            rng=random.Random(7),
        )
        assert {bank.pick().id for _ in range(20)} == {"on"}

    def test_nothing_active(self):
        bank = ProblemBank([Problem(id="off", prompt="y", active=False)])
        assert bank.pick() is None


def test_problems_key_not_a_list(tmp_path):
    path = _write(tmp_path, "problems = 5\n")
    bank = ProblemBank.from_file(path)
    assert bank.problems == []
    assert bank.pick() is None

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

from hrm import run_cli
from lexer import UNKNOWN_OPCODE, HRMParseError
from levels import HRMLevelError, Level, builtin_level, level_from_dict, load_level, parse_mixed
from parser import parse_program
from replay import (
    OUTCOME_MATCH,
    OUTCOME_MISMATCH,
    OUTCOME_RUNTIME_ERROR,
    Replay,
    first_mismatch,
    replay,
    replay_source,
)
from values import EMPTY_HANDS, STEP_LIMIT_EXCEEDED, TYPE_MISMATCH, letter, number


PASSTHROUGH = """
a:
    INBOX
    OUTBOX
    JUMP     a
"""

SOLUTIONS = {
    1: PASSTHROUGH,
    2: PASSTHROUGH,
    3: """
    COPYFROM 4
    OUTBOX
    COPYFROM 0
    OUTBOX
    COPYFROM 3
    OUTBOX
""",
    4: """
a:
    INBOX
    COPYTO   0
    INBOX
    OUTBOX
    COPYFROM 0
    OUTBOX
    JUMP     a
""",
    37: """
a:
    INBOX
b:
    COPYTO   22
    COPYFROM [22]
    OUTBOX
    BUMPUP   22
    COPYFROM [22]
    JUMPN    a
    JUMP     b
""",
    38: """
start:
    INBOX
    COPYTO   0
    COPYFROM 9
    COPYTO   1
    COPYTO   2
hund:
    COPYFROM 0
    SUB      11
    JUMPN    tens
    COPYTO   0
    BUMPUP   1
    JUMP     hund
tens:
    COPYFROM 0
    SUB      10
    JUMPN    emit
    COPYTO   0
    BUMPUP   2
    JUMP     tens
emit:
    COPYFROM 1
    JUMPZ    no_hund
    OUTBOX
    COPYFROM 2
    OUTBOX
    JUMP     ones
no_hund:
    COPYFROM 2
    JUMPZ    ones
    OUTBOX
ones:
    COPYFROM 0
    OUTBOX
    JUMP     start
""",
}


def small_level(**overrides):
    fields = dict(
        name="small",
        inbox=(number(1), number(2), number(3)),
        expected_outbox=(number(1), number(2), number(3)),
        floor={},
        floor_size=2,
        number_bound=999,
        step_limit=100,
    )
    fields.update(overrides)
    return Level(**fields)


class TestCatalog(unittest.TestCase):
    def test_solutions_match(self):
        for level_number, text in SOLUTIONS.items():
            with self.subTest(level=level_number):
                report = replay_source(text, builtin_level(level_number))
                self.assertEqual(report.outcome, OUTCOME_MATCH, report.summary())
                self.assertTrue(report.passed)
                self.assertEqual(report.outbox, report.expected)

    def test_mail_room_step_count(self):
        report = replay_source(PASSTHROUGH, builtin_level(1))
        self.assertEqual(report.steps, 9)
        self.assertEqual(report.summary(), "Program completed\nOutput matched! (9 steps)")

    def test_letter_comparison_levels_need_number_arithmetic(self):
        text = """
a:
    INBOX
    COPYTO   0
    INBOX
    SUB      0
    JUMPN    a
"""
        for level_number in (35, 36):
            with self.subTest(level=level_number):
                report = replay_source(text, builtin_level(level_number))
                self.assertEqual(report.outcome, OUTCOME_RUNTIME_ERROR)
                self.assertEqual(report.error.kind, TYPE_MISMATCH)

    def test_passthrough_does_not_solve_later_levels(self):
        report = replay_source(PASSTHROUGH, builtin_level(35))
        self.assertEqual(report.outcome, OUTCOME_MISMATCH)
        self.assertEqual(report.mismatch_index, 3)
        report = replay_source(PASSTHROUGH, builtin_level(36))
        self.assertEqual(report.mismatch_index, 2)

    def test_catalog_contents(self):
        level = builtin_level(4)
        self.assertEqual(list(level.inbox), [number(6), number(4), number(-1), number(7), letter("i"), letter("h")])
        self.assertEqual(level.floor_size, 3)
        self.assertEqual(builtin_level(38).floor, {9: number(0), 10: number(10), 11: number(100)})
        self.assertEqual(builtin_level(36).inbox[3], number(0))

    def test_unknown_level(self):
        with self.assertRaises(HRMLevelError):
            builtin_level(5)


class TestReplay(unittest.TestCase):
    def test_short_output_is_a_mismatch(self):
        report = replay_source("    INBOX\n    OUTBOX\n", small_level())
        self.assertEqual(report.outcome, OUTCOME_MISMATCH)
        self.assertEqual(report.mismatch_index, 1)
        self.assertEqual(
            report.summary(),
            "Program completed\n"
            "Output did not match at index 1\n"
            "Expected: [1, 2, 3]\n"
            "Got:      [1]",
        )

    def test_runtime_error_reports_partial_outbox(self):
        text = "a:\n    INBOX\n    OUTBOX\n    COPYTO 5\n    JUMP a\n"
        report = replay_source(text, small_level())
        self.assertEqual(report.outcome, OUTCOME_RUNTIME_ERROR)
        self.assertEqual(report.outbox, [number(1)])
        self.assertFalse(report.passed)
        self.assertTrue(report.summary().startswith("Program failed\nInvalidAddress:"))

    def test_empty_hands(self):
        report = replay_source("    OUTBOX\n", small_level())
        self.assertEqual(report.error.kind, EMPTY_HANDS)
        self.assertEqual(report.error.instruction_index, 0)

    def test_step_limit_override(self):
        program = parse_program(PASSTHROUGH)
        report = replay(program, small_level(), step_limit=4)
        self.assertEqual(report.error.kind, STEP_LIMIT_EXCEEDED)
        self.assertEqual(replay(program, small_level()).outcome, OUTCOME_MATCH)

    def test_parse_error_propagates(self):
        with self.assertRaises(HRMParseError) as ctx:
            replay_source("    WAIT\n", small_level())
        self.assertEqual(ctx.exception.kind, UNKNOWN_OPCODE)

    def test_replays_are_repeatable(self):
        runner = Replay(parse_program(SOLUTIONS[4]), builtin_level(4))
        first = runner.run()
        second = runner.run()
        self.assertEqual(first, second)

    def test_reports_keep_their_own_trace(self):
        runner = Replay(parse_program("a:\n    INBOX\n    OUTBOX\n    COPYFROM 1\n    JUMP a\n"), small_level())
        first = runner.run()
        second = runner.run()
        self.assertEqual(first.error.kind, second.error.kind)
        self.assertIsNot(first.log, second.log)
        self.assertEqual([e.rule for e in first.log.entries], ["INBOX", "OUTBOX", "COPYFROM"])

    def test_level_floor_is_not_mutated(self):
        level = builtin_level(38)
        replay_source(SOLUTIONS[38], level)
        self.assertEqual(level.floor, builtin_level(38).floor)

    def test_first_mismatch(self):
        a, b = number(1), letter("a")
        self.assertIsNone(first_mismatch([], []))
        self.assertIsNone(first_mismatch([a, b], [a, b]))
        self.assertEqual(first_mismatch([a, a], [a, b]), 1)
        self.assertEqual(first_mismatch([a], [a, b]), 1)
        self.assertEqual(first_mismatch([a, b], [a]), 1)
        self.assertEqual(first_mismatch([number(97)], [b]), 0)


class TestLevelFiles(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, name, content):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)
        return path

    def level_data(self, **overrides):
        data = {
            "name": "Pairs",
            "inbox": [1, "b", -3],
            "outbox": "1,b,-3",
            "floor": {"0": 5},
            "floor_size": 2,
            "number_bound": 999,
            "step_limit": 50,
        }
        data.update(overrides)
        return data

    def test_load_level(self):
        path = self.write("pairs.json", json.dumps(self.level_data()))
        level = load_level(path)
        self.assertEqual(level.name, "Pairs")
        self.assertEqual(list(level.inbox), [number(1), letter("b"), number(-3)])
        self.assertEqual(level.inbox, level.expected_outbox)
        self.assertEqual(level.floor, {0: number(5)})
        self.assertTrue(replay_source(PASSTHROUGH, level).passed)

    def test_parse_mixed(self):
        self.assertEqual(parse_mixed("6,4,-1,7,ih"), [number(6), number(4), number(-1), number(7), letter("i"), letter("h")])
        self.assertEqual(parse_mixed("ab, 0"), [letter("a"), letter("b"), number(0)])
        with self.assertRaises(ValueError):
            parse_mixed("1,5000000000")

    def test_bad_level_data(self):
        data = self.level_data()
        del data["step_limit"]
        cases = [
            data,
            self.level_data(floor={"2": 1}),
            self.level_data(floor=[1]),
            self.level_data(inbox=[1000]),
            self.level_data(inbox=["ab"]),
            self.level_data(inbox=7),
            self.level_data(step_limit=0),
            self.level_data(floor_size="3"),
            self.level_data(inbox="5000000000"),
            self.level_data(outbox="1,b,-3000000000"),
            self.level_data(number_bound=-1),
            self.level_data(number_bound=2 ** 31),
        ]
        for data in cases:
            with self.subTest(data=data):
                with self.assertRaises(HRMLevelError):
                    level_from_dict(data)

    def test_bad_files(self):
        with self.assertRaises(HRMLevelError):
            load_level(os.path.join(self.tmpdir.name, "missing.json"))
        with self.assertRaises(HRMLevelError):
            load_level(self.write("broken.json", "{"))
        with self.assertRaises(HRMLevelError):
            load_level(self.write("list.json", "[]"))


class TestCli(unittest.TestCase):
    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = run_cli(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_matching_source(self):
        code, out, err = self.run_cli("1", PASSTHROUGH, "-source")
        self.assertEqual(code, 0)
        self.assertEqual(out, "Program completed\nOutput matched! (9 steps)\n")
        self.assertEqual(err, "")

    def test_program_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "level4.txt")
            with open(path, "w", encoding="utf-8") as handle:
                handle.write("-- HUMAN RESOURCE MACHINE PROGRAM --\n" + SOLUTIONS[4])
            code, out, _ = self.run_cli("4", path)
        self.assertEqual(code, 0)
        self.assertIn("Output matched!", out)

    def test_parse_error_shows_caret(self):
        code, out, err = self.run_cli("1", "    INBOX\n    FOO\n", "-source")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertEqual(
            err.splitlines(),
            [
                "Error occurred while parsing:",
                "    FOO",
                "    ^",
                "ParseError: UnknownOpcode: Unknown instruction 'FOO' at <string>:2:5",
            ],
        )

    def test_runtime_error_trace(self):
        code, out, err = self.run_cli("1", "    OUTBOX\n", "-source", "--traceback-json")
        self.assertEqual(code, 1)
        self.assertTrue(out.startswith("Program failed\nEmptyHands:"))
        self.assertIn("Trace (most recent step last):", err)
        payload = err[err.index("{"):]
        self.assertEqual(json.loads(payload)["error"]["kind"], EMPTY_HANDS)

    def test_mismatch_exit_code(self):
        code, out, _ = self.run_cli("3", PASSTHROUGH, "-source")
        self.assertEqual(code, 1)
        self.assertIn("Output did not match at index 0", out)

    def test_unknown_level(self):
        code, _, err = self.run_cli("99", PASSTHROUGH, "-source")
        self.assertEqual(code, 1)
        self.assertIn("LevelError", err)

    def test_level_bound_too_large(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "huge.json")
            with open(path, "w", encoding="utf-8") as handle:
                json.dump({"inbox": [1], "outbox": [1], "floor_size": 0, "number_bound": 2 ** 31, "step_limit": 10}, handle)
            code, out, err = self.run_cli(path, PASSTHROUGH, "-source")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("LevelError", err)
        self.assertIn("number_bound", err)

    def test_missing_program_file(self):
        code, _, err = self.run_cli("1", os.path.join(tempfile.gettempdir(), "no-such-hrm-program.txt"))
        self.assertEqual(code, 1)
        self.assertIn("Failed to read", err)


if __name__ == "__main__":
    unittest.main(verbosity=2)

#!/usr/bin/env python3
'''
Tests for the script bytecode decompiler and its text rendering.
'''

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from rglib.decompiler import decode_instructions, decompile, decompile_map
from rglib.errors import FormatError, TruncatedDataError, UnknownOpcodeError
from rglib.rgm import decode_rgm
from rgm_samples import (
    DOOR_SCRIPT, DOOR_TEXT, GUARD_SCRIPT, GUARD_TEXT, build_rgm, make_header, sample_symbols,
)


def body(text: str) -> list:
    '''Statement lines of a single-header script, without the header and outer braces.'''
    return text.split('\n')[2:-1]


class TestStatements(unittest.TestCase):
    '''
    One statement per script
    '''

    def setUp(self):
        self.symbols = sample_symbols()

    def decompile(self, hex_script, **kwargs):
        return decompile(make_header(bytes.fromhex(hex_script), **kwargs), self.symbols)

    def test_return(self):
        self.assertEqual(self.decompile("12"), "TEST\n{\n  Return\n}")

    def test_goto_without_label(self):
        self.assertEqual(body(self.decompile("04 00 00 00 00")), ["  Goto"])

    def test_single_statements(self):
        cases = [
            ("13", "Endint"),
            ("05 00 00 00 00", "End"),
            ("0A 01 07 FB FF FF FF 00", "var1 = -5"),
            ("0A 01 0A 02 01 07 03 00 00 00 00", "var1 = var2 + 3"),
            ("0A 01 0A 02 05 07 02 00 00 00 08 0A 03 00", "var1 = var2 << 2 | var3"),
            ("06 01 00 07 00 00 00 00 00", "DoorOpen = 0"),
            ("14 01 00 01 00 07 05 00 00 00 00", "Player.x = 5"),
            ("10 02 00 00 00", "Camera.health--"),
            ("17 05", "<Anchor>=5"),
            ("00 01 00 01 07 05 00 00 00", "Wait(5)"),
            ("02 05 00 01 07 02 00 00 00", "AddItem(2)"),
            ("02 06 00 02 07 01 00 00 00 07 00 00 00 00", "LoadWorld(<ISLAND>, 0)"),
            ("02 06 00 02 07 02 00 00 00 07 00 00 00 00", "LoadWorld(2, 0)"),
            ("02 00 00", "NullFunction()"),
            ("1A 00 00 02 07 00 00", "Me.ActiveItem()"),
        ]
        for hex_script, expected in cases:
            with self.subTest(value = expected):
                self.assertEqual(body(self.decompile(hex_script)), ["  " + expected])

    def test_string_parameter(self):
        text = self.decompile("00 01 00 01 15 01 00 00 00", strings=["a", "Hello"])
        self.assertEqual(body(text), ['  Wait("Hello")'])

    def test_string_object(self):
        text = self.decompile("0F 04 01 01 00", strings=["a", "gate"])
        self.assertEqual(body(text), ["  gate.x++"])

    def test_variable_object(self):
        text = self.decompile("1A 0A 01 02 07 00 00", variables=[0, 31])
        self.assertEqual(body(text), ["  31.ActiveItem()"])

    def test_variable_object_with_repeated_value(self):
        variables = [0, 7, 7]
        self.assertEqual(body(self.decompile("1A 0A 01 02 07 00 00", variables=variables)),
                         ["  7.ActiveItem()"])
        self.assertEqual(body(self.decompile("1A 0A 02 02 07 00 00", variables=variables)),
                         ["  var2.ActiveItem()"])

    def test_dialogue_comment(self):
        text = self.decompile("02 02 00 01 07 67 64 30 31")
        self.assertEqual(body(text), ['  RTX("gd01") // Dlg gd01 = Halt!'])

    def test_dialogue_without_subtitle(self):
        text = self.decompile("02 02 00 01 07 7A 7A 39 39")
        self.assertEqual(body(text), ['  RTX("zz99")'])

    def test_flag_comment_only_in_statement_position(self):
        text = self.decompile("06 00 00 07 01 00 00 00 00")
        self.assertEqual(body(text), ["  GuardAlerted = 1 // Guard saw the player"])
        text = self.decompile("01 03 00 02 06 00 00 00 00 07 01 00 00 00")
        self.assertEqual(body(text), ["  @WalkTo(GuardAlerted, 1)"])

    def test_global_flag_literal(self):
        text = self.decompile("02 04 00 01 16 0C 00 00 00")
        self.assertEqual(body(text), ["  TestGlobalFlag(12)"])

    def test_header_line_with_start(self):
        text = self.decompile("12 12", script_pc=1, name="GATE")
        self.assertEqual(text, "GATE (Execution starts at #01)\n{\n  Return\n\n  #01:\n  Return\n}")


class TestBlocks(unittest.TestCase):
    '''
    Conditionals, nesting and labels
    '''

    def setUp(self):
        self.symbols = sample_symbols()

    def decompile(self, hex_script, **kwargs):
        return decompile(make_header(bytes.fromhex(hex_script), **kwargs), self.symbols)

    def test_if_block(self):
        text = self.decompile("03 0A 01 00 00 07 01 00 00 00 00 10 00 00 00 12 13")
        self.assertEqual(text, "TEST\n{\n  if var1 = 1\n  {\n    Return\n  }\n  Endint\n}")
        self.assertEqual(text.count("{"), 2)
        self.assertEqual(text.count("}"), 2)

    def test_nested_if_closes_every_level(self):
        text = self.decompile(
            "03 0A 01 00 00 07 01 00 00 00 00 1F 00 00 00"
            "03 0A 02 00 00 07 02 00 00 00 00 1F 00 00 00 12")
        self.assertEqual(body(text), [
            "  if var1 = 1",
            "  {",
            "    if var2 = 2",
            "    {",
            "      Return",
            "    }",
            "  }",
        ])

    def test_empty_block(self):
        text = self.decompile("03 0A 01 00 00 07 01 00 00 00 00 0F 00 00 00 13")
        self.assertEqual(body(text), ["  if var1 = 1", "  {", "  }", "  Endint"])

    def test_block_end_is_script_offset(self):
        text = self.decompile("12 03 0A 01 00 00 07 01 00 00 00 00 11 00 00 00 12 13")
        self.assertEqual(body(text), [
            "  Return", "  if var1 = 1", "  {", "    Return", "  }", "  Endint",
        ])

    def test_conditions(self):
        cases = [
            ("03 06 00 00 01 07 01 00 00 00 00 03 07 02 00 00 00 00",
             "if GuardAlerted + 1 > 2"),
            ("03 0A 01 00 05 07 00 00 00 00 01 0A 02 00 01 0A 03 00 00",
             "if var1 >= 0 and var2 != var3"),
            ("03 14 00 00 00 00 00 02 07 0A 00 00 00 00",
             "if Me.health < 10"),
            ("03 02 07 00 00 00 07 01 00 00 00 00",
             "if ActiveItem() = <SWORD>"),
            ("03 1A 01 00 07 00 00 00 07 02 00 00 00 00",
             "if Player.ActiveItem() = 2"),
        ]
        for hex_conditions, expected in cases:
            with self.subTest(value = expected):
                script = bytes.fromhex(hex_conditions)
                script += (len(script) + 4).to_bytes(4, 'little')
                text = decompile(make_header(script), self.symbols)
                self.assertEqual(body(text), ["  " + expected, "  {", "  }"])

    def test_script_rv_block(self):
        text = self.decompile("1E 03 13 13 13 13 12")
        self.assertEqual(body(text), [
            "  if <ScriptRv> = 3", "  {",
            "    Endint", "    Endint", "    Endint", "    Endint",
            "  }", "  Return",
        ])

    def test_labels(self):
        text = self.decompile("04 0A 00 00 00 11 0A 00 00 00 12 1B 0A 00 00 00")
        self.assertEqual(body(text), [
            "  Goto #0A",
            "  Gosub #0A",
            "",
            "  #0A:",
            "  Return",
            "  <TaskPause(#0A)>",
        ])

    def test_label_at_end_of_script(self):
        text = self.decompile("04 05 00 00 00")
        self.assertEqual(text, "TEST\n{\n  Goto #05\n\n  #05:\n}")

    def test_label_inside_statement_warns(self):
        with self.assertLogs('rglib.decompiler', level='WARNING') as logs:
            decoder = decode_instructions(make_header(bytes.fromhex("04 02 00 00 00")),
                                          self.symbols)
        self.assertIn(2, decoder.labels)
        self.assertIn("#02", logs.output[0])

    def test_instruction_depths(self):
        decoder = decode_instructions(
            make_header(bytes.fromhex("03 0A 01 00 00 07 01 00 00 00 00 10 00 00 00 12 13")),
            self.symbols)
        self.assertEqual([(i.address, i.depth) for i in decoder.instructions],
                         [(0, 1), (15, 2), (16, 1)])


class TestErrors(unittest.TestCase):
    '''
    Malformed bytecode
    '''

    def setUp(self):
        self.symbols = sample_symbols()

    def test_unknown_opcode(self):
        with self.assertRaises(UnknownOpcodeError) as ctx:
            decompile(make_header(b'\x12\x63'), self.symbols)
        self.assertEqual(ctx.exception.value, 0x63)
        self.assertEqual(ctx.exception.offset, 1)

    def test_unknown_opcode_lenient(self):
        with self.assertLogs('rglib.decompiler', level='WARNING'):
            text = decompile(make_header(b'\x63\x12'), self.symbols, lenient=True)
        self.assertIn("  Return", text.split('\n'))

    def test_unknown_operator(self):
        with self.assertRaises(UnknownOpcodeError):
            decompile(make_header(bytes.fromhex("0A 01 07 01 00 00 00 20")), self.symbols)

    def test_unknown_object_selector(self):
        with self.assertRaises(UnknownOpcodeError):
            decompile(make_header(bytes.fromhex("10 07 00 00 00")), self.symbols)

    def test_truncated(self):
        for hex_script in ("04 00 00", "02 01", "03 0A 01 00 00 07 01 00 00 00 00 14 00 00 00 12"):
            with self.subTest(value = hex_script):
                with self.assertRaises(TruncatedDataError):
                    decompile(make_header(bytes.fromhex(hex_script)), self.symbols)

    def test_string_index_out_of_range(self):
        with self.assertRaises(FormatError):
            decompile(make_header(bytes.fromhex("00 01 00 01 15 03 00 00 00")), self.symbols)


class TestSampleMap(unittest.TestCase):
    '''
    Whole headers and whole maps
    '''

    def setUp(self):
        self.symbols = sample_symbols()
        self.container = decode_rgm(build_rgm())

    def test_guard_header(self):
        header = make_header(GUARD_SCRIPT, name="GUARD01", script_pc=0x22, strings=["gd01"])
        self.assertEqual(decompile(header, self.symbols), GUARD_TEXT)

    def test_door_header(self):
        header = make_header(DOOR_SCRIPT, name="DOOR", strings=["door_a"],
                             variables=[0, 0, 77, 12, 0, 0])
        self.assertEqual(decompile(header, self.symbols), DOOR_TEXT)

    def test_map_file(self):
        text = decompile_map(self.container, self.symbols, "ISLAND")
        expected = (
            "Maps\\ISLAND.RGM\nIDs: 1, 2\n\n" + GUARD_TEXT + "\n\n"
            "var2 = 77\nvar3 = 12\n\n"
            "Gravity = 3\nHealth = -1\n\n" + DOOR_TEXT + "\n\n"
            "EMPTY\n{\n}")
        self.assertEqual(text, expected)

    def test_map_file_single_id(self):
        text = decompile_map(self.container, self.symbols, "CATACOMB")
        self.assertTrue(text.startswith("Maps\\CATACOMB.RGM\nID: 5\n\nGUARD01"))

    def test_map_file_without_preamble(self):
        text = decompile_map(self.container, self.symbols)
        self.assertTrue(text.startswith(GUARD_TEXT))


if __name__ == '__main__':
    unittest.main()

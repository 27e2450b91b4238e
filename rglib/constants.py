"""
redguard-re: Format constants and script tables.

All offsets are 0-indexed. Multi-byte header fields are little-endian;
RGM record lengths are big-endian.
Decoded from: MAPS/*.RGM, soup386/SOUP386.DEF, ITEM.INI, REDGUARD.EXE behavior.
"""

# =============================================================================
# RGM CONTAINER RECORDS
# =============================================================================

END_TAG = b'END '

TAG_HEADERS    = b'RAHD'   # header table
TAG_STRINGS    = b'RAST'   # NUL-terminated string pool
TAG_STRING_OFS = b'RASB'   # per-header string offsets into RAST
TAG_VARIABLES  = b'RAVA'   # int32 local variable pool (leading dummy entry)
TAG_SCRIPTS    = b'RASC'   # concatenated script bytecode
TAG_ATTRIBUTES = b'RAAT'   # 256 attribute bytes per header

# Records rebuilt on write; everything else is copied through untouched
REBUILT_TAGS = (TAG_HEADERS, TAG_STRINGS, TAG_STRING_OFS, TAG_VARIABLES,
                TAG_SCRIPTS, TAG_ATTRIBUTES)

RAHD_PREFIX_SIZE = 8       # u32 count + 4 opaque bytes
ATTRIBUTE_BLOCK_SIZE = 256
TEXT_ENCODING = 'latin-1'


# =============================================================================
# RAHD SUB-RECORD LAYOUT (165 bytes)
# =============================================================================

HEADER_SIZE = 165

HEADER_FIELDS = {
    # name: (offset, size)
    "name":             (4, 9),    # space/NUL padded ASCII
    "instances":        (13, 2),
    "string_count":     (65, 4),
    "string_index":     (73, 4),   # byte offset into RASB
    "script_length":    (77, 4),
    "script_offset":    (81, 4),   # byte offset into RASC
    "script_pc":        (85, 4),   # entry point, script-relative
    "variable_count":   (117, 4),
    "variable_offset":  (125, 4),  # byte offset into RAVA (/4 = index)
}

# =============================================================================
# SCRIPT OPCODES
# =============================================================================

OP_TASK          = 0
OP_MULTITASK     = 1
OP_FUNCTION      = 2
OP_IF            = 3
OP_GOTO          = 4
OP_END           = 5
OP_FLAG          = 6
OP_NUMERIC       = 7
OP_VARIABLE      = 10
OP_OBJECT_INC    = 15
OP_OBJECT_DEC    = 16
OP_GOSUB         = 17
OP_RETURN        = 18
OP_ENDINT        = 19
OP_OBJECT_DOT    = 20
OP_STRING        = 21
OP_NUMERIC_ALT   = 22   # numeric literal passed to the global flag functions
OP_ANCHOR        = 23
OP_OBJECT_TASK   = 25
OP_OBJECT_FUNC   = 26
OP_TASK_PAUSE    = 27
OP_SCRIPT_RV     = 30

# Bytes covered by the block following "if <ScriptRv> = N"
SCRIPT_RV_BLOCK_SIZE = 4

# Comparison byte -> text (index = byte value)
COMPARISONS = ("=", "!=", "<", ">", "<=", ">=")

# Operator byte -> text (index = byte value). 0 ends a formula,
# 10/11 are postfix and carry one padding byte.
OPERATORS = ("", "+", "-", "/", "*", "<<", ">>", "&", "|", "^", "++", "--")
OP_POSTFIX_INC = 10
OP_POSTFIX_DEC = 11

# Conjunction byte after an if clause
CONJUNCTIONS = {0: None, 1: "and", 2: "or"}

# Object-dot selector byte -> built-in name
OBJECT_NAMES = ("Me", "Player", "Camera")
OBJ_STRING   = 4
OBJ_VARIABLE = 10


# =============================================================================
# FUNCTION PARAMETER TYPES
#
# Keyed by function name + parameter index. Index 9 is the right-hand side of
# a comparison whose left-hand side calls the function.
# =============================================================================

PARAM_NORMAL   = "normal"
PARAM_DIALOGUE = "dialogue"
PARAM_MAP      = "map"
PARAM_ITEM     = "item"

PARAMETER_TYPES = {
    "ACTIVATE0":       PARAM_DIALOGUE,
    "AddLog0":         PARAM_DIALOGUE,
    "AmbientRtx0":     PARAM_DIALOGUE,
    "menuAddItem0":    PARAM_DIALOGUE,
    "RTX0":            PARAM_DIALOGUE,
    "rtxAnim0":        PARAM_DIALOGUE,
    "RTXp0":           PARAM_DIALOGUE,
    "RTXpAnim0":       PARAM_DIALOGUE,
    "TorchActivate0":  PARAM_DIALOGUE,
    "LoadWorld0":      PARAM_MAP,
    "ActiveItem9":     PARAM_ITEM,
    "AddItem0":        PARAM_ITEM,
    "DropItem0":       PARAM_ITEM,
    "HandItem0":       PARAM_ITEM,
    "HaveItem0":       PARAM_ITEM,
    "SelectItem0":     PARAM_ITEM,
    "ShowItem0":       PARAM_ITEM,
    "ShowItemNoRtx0":  PARAM_ITEM,
}

# Numeric literals passed to these use OP_NUMERIC_ALT
GLOBAL_FLAG_FUNCTIONS = frozenset({"TestGlobalFlag", "SetGlobalFlag", "ResetGlobalFlag"})

DIALOGUE_LABEL_SIZE = 4

FUNCTION_KINDS = ("task", "multitask", "function")


# =============================================================================
# ITEM NAMES
#
# ITEM.INI points item names at RTX subtitles, several of which are shared.
# These ids get distinct names so <NAME> references stay unambiguous.
# =============================================================================

ITEM_NAME_OVERRIDES = {
    7:  "GUARD SWORD",
    15: "RUNE (2 LINES AND A DOT)",
    16: "RUNE (2 LINES)",
    17: "RUNE (A LINE AND DOT)",
    20: "ORC'S BLOOD (SUBLIMATED)",
    22: "SPIDER'S MILK (SUBLIMATED)",
    24: "ECTOPLASM (SUBLIMATED)",
    26: "HIST SAP (SUBLIMATED)",
    30: "GLASS VIAL (WITH ELIXIR)",
    34: "RUNE (fist)",
    35: "'ELVEN ARTIFACTS VIII' (COPY)",
    53: "ISZARA'S JOURNAL (OPEN)",
    57: "ISZARA'S JOURNAL (LOCKED)",
    61: "N'GASTA'S NECROMANCY BOOK",
    62: "BAR MUG",
    63: "MARIAH'S WATERING CAN",
    70: "SKELETON SWORD",
    71: "KEEP OUT",
    72: "NO TRESPASSING",
    73: "TOBIAS' BAR MUG",
    75: "FLAMING SABRE",
    76: "GOBLIN SWORD",
    77: "OGRE'S AXE",
    78: "DRAM'S SWORD",
    79: "SILVER KEY (PALACE)",
    80: "DRAM'S BOW",
    81: "DRAM'S ARROW",
    82: "SILVER LOCKET (COPY)",
    84: "WANTED POSTER",
    85: "PALACE DIAGRAM",
    86: "LAST",
}

# =============================================================================
# SCRIPT TEXT
# =============================================================================

INDENT = "  "
COMMENT_PREFIX = "//"


def label_text(address: int) -> str:
    """Format a script address as a label mnemonic (#1F)."""
    return f"#{address:02X}"

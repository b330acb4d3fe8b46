from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, FrozenSet, List


class AheuiError(Exception):
    """Base class for interpreter errors."""


HANGUL_FIRST = 0xAC00
HANGUL_LAST = 0xD7A3

MEDIAL_COUNT = 21
FINAL_COUNT = 28


DIR_KEEP = "KEEP"
DIR_SET = "SET"
DIR_FLIP_X = "FLIP_X"
DIR_FLIP_Y = "FLIP_Y"
DIR_FLIP_XY = "FLIP_XY"


@dataclass(frozen=True)
class Direction:
    dx: int = 0
    dy: int = 0
    flag: str = DIR_KEEP


NO_DIRECTION = Direction()

# Medial vowel index -> directional instruction. Missing slots keep the vector.
DIRECTIONS: Dict[int, Direction] = {
    0: Direction(1, 0, DIR_SET),  # ㅏ
    2: Direction(2, 0, DIR_SET),  # ㅑ
    4: Direction(-1, 0, DIR_SET),  # ㅓ
    6: Direction(-2, 0, DIR_SET),  # ㅕ
    8: Direction(0, -1, DIR_SET),  # ㅗ
    12: Direction(0, -2, DIR_SET),  # ㅛ
    13: Direction(0, 1, DIR_SET),  # ㅜ
    17: Direction(0, 2, DIR_SET),  # ㅠ
    18: Direction(flag=DIR_FLIP_Y),  # ㅡ
    19: Direction(flag=DIR_FLIP_XY),  # ㅢ
    20: Direction(flag=DIR_FLIP_X),  # ㅣ
}


OP_NOP = "NOP"
OP_DIV = "DIV"
OP_ADD = "ADD"
OP_MUL = "MUL"
OP_MOD = "MOD"
OP_PRINT_NUM = "PRINT_NUM"
OP_PRINT_CHAR = "PRINT_CHAR"
OP_POP = "POP"
OP_INPUT_NUM = "INPUT_NUM"
OP_INPUT_CHAR = "INPUT_CHAR"
OP_PUSH = "PUSH"
OP_DUP = "DUP"
OP_SELECT = "SELECT"
OP_MOVE = "MOVE"
OP_CMP = "CMP"
OP_BRANCH = "BRANCH"
OP_SUB = "SUB"
OP_SWAP = "SWAP"
OP_HALT = "HALT"

OPERATIONS: FrozenSet[str] = frozenset(
    {
        OP_NOP,
        OP_DIV,
        OP_ADD,
        OP_MUL,
        OP_MOD,
        OP_PRINT_NUM,
        OP_PRINT_CHAR,
        OP_POP,
        OP_INPUT_NUM,
        OP_INPUT_CHAR,
        OP_PUSH,
        OP_DUP,
        OP_SELECT,
        OP_MOVE,
        OP_CMP,
        OP_BRANCH,
        OP_SUB,
        OP_SWAP,
        OP_HALT,
    }
)

# Initial consonant index (ㄱ ㄲ ㄴ ㄷ ㄸ ㄹ ㅁ ㅂ ㅃ ㅅ ㅆ ㅇ ㅈ ㅉ ㅊ ㅋ ㅌ ㅍ ㅎ)
# -> operation kind. KIND_PRINT and KIND_INPUT are refined by the final.
KIND_PRINT = "PRINT_KIND"
KIND_INPUT = "INPUT_KIND"

INITIAL_KINDS: List[str] = [
    OP_NOP,  # ㄱ
    OP_NOP,  # ㄲ
    OP_DIV,  # ㄴ
    OP_ADD,  # ㄷ
    OP_MUL,  # ㄸ
    OP_MOD,  # ㄹ
    KIND_PRINT,  # ㅁ
    KIND_INPUT,  # ㅂ
    OP_DUP,  # ㅃ
    OP_SELECT,  # ㅅ
    OP_MOVE,  # ㅆ
    OP_NOP,  # ㅇ
    OP_CMP,  # ㅈ
    OP_NOP,  # ㅉ
    OP_BRANCH,  # ㅊ
    OP_NOP,  # ㅋ
    OP_SUB,  # ㅌ
    OP_SWAP,  # ㅍ
    OP_HALT,  # ㅎ
]

FINAL_NUMBER = 21  # ㅇ
FINAL_CHAR = 27  # ㅎ

# Stroke count of each final consonant; the literal pushed by ㅂ.
STROKE_COUNTS: List[int] = [0, 2, 4, 4, 2, 5, 5, 3, 5, 7, 9, 9, 7, 9, 9, 8, 4, 4, 6, 2, 4, 1, 3, 4, 3, 4, 4, 3]


@dataclass(frozen=True)
class Cell:
    op: str = OP_NOP
    value: int = 0
    direction: Direction = NO_DIRECTION


NOP_CELL = Cell()


def is_syllable(ch: str) -> bool:
    return len(ch) == 1 and HANGUL_FIRST <= ord(ch) <= HANGUL_LAST


def decode(ch: str) -> Cell:
    """Decode one source character into a Cell.

    Characters outside the Hangul syllable block decode to ``NOP_CELL``.
    A syllable is split into its initial, medial and final indices: the
    medial picks the direction, the final becomes the operand and the
    initial picks the operation.
    """
    if not is_syllable(ch):
        return NOP_CELL

    offset = ord(ch) - HANGUL_FIRST
    final = offset % FINAL_COUNT
    medial = offset // FINAL_COUNT % MEDIAL_COUNT
    initial = offset // FINAL_COUNT // MEDIAL_COUNT

    direction = DIRECTIONS.get(medial, NO_DIRECTION)
    value = final
    op = INITIAL_KINDS[initial]

    if op == KIND_PRINT:
        if final == FINAL_NUMBER:
            op = OP_PRINT_NUM
        elif final == FINAL_CHAR:
            op = OP_PRINT_CHAR
        else:
            op = OP_POP
    elif op == KIND_INPUT:
        if final == FINAL_NUMBER:
            op = OP_INPUT_NUM
        elif final == FINAL_CHAR:
            op = OP_INPUT_CHAR
        else:
            op = OP_PUSH
            value = STROKE_COUNTS[final]

    return Cell(op=op, value=value, direction=direction)


def decode_line(line: str) -> List[Cell]:
    return [decode(ch) for ch in line]

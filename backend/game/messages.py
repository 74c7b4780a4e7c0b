import enum
import json
from dataclasses import dataclass

from .exceptions import InvalidGuess


class MsgType(str, enum.Enum):
    WORD_TO_GUESS = "WORD_TO_GUESS"
    MESSAGE = "MESSAGE"
    YOU_GUESSED_IT = "YOU_GUESSED_IT"
    NEXT_WORD = "NEXT_WORD"
    CLEAN_CANVAS = "CLEAN_CANVAS"
    CLEAN_WORD_TO_GUESS = "CLEAN_WORD_TO_GUESS"
    SCOREBOARD = "SCOREBOARD"


@dataclass(frozen=True)
class GameMessage:
    type: MsgType
    content: str = ""

    def encode(self) -> str:
        return json.dumps({"type": self.type.value, "content": self.content}, ensure_ascii=False)


def is_word_invalid(word) -> bool:
    return not isinstance(word, str) or not word.strip()


def compare_words(first, second) -> bool:
    """Case-insensitive comparison that ignores surrounding whitespace.

    Raises InvalidGuess when either side is None, empty or blank.
    """
    if is_word_invalid(first):
        raise InvalidGuess("First word is None, empty or blank.")
    if is_word_invalid(second):
        raise InvalidGuess("Second word is None, empty or blank.")
    return first.strip().casefold() == second.strip().casefold()

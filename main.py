#!/usr/bin/env python3
"""Line-oriented front end for the knowledge store (reads STDIN, writes STDOUT)."""

import sys
import string
import logging
from typing import List, Callable, Dict, Optional
from engine import CategoryStore, KBStatus, CATEGORIES

_logger = logging.getLogger("kbstore.main")

# -------------------- Command & message constants --------------------
CMD_LOAD  = "LOAD"
CMD_SAVE  = "SAVE"
CMD_RESET = "RESET"
CMD_EXIT  = "EXIT"
CMD_QUIT  = "QUIT"

MSG_THANKS       = "Thank you."
MSG_RESET        = "Reset successful."
MSG_GOODBYE      = "Goodbye!"
MSG_READ         = "Read {count} responses from {filename}."
ERR_NO_ENTITY    = "Please provide an entity."
ERR_NO_FILENAME  = "Please enter a filename."
ERR_NO_FILE      = "File '{filename}' does not exist."
ERR_READ_FILE    = "Could not read '{filename}'."
ERR_WRITE_FILE   = "Could not write '{filename}'."
ERR_NOMEM        = "Memory allocation failure."
ERR_INVALID      = "Invalid question."
ERR_BAD_ANSWER   = "Sorry, I can't remember that answer."
ERR_UNKNOWN_CMD  = 'I don\'t understand "{word}".'
ERR_INTERNAL     = "ERR internal"

# Word delimiters for splitting a line
DELIMITERS = " ?\t\n"


def _print(line: str) -> None:
    """Write a single line to STDOUT and flush."""
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


def prompt_user(question: str) -> str:
    """Ask a question on STDOUT and block for one line of STDIN ("" on EOF)."""
    _print(question)
    return sys.stdin.readline().rstrip("\r\n")


def split_words(line: str) -> List[str]:
    """Split on DELIMITERS and drop trailing punctuation from each word."""
    for d in DELIMITERS[1:]:
        line = line.replace(d, " ")
    words = []
    for w in line.split(" "):
        w = w.rstrip(string.punctuation)
        if w:
            words.append(w)
    return words


# -------------------- Command handlers --------------------
def handle_question(words: List[str], kb: CategoryStore) -> None:
    """WHAT|WHERE|WHO [is|are] <entity...>  ->  answer | learn a new one"""
    intent = words[0]
    rest = words[1:]
    verb = None
    if rest and rest[0].lower() in ("is", "are"):
        verb, rest = rest[0], rest[1:]
    if not rest:
        _print(ERR_NO_ENTITY)
        return
    entity = " ".join(rest)

    status, value = kb.get(intent, entity)
    if status in (KBStatus.OK, KBStatus.CLOSEST_MATCH):
        _print(value)
        return
    if status == KBStatus.INVALID:
        _print(ERR_INVALID)
        return

    asked = f"{intent} {verb} {entity}" if verb else f"{intent} {entity}"
    answer = prompt_user(f"I don't know. {asked}?")
    status = kb.put(intent, entity, answer)
    if status == KBStatus.INVALID:
        # the category already resolved, so the entity itself was unusable
        _print(ERR_BAD_ANSWER)
    elif status == KBStatus.NOMEM:
        _print(ERR_NOMEM)
    else:
        _print(MSG_THANKS)


def _filename(args: List[str], fillers: tuple) -> Optional[str]:
    """`<cmd> [filler] <file>`: skip an optional filler word."""
    if len(args) >= 2 and args[0].lower() in fillers:
        return args[1]
    return args[0] if args else None


def handle_load(words: List[str], kb: CategoryStore) -> None:
    """LOAD [from] <file>  ->  Read N responses from <file>."""
    filename = _filename(words[1:], ("from",))
    if filename is None:
        _print(ERR_NO_FILENAME)
        return
    try:
        count = kb.load_path(filename)
    except FileNotFoundError:
        _print(ERR_NO_FILE.format(filename=filename))
        return
    except (OSError, UnicodeError):
        _print(ERR_READ_FILE.format(filename=filename))
        return
    if count == KBStatus.NOMEM:
        _print(ERR_NOMEM)
    else:
        _print(MSG_READ.format(count=count, filename=filename))


def handle_save(words: List[str], kb: CategoryStore) -> None:
    """SAVE [to|as] <file>  ->  Thank you."""
    filename = _filename(words[1:], ("to", "as"))
    if filename is None:
        _print(ERR_NO_FILENAME)
        return
    try:
        kb.save_path(filename)
    except OSError:
        _print(ERR_WRITE_FILE.format(filename=filename))
        return
    _print(MSG_THANKS)


def handle_reset(words: List[str], kb: CategoryStore) -> None:
    kb.reset()
    _print(MSG_RESET)


def handle_exit(words: List[str], kb: CategoryStore) -> str:
    """EXIT | QUIT -> signal main loop to terminate."""
    _print(MSG_GOODBYE)
    return "EXIT"


DISPATCH: Dict[str, Callable[[List[str], CategoryStore], Optional[str]]] = {
    CMD_LOAD: handle_load,
    CMD_SAVE: handle_save,
    CMD_RESET: handle_reset,
    CMD_EXIT: handle_exit,
    CMD_QUIT: handle_exit,
}
DISPATCH.update({name.upper(): handle_question for name in CATEGORIES})


def main(argv: List[str]) -> int:
    """Run the REPL loop.

    Args:
        argv: Command-line arguments; argv[1] may name a knowledge file to load.
    """
    kb = CategoryStore(confirm=prompt_user)
    if len(argv) >= 2:
        handle_load(["load", argv[1]], kb)

    while True:
        try:
            raw = sys.stdin.readline()
            if not raw:  # EOF → clean exit
                return 0
            words = split_words(raw.strip())
            if not words:
                continue

            handler = DISPATCH.get(words[0].upper())
            if handler is None:
                _print(ERR_UNKNOWN_CMD.format(word=words[0]))
                continue

            if handler(words, kb) == "EXIT":
                return 0

        except KeyboardInterrupt:
            return 0
        except Exception:
            # Traceback goes to STDERR; STDOUT only gets the short error line.
            _logger.exception("Unhandled error")
            _print(ERR_INTERNAL)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))

"""Console confirmation gate."""

from __future__ import annotations

from typing import Callable, Optional

from .models import GateResponse, PairResult

PROMPT = "\x1b[1;34mContinue [(Y)es|(n)o|(a)ll]? \x1b[0m"

ANSWERS = {
    "": GateResponse.PROCEED,
    "y": GateResponse.PROCEED,
    "yes": GateResponse.PROCEED,
    "n": GateResponse.ABORT,
    "no": GateResponse.ABORT,
    "a": GateResponse.PROCEED_ALL,
    "all": GateResponse.PROCEED_ALL,
}


class ConsolePrompt:
    """Asks whether to go on after a differing pair, until a valid answer is given."""

    def __init__(self, read: Optional[Callable[[str], str]] = None):
        self.read = read or input

    def __call__(self, result: PairResult) -> GateResponse:
        while True:
            try:
                answer = self.read(PROMPT)
            except EOFError:
                # No one left to answer
                return GateResponse.ABORT

            response = ANSWERS.get(answer.strip().lower())
            if response is not None:
                return response

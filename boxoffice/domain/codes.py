# boxoffice/domain/codes.py

import random
import string
from typing import Callable

from boxoffice.domain.clock import Clock, utc_now
from boxoffice.domain.exceptions import CodeGenerationFailed

BASE36_ALPHABET = string.digits + string.ascii_uppercase
BOOKING_REFERENCE_PREFIX = "TB-"
TICKET_CODE_PREFIX = "TK-"
RANDOM_PART_LENGTH = 8
TIMESTAMP_PART_LENGTH = 4
DEFAULT_MAX_ATTEMPTS = 5


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


class CodeGenerator:
    """
    Produces short, human-shareable identifiers.

    Randomness and time are injected so that format and uniqueness
    behaviour can be tested deterministically.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        clock: Clock = utc_now,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.rng = rng or random.SystemRandom()
        self.clock = clock
        self.max_attempts = max_attempts

    def _random_part(self, length: int = RANDOM_PART_LENGTH) -> str:
        return "".join(self.rng.choice(BASE36_ALPHABET) for _ in range(length))

    def _timestamp_part(self) -> str:
        seconds = int(self.clock().timestamp())
        return to_base36(seconds)[-TIMESTAMP_PART_LENGTH:].rjust(
            TIMESTAMP_PART_LENGTH, "0"
        )

    def new_booking_reference(self) -> str:
        return BOOKING_REFERENCE_PREFIX + self._random_part()

    def new_ticket_code(self) -> str:
        return TICKET_CODE_PREFIX + self._timestamp_part() + self._random_part()

    @staticmethod
    def barcode_data(reference: str, seat_id: str) -> str:
        return f"{reference}-{seat_id}"

    def generate_unique(
        self,
        factory: Callable[[], str],
        exists: Callable[[str], bool],
        kind: str = "code",
    ) -> str:
        """
        Retry-on-collision loop bounded by max_attempts.
        Raises CodeGenerationFailed once the bound is exhausted.
        """
        for _ in range(self.max_attempts):
            candidate = factory()
            if not exists(candidate):
                return candidate
        raise CodeGenerationFailed(kind=kind, attempts=self.max_attempts)

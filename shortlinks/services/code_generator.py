"""Short code generation.

Generators turn a seed and an attempt number into a candidate short code.
They are pure: the same ``(seed, attempt)`` always yields the same code, and
no generator touches storage or shared state, so one instance can serve any
number of concurrent callers.

Two strategies are available:

- ``HashCodeGenerator`` derives the code from a SHA-256 digest of the URL
  salted with the attempt number. The same URL maps to the same first
  candidate without any prior reservation; collisions are resolved by the
  caller retrying with the next attempt.
- ``CounterCodeGenerator`` encodes the storage-assigned row id, which makes
  attempt 0 collision-free by construction.
"""

import hashlib
import string
from abc import ABC, abstractmethod
from typing import Union

from shortlinks.core.config import SHORT_CODE_COLUMN_LENGTH, CodeStrategy, Settings

DEFAULT_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits


class CodeSpaceExhaustedError(Exception):
    """No candidate within the configured length exists for this seed and attempt."""

    def __init__(self, seed: Union[str, int], attempt: int, max_length: int):
        self.seed = seed
        self.attempt = attempt
        self.max_length = max_length
        super().__init__(
            f"No short code of at most {max_length} characters left for seed {seed!r} "
            f"(attempt {attempt})"
        )


def encode_base(number: int, alphabet: str = DEFAULT_ALPHABET) -> str:
    """Encode a non-negative integer in the base given by ``alphabet``."""
    if number < 0:
        raise ValueError("Cannot encode a negative number")
    base = len(alphabet)
    if number == 0:
        return alphabet[0]

    digits = []
    while number:
        number, remainder = divmod(number, base)
        digits.append(alphabet[remainder])
    return "".join(reversed(digits))


def decode_base(code: str, alphabet: str = DEFAULT_ALPHABET) -> int:
    """Inverse of ``encode_base``."""
    if not code:
        raise ValueError("Cannot decode an empty code")
    base = len(alphabet)
    number = 0
    for char in code:
        index = alphabet.find(char)
        if index < 0:
            raise ValueError(f"Character {char!r} is not in the alphabet")
        number = number * base + index
    return number


class CodeGenerator(ABC):
    """Common configuration and validation for short code generators."""

    # True when the seed is the row id, so the row must exist before its code
    seeded_by_id = False

    def __init__(self, alphabet: str = DEFAULT_ALPHABET, max_length: int = SHORT_CODE_COLUMN_LENGTH):
        if len(alphabet) < 2 or len(set(alphabet)) != len(alphabet):
            raise ValueError("Alphabet needs at least two distinct characters")
        if not 1 <= max_length <= SHORT_CODE_COLUMN_LENGTH:
            raise ValueError(f"max_length must be between 1 and {SHORT_CODE_COLUMN_LENGTH}")
        self.alphabet = alphabet
        self.max_length = max_length
        self._charset = frozenset(alphabet)

    @abstractmethod
    def next_candidate(self, seed: Union[str, int], attempt: int = 0) -> str:
        """Return the candidate code for ``seed`` on the given attempt."""

    def is_valid_code(self, code: str) -> bool:
        """True if ``code`` could have been produced by this generator."""
        return 0 < len(code) <= self.max_length and set(code) <= self._charset

    @staticmethod
    def _check_attempt(attempt: int) -> None:
        if attempt < 0:
            raise ValueError("attempt must be non-negative")


class HashCodeGenerator(CodeGenerator):
    """
    Derive codes from a hash of the URL.

    The code for attempt ``n`` is the last ``length`` base-N digits of
    ``sha256(seed + "\\x00" + n)``, zero-padded with ``alphabet[0]``. The target
    length starts at ``length`` and grows by one character every
    ``attempts_per_length`` attempts, up to ``max_length``, so repeated
    collisions move into a larger code space.
    """

    def __init__(
        self,
        alphabet: str = DEFAULT_ALPHABET,
        length: int = 7,
        max_length: int = SHORT_CODE_COLUMN_LENGTH,
        attempts_per_length: int = 5,
    ):
        super().__init__(alphabet, max_length)
        if length < 1:
            raise ValueError("length must be positive")
        if attempts_per_length < 1:
            raise ValueError("attempts_per_length must be positive")
        self.length = min(length, max_length)
        self.attempts_per_length = attempts_per_length

    def length_for(self, attempt: int) -> int:
        """Code length used on ``attempt``."""
        return min(self.length + attempt // self.attempts_per_length, self.max_length)

    def next_candidate(self, seed: Union[str, int], attempt: int = 0) -> str:
        self._check_attempt(attempt)
        length = self.length_for(attempt)
        digest = hashlib.sha256(f"{seed}\x00{attempt}".encode("utf-8")).digest()
        # Low-order digits: the leading digit of a full-width encoding is skewed
        value = int.from_bytes(digest, "big") % len(self.alphabet) ** length
        return encode_base(value, self.alphabet).rjust(length, self.alphabet[0])


class CounterCodeGenerator(CodeGenerator):
    """
    Derive codes from the storage-assigned id.

    Attempt 0 is the plain base-N encoding of the id. Later attempts append
    the encoding of the attempt number, which only matters if codes from
    another source share the table.
    """

    seeded_by_id = True

    def next_candidate(self, seed: Union[str, int], attempt: int = 0) -> str:
        self._check_attempt(attempt)
        number = int(seed)
        if number < 0:
            raise ValueError("Counter seeds must be non-negative")
        code = encode_base(number, self.alphabet)
        if attempt:
            code += encode_base(attempt, self.alphabet)
        if len(code) > self.max_length:
            raise CodeSpaceExhaustedError(seed, attempt, self.max_length)
        return code


def build_code_generator(config: Settings) -> CodeGenerator:
    """Create the generator selected by ``SHORT_CODE_STRATEGY``."""
    if config.SHORT_CODE_STRATEGY == CodeStrategy.COUNTER:
        return CounterCodeGenerator(
            alphabet=config.SHORT_CODE_ALPHABET,
            max_length=config.SHORT_CODE_MAX_LENGTH,
        )
    return HashCodeGenerator(
        alphabet=config.SHORT_CODE_ALPHABET,
        length=config.SHORT_CODE_LENGTH,
        max_length=config.SHORT_CODE_MAX_LENGTH,
        attempts_per_length=config.SHORT_CODE_ATTEMPTS_PER_LENGTH,
    )

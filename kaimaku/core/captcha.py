"""
Stateless arithmetic CAPTCHA.

The challenge id is the millisecond timestamp at which the client created
the challenge. Both the question and the expected answer are derived from
the id with a small linear congruential generator, so the server never
stores challenges: it recomputes the answer from the id it is handed.

The generator must stay bit-for-bit identical to the browser build
(JavaScript number semantics), hence the ``parseInt`` emulation and the
truncating remainder below.
"""

import math
import re
import time
from dataclasses import dataclass
from typing import Any

from kaimaku.core.errors import CaptchaExpired, CaptchaFailed, ValidationError

DEFAULT_SEED = 12345678
MAX_AGE_MS = 10 * 60 * 1000

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class Challenge:
    id: str
    question: str
    answer: int


def js_parse_int(value: Any) -> int | None:
    """``parseInt(String(value), 10)``; None stands in for NaN."""
    if value is None or isinstance(value, bool):
        return None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def seeded_random(seed: int) -> float:
    # math.fmod keeps the dividend's sign, like the JS % operator
    return math.fmod(seed * 9301 + 49297, 233280) / 233280


def challenge_seed(challenge_id: str) -> int:
    return js_parse_int(challenge_id[-8:]) or DEFAULT_SEED


def generate_challenge(challenge_id: str) -> Challenge:
    """Derive the question and answer for ``challenge_id``."""
    seed = challenge_seed(challenge_id)

    random1 = seeded_random(seed)
    seed = math.floor(seed * 1.5) + 1
    random2 = seeded_random(seed)
    seed = math.floor(seed * 1.3) + 1
    random3 = seeded_random(seed)

    num1 = math.floor(random1 * 10) + 1
    num2 = math.floor(random2 * 10) + 1

    if random3 > 0.5:
        return Challenge(id=challenge_id, question=f"{num1} + {num2} = ?", answer=num1 + num2)

    larger, smaller = max(num1, num2), min(num1, num2)
    return Challenge(id=challenge_id, question=f"{larger} - {smaller} = ?", answer=larger - smaller)


def new_challenge(now_ms: int | None = None) -> Challenge:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return generate_challenge(str(now_ms))


def verify_challenge(
    challenge_id: Any,
    answer: Any,
    now_ms: int | None = None,
    max_age_ms: int = MAX_AGE_MS,
) -> None:
    """
    Raise unless ``answer`` solves the challenge ``challenge_id``.

    Raises:
        ValidationError: no challenge id or answer was supplied
        CaptchaExpired: the id is not a timestamp, or is older than max_age_ms
        CaptchaFailed: the answer is wrong
    """
    if not challenge_id or answer is None or answer == "":
        raise ValidationError("CAPTCHA verification required")

    if now_ms is None:
        now_ms = int(time.time() * 1000)

    challenge_id = str(challenge_id)
    created_ms = js_parse_int(challenge_id)
    if created_ms is None or abs(now_ms - created_ms) > max_age_ms:
        raise CaptchaExpired()

    expected = generate_challenge(challenge_id).answer
    if js_parse_int(answer) != expected:
        raise CaptchaFailed()

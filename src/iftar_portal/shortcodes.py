"""Human-typable check-in codes such as ``SIG-4291``."""

import logging
import random
import re
import unicodedata
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import Participant, ParticipantRepository

logger = logging.getLogger(__name__)

MAX_GENERATION_ATTEMPTS = 5
MAX_ASSIGNMENT_ATTEMPTS = 5
PREFIX_LENGTH = 3
PREFIX_PADDING = "X"

CODE_PATTERN = re.compile(r"^[A-Z]{3}-\d{4,5}$")

_system_rng = random.SystemRandom()


def code_prefix(last_name: str) -> str:
    """First three ASCII letters of a name, upper-cased and padded with X.

    >>> code_prefix("Sigué")
    'SIG'
    >>> code_prefix("Ba")
    'BAX'
    """
    decomposed = unicodedata.normalize("NFD", last_name or "")
    letters = "".join(c for c in decomposed if c.isascii() and c.isalpha())
    return (letters.upper() + PREFIX_PADDING * PREFIX_LENGTH)[:PREFIX_LENGTH]


def generate_sms_code(last_name: str, rng: Optional[random.Random] = None) -> str:
    """Build a ``PREFIX-DDDD`` code with a random 4-digit suffix (1000-9999)."""
    rng = rng or _system_rng
    return f"{code_prefix(last_name)}-{rng.randint(1000, 9999)}"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


async def generate_unique_sms_code(
    last_name: str,
    exists: Callable[[str], Awaitable[bool]],
    rng: Optional[random.Random] = None,
    max_attempts: int = MAX_GENERATION_ATTEMPTS,
) -> str:
    """Generate a code not yet used by any participant.

    Args:
        last_name: Name the prefix is derived from.
        exists: Coroutine telling whether a code is already taken.
        rng: Random source; a system RNG by default.
        max_attempts: Number of 4-digit codes tried before falling back.

    Returns:
        A free ``PREFIX-DDDD`` code, or after ``max_attempts`` collisions a
        ``PREFIX-DDDDD`` code whose uniqueness is left to the store's
        unique constraint.
    """
    rng = rng or _system_rng
    for attempt in range(1, max_attempts + 1):
        code = generate_sms_code(last_name, rng)
        if not await exists(code):
            return code
        logger.debug(f"SMS code {code} already taken (attempt {attempt}/{max_attempts})")

    fallback = f"{generate_sms_code(last_name, rng)}{rng.randint(0, 9)}"
    logger.warning(
        f"No free 4-digit code after {max_attempts} attempts for prefix "
        f"{code_prefix(last_name)}; falling back to {fallback}"
    )
    return fallback


async def assign_sms_code(
    session: AsyncSession,
    participant: Participant,
    rng: Optional[random.Random] = None,
    max_attempts: int = MAX_ASSIGNMENT_ATTEMPTS,
) -> str:
    """Give a participant a unique SMS code.

    The participants table holds a unique constraint on ``sms_code``; the
    write happens inside a savepoint and a violation triggers a new draw.

    Args:
        session: Session the participant belongs to.
        participant: Persistent participant without a code.
        rng: Random source.
        max_attempts: Number of writes tried before giving up.

    Returns:
        The assigned code.

    Raises:
        RuntimeError: If every write collided.
    """
    if participant.sms_code:
        return participant.sms_code

    repo = ParticipantRepository(session)
    participant_id = participant.id
    for attempt in range(1, max_attempts + 1):
        code = await generate_unique_sms_code(participant.last_name, repo.sms_code_exists, rng)
        try:
            async with session.begin_nested():
                participant.sms_code = code
                await session.flush()
        except IntegrityError:
            logger.warning(
                f"SMS code {code} collided on write for participant {participant_id} "
                f"(attempt {attempt}/{max_attempts})"
            )
            await session.refresh(participant)
            continue
        logger.info(f"Assigned SMS code {code} to participant {participant.id}")
        return code

    raise RuntimeError(f"Could not assign a unique SMS code to participant {participant_id}")

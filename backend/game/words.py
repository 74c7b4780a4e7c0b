import logging
import random
from typing import Optional

from .exceptions import WordGenerationFailed
from .messages import is_word_invalid

logger = logging.getLogger(__name__)

MAX_SAMPLE_ATTEMPTS = 10


class WordSource:
    """Random words from the pool.

    Ids are sampled over the whole ``[min, max]`` range, so gaps left by
    deleted rows cost an extra attempt rather than skewing the draw.
    """

    def __init__(self, repository, rng: Optional[random.Random] = None):
        self.repository = repository
        self._rng = rng or random.Random()

    async def next(self) -> str:
        min_id = await self.repository.min_id()
        max_id = await self.repository.max_id()
        if min_id is None or max_id is None:
            raise WordGenerationFailed("The word pool is empty.")

        for attempt in range(1, MAX_SAMPLE_ATTEMPTS + 1):
            word_id = self._rng.randint(min_id, max_id)
            word = await self.repository.find_by_id(word_id)
            if not is_word_invalid(word):
                return word
            logger.debug("Word id %s missed (attempt %s/%s)", word_id, attempt, MAX_SAMPLE_ATTEMPTS)

        raise WordGenerationFailed(
            f"No word found after {MAX_SAMPLE_ATTEMPTS} attempts in ids {min_id}..{max_id}."
        )

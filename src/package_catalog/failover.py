# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Mirror Failover

Single responsibility: Choose which download mirror to try next.

Each mirror is tried at most once per update: a mirror is picked uniformly at
random from those not yet attempted, and removed from the candidates before
the attempt starts.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class MirrorAttempt:
    """One download attempt against one mirror"""
    url: str
    status: Optional[str] = None


@dataclass
class MirrorSelector:
    """Random, non-repeating walk over a package's mirrors"""
    urls: List[str]
    rng: random.Random = field(default_factory=random.Random)
    attempts: List[MirrorAttempt] = field(default_factory=list)

    def __post_init__(self):
        self._candidates = list(dict.fromkeys(self.urls))

    @property
    def remaining(self) -> int:
        """Number of mirrors not yet attempted"""
        return len(self._candidates)

    @property
    def attempted(self) -> List[str]:
        return [a.url for a in self.attempts]

    @property
    def current(self) -> Optional[MirrorAttempt]:
        return self.attempts[-1] if self.attempts else None

    def next(self) -> str:
        """
        Pick and remove the next mirror.

        Raises:
            IndexError: If every mirror has been attempted
        """
        if not self._candidates:
            raise IndexError(f"All mirrors attempted: {self.attempted}")

        url = self.rng.choice(self._candidates)
        self._candidates.remove(url)
        self.attempts.append(MirrorAttempt(url))
        logger.debug(f"Selected mirror {url} ({self.remaining} remaining)")
        return url

    def record_failure(self, status: str):
        if self.current is not None:
            self.current.status = status
            logger.warning(
                f"Download from mirror {self.current.url} failed: {status}. "
                f"Mirrors remaining: {self.remaining}"
            )

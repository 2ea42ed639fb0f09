"""Worker pool sizing for the per-user build pass."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class ResourceLimits:
    """Configurable bound on concurrent user pipelines."""

    max_cores: int | None = None

    @property
    def effective_cores(self) -> int:
        available = os.cpu_count() or 4
        if self.max_cores is not None and self.max_cores > 0:
            return min(self.max_cores, available)
        # Default: use half of available cores, minimum 1
        return max(1, available // 2)

    def workers_for(self, jobs: int) -> int:
        """Never start more workers than there are jobs."""
        return max(1, min(self.effective_cores, jobs))

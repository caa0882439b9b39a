# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
from typing import Dict, Optional

lib_logger = logging.getLogger("scry_auth")


class ValidationCache:
    """
    Remembers which stored credentials were confirmed usable in this process.

    Entries live only in memory. A new process starts empty, so credentials
    revoked or expired out of band are re-checked on every run, while
    reconnecting within a run skips the network round trip.

    There is no "known bad" state: invalidating removes the entry so the
    next check goes back to the network.
    """

    def __init__(self):
        self._validated: Dict[str, bool] = {}

    def is_validated(self, storage_key: str) -> Optional[bool]:
        """True if confirmed this run, None if never checked (or invalidated)."""
        return self._validated.get(storage_key)

    def mark_validated(self, storage_key: str) -> None:
        self._validated[storage_key] = True
        lib_logger.debug(f"Marked '{storage_key}' as validated")

    def invalidate(self, storage_key: str) -> None:
        if self._validated.pop(storage_key, None) is not None:
            lib_logger.debug(f"Invalidated cached validation for '{storage_key}'")

    def clear_all(self) -> None:
        self._validated.clear()

    def __contains__(self, storage_key: str) -> bool:
        return storage_key in self._validated

    def __len__(self) -> int:
        return len(self._validated)

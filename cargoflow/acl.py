"""
Decrypt capability list.

An append-only mapping from (ciphertext handle, holder identity) to "may
decrypt". Grants are idempotent and there is no public revoke. Grants made
inside a ``staged()`` scope are journalled so that an aborted ledger write
leaves no capability behind.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set, Tuple


class CapabilityList:
    """Thread-safe, additive-only capability store."""

    def __init__(self):
        self._grants: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()
        self._journal: Optional[List[Tuple[str, str]]] = None
        self._grant_count = 0

    def grant(self, handle: str, holder: str) -> bool:
        """Grant ``holder`` the right to decrypt ``handle``.

        Returns True when the grant is new, False when it already existed.
        """
        holder = holder.lower()
        with self._lock:
            holders = self._grants.setdefault(handle, set())
            if holder in holders:
                return False
            holders.add(holder)
            self._grant_count += 1
            if self._journal is not None:
                self._journal.append((handle, holder))
            return True

    def is_allowed(self, handle: str, holder: str) -> bool:
        with self._lock:
            return holder.lower() in self._grants.get(handle, ())

    def holders(self, handle: str) -> Set[str]:
        with self._lock:
            return set(self._grants.get(handle, ()))

    def __len__(self) -> int:
        with self._lock:
            return self._grant_count

    @contextmanager
    def staged(self) -> Iterator["CapabilityList"]:
        """Journal grants; drop them again if the scope raises.

        Nested scopes fold into the outermost one.
        """
        with self._lock:
            if self._journal is not None:
                yield self
                return
            self._journal = []
            try:
                yield self
            except BaseException:
                self._discard(self._journal)
                raise
            finally:
                self._journal = None

    def _discard(self, journal: List[Tuple[str, str]]) -> None:
        for handle, holder in reversed(journal):
            holders = self._grants.get(handle)
            if holders is None:
                continue
            holders.discard(holder)
            self._grant_count -= 1
            if not holders:
                del self._grants[handle]

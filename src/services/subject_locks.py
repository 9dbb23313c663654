# -*- coding: utf-8 -*-
"""
Per-subject write serialization.

Each (subject_id, role) pair gets its own lock, so recalculations for the
same subject run one at a time while different subjects proceed in
parallel. Locks are dropped once no caller holds a reference to them.
"""
import threading
import weakref
from contextlib import contextmanager


class _SubjectLock:
    __slots__ = ('lock', '__weakref__')

    def __init__(self):
        self.lock = threading.Lock()


class SubjectLockRegistry:
    """In-process lock registry keyed by (subject_id, role)."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def _get(self, subject_id: str, role: str) -> _SubjectLock:
        key = (subject_id, role)
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _SubjectLock()
                self._locks[key] = entry
            return entry

    @contextmanager
    def hold(self, subject_id: str, role: str):
        entry = self._get(subject_id, role)
        with entry.lock:
            yield

    def __len__(self):
        return len(self._locks)

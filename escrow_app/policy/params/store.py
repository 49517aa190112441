# 읽기 API (get_policy) - TTL read-through 캐시, 시계는 주입


from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .loader import load_policy_yaml
from .schema import PolicyBundle


class PolicyStore:
    """
    정책 번들 read-through 캐시.

    - loader: 번들을 새로 읽는 함수 (기본: YAML)
    - ttl_seconds: 캐시 유효시간
    - clock: 단조 시계 (테스트에서 가짜 시계 주입)
    """

    def __init__(
        self,
        loader: Callable[[], PolicyBundle] = load_policy_yaml,
        *,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[PolicyBundle] = None
        self._loaded_at: Optional[float] = None

    def get(self) -> PolicyBundle:
        with self._lock:
            now = self._clock()
            if self._cached is None or self._loaded_at is None or now - self._loaded_at >= self._ttl:
                self._cached = self._loader()
                self._loaded_at = now
            return self._cached

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._loaded_at = None


_store = PolicyStore()


def set_store(store: PolicyStore) -> None:
    global _store
    _store = store


def get_store() -> PolicyStore:
    return _store


def get_policy() -> PolicyBundle:
    return _store.get()

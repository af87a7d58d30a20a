"""사용자별 직렬화 잠금"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional


class UserLockRegistry:
    """사용자 ID별 asyncio.Lock 레지스트리

    같은 사용자의 권한 변경(갱신, 환불, 신규 부여)은 이 잠금 안에서만
    읽고-수정하고-쓴다. 같은 태스크 안에서의 중첩 획득은 허용한다.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}
        self._owners: Dict[str, Optional[asyncio.Task]] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        current = asyncio.current_task()
        if current is not None and self._owners.get(user_id) is current:
            yield
            return

        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        try:
            async with lock:
                self._owners[user_id] = current
                try:
                    yield
                finally:
                    self._owners.pop(user_id, None)
        finally:
            self._waiters[user_id] -= 1
            if self._waiters[user_id] == 0:
                del self._waiters[user_id]
                self._locks.pop(user_id, None)

"""
Per-user worker pool.

Users are independent: each one is pinned to a worker by a stable hash of the
user id, a worker drains its users one after another, and the workers run
concurrently on the event loop.
"""
from __future__ import annotations
import asyncio
import zlib
from typing import Awaitable, Callable, Dict, Iterable, List


def assign_worker(user_id: str, workers: int) -> int:
    return zlib.crc32(user_id.encode("utf-8")) % max(1, workers)


def partition(user_ids: Iterable[str], workers: int) -> Dict[int, List[str]]:
    buckets: Dict[int, List[str]] = {}
    for uid in user_ids:
        buckets.setdefault(assign_worker(uid, workers), []).append(uid)
    return buckets


async def run_partitioned(
    user_ids: Iterable[str],
    handler: Callable[[str], Awaitable[None]],
    *,
    workers: int = 1,
) -> None:
    """
    handler(user_id) kendi hatasını yönetmeli; buradan çıkan exception
    diğer worker'ları iptal etmez ama gather sonunda yeniden fırlatılır.
    """

    async def _drain(bucket: List[str]) -> None:
        for uid in bucket:
            await handler(uid)

    buckets = partition(user_ids, workers)
    results = await asyncio.gather(*(_drain(b) for _, b in sorted(buckets.items())), return_exceptions=True)
    for r in results:
        if isinstance(r, BaseException):
            raise r

"""
告警组进程内锁

同一进程内，同一项目下指纹集合相同的通知串行协调，减少并发投递时重复创建工作项。
仅为单进程内存实现，多进程/多实例部署时不同进程之间仍可能竞争。
"""
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Dict, FrozenSet, Iterable, Iterator, List, Tuple

from ..core.logging_config import get_logger

logger = get_logger()

GroupKey = Tuple[str, FrozenSet[str]]

# 告警组 key -> [锁, 引用计数]
_GROUP_LOCKS: Dict[GroupKey, List] = {}
_GROUP_LOCKS_GUARD = RLock()


def build_group_key(project: str, fingerprint_tags: Iterable[str]) -> GroupKey:
    return project, frozenset(fingerprint_tags)


@contextmanager
def group_lock(project: str, fingerprint_tags: Iterable[str]) -> Iterator[GroupKey]:
    """
    获取告警组锁，退出时释放；无人持有的锁随即移除，避免缓存无限增长

    Args:
        project: 项目名
        fingerprint_tags: 批次内所有告警的指纹标签
    """
    key = build_group_key(project, fingerprint_tags)
    with _GROUP_LOCKS_GUARD:
        entry = _GROUP_LOCKS.get(key)
        if entry is None:
            entry = [Lock(), 0]
            _GROUP_LOCKS[key] = entry
        entry[1] += 1
        waiting = entry[1] > 1

    if waiting:
        logger.debug(f"告警组正在处理中，等待锁: project={project}")
    lock = entry[0]
    lock.acquire()
    try:
        yield key
    finally:
        lock.release()
        with _GROUP_LOCKS_GUARD:
            entry[1] -= 1
            if entry[1] <= 0:
                _GROUP_LOCKS.pop(key, None)


def active_groups() -> int:
    """当前被持有或等待中的告警组数量"""
    with _GROUP_LOCKS_GUARD:
        return len(_GROUP_LOCKS)

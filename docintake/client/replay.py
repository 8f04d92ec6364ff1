"""
Offline action replay queue

Client-resident, at-least-once queue for mutations attempted while
disconnected. Actions are persisted to a local JSON file and replayed in
insertion order through an EntityRepository once connectivity returns.
"""

import asyncio
import json
import logging
import os
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from ..config import REPLAY_MAX_RETRIES, REPLAY_RETRY_DELAY_SECONDS, REPLAY_STORE_PATH
from ..services.prometheus_metrics import prometheus_metrics
from ..utils.timeutil import isoformat, new_id, utcnow

logger = logging.getLogger("replay")

ACTION_KINDS = ("insert", "update", "delete")

Notifier = Callable[[str, str], None]


class EntityRepository(Protocol):
    async def insert(self, kind: str, data: Dict[str, Any]) -> Any: ...

    async def update(self, kind: str, entity_id: str, patch: Dict[str, Any]) -> Any: ...

    async def delete(self, kind: str, entity_id: str) -> Any: ...


@dataclass
class QueuedAction:
    id: str
    kind: str
    target_entity: str
    data: Dict[str, Any]
    timestamp: str
    retry_count: int = 0

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "QueuedAction":
        return cls(
            id=raw["id"],
            kind=raw["kind"],
            target_entity=raw["target_entity"],
            data=raw.get("data") or {},
            timestamp=raw.get("timestamp") or "",
            retry_count=int(raw.get("retry_count", 0)),
        )


@dataclass
class FlushReport:
    synced: List[str] = field(default_factory=list)
    retrying: List[str] = field(default_factory=list)
    dropped: List[QueuedAction] = field(default_factory=list)
    skipped: bool = False

    def dropped_by_kind(self) -> Dict[str, int]:
        return dict(Counter(a.kind for a in self.dropped))


def _log_notice(level: str, message: str):
    logger.log(logging.WARNING if level in ("warning", "error") else logging.INFO, message,
               extra={"component": "replay", "notice": level})


class ActionStore:
    """JSON file holding the queued actions"""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> List[QueuedAction]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as e:
            logger.error(f"Could not read queued actions from {self.path}: {e}")
            return []
        return [QueuedAction.from_dict(item) for item in raw]

    def save(self, actions: List[QueuedAction]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps([asdict(a) for a in actions]), encoding="utf-8")
        os.replace(tmp, self.path)


class OfflineReplayQueue:

    def __init__(self, repository: EntityRepository, store_path=REPLAY_STORE_PATH,
                 max_retries: int = REPLAY_MAX_RETRIES,
                 retry_delay_seconds: float = REPLAY_RETRY_DELAY_SECONDS,
                 online: bool = True, notifier: Optional[Notifier] = None):
        self._repository = repository
        self._store = ActionStore(store_path)
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self._online = online
        self._notify = notifier or _log_notice
        self._flushing = False
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._actions: List[QueuedAction] = self._store.load()
        prometheus_metrics.set_replay_pending(len(self._actions))

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_handle is not None

    def pending(self) -> List[QueuedAction]:
        return list(self._actions)

    def _persist(self):
        self._store.save(self._actions)
        prometheus_metrics.set_replay_pending(len(self._actions))

    async def queue_action(self, kind: str, target_entity: str, data: Dict[str, Any]) -> str:
        if kind not in ACTION_KINDS:
            raise ValueError(f"Unsupported action kind: {kind}")
        action = QueuedAction(
            id=new_id(),
            kind=kind,
            target_entity=target_entity,
            data=dict(data or {}),
            timestamp=isoformat(utcnow()),
        )
        self._actions.append(action)
        self._persist()
        logger.info(f"Queued {kind} on {target_entity} ({len(self._actions)} pending)")

        if self._online:
            await self.flush()
        return action.id

    async def flush(self) -> FlushReport:
        """Replay every queued action once, in insertion order"""
        if self._flushing or not self._actions:
            return FlushReport(skipped=self._flushing)
        if not self._online:
            return FlushReport(skipped=True)

        self._flushing = True
        report = FlushReport()
        snapshot = list(self._actions)
        try:
            for action in snapshot:
                try:
                    await self._replay(action)
                except Exception as e:
                    if action.retry_count < self.max_retries:
                        action.retry_count += 1
                        report.retrying.append(action.id)
                        logger.warning(f"Replay of {action.kind} on {action.target_entity} failed "
                                       f"(retry {action.retry_count}/{self.max_retries}): {e}")
                    else:
                        report.dropped.append(action)
                        logger.error(f"Dropping {action.kind} on {action.target_entity} after "
                                     f"{self.max_retries} retries: {e}")
                else:
                    report.synced.append(action.id)

            finished = set(report.synced) | {a.id for a in report.dropped}
            # Actions queued while this flush was running stay in place
            self._actions = [a for a in self._actions if a.id not in finished]
            self._persist()
        finally:
            self._flushing = False

        attempted = {a.id for a in snapshot}
        arrived = any(a.id not in attempted for a in self._actions)

        prometheus_metrics.increment_replay("synced", len(report.synced))
        prometheus_metrics.increment_replay("retry", len(report.retrying))
        prometheus_metrics.increment_replay("dropped", len(report.dropped))

        if report.synced:
            self._notify("success", f"Synced {len(report.synced)} offline change(s)")
        for kind, count in sorted(report.dropped_by_kind().items()):
            self._notify("error", f"{count} {kind} action(s) failed permanently and need attention")
        if report.retrying:
            self._schedule_retry()
        elif arrived and self._online:
            self._spawn_flush()
        return report

    async def _replay(self, action: QueuedAction):
        data = action.data
        if action.kind == "insert":
            await self._repository.insert(action.target_entity, data)
        elif action.kind == "update":
            await self._repository.update(action.target_entity, data["id"], data.get("updates") or {})
        else:
            await self._repository.delete(action.target_entity, data["id"])

    def _schedule_retry(self):
        if self._retry_handle is not None or not self._online:
            return
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay_seconds, self._retry_fired)

    def _retry_fired(self):
        self._retry_handle = None
        self._spawn_flush()

    def _spawn_flush(self):
        task = asyncio.ensure_future(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_retry(self):
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    async def go_online(self) -> FlushReport:
        self._online = True
        pending = len(self._actions)
        if pending:
            self._notify("info", f"Back online. Syncing {pending} pending change(s)")
        return await self.flush()

    def go_offline(self):
        self._online = False
        self._cancel_retry()
        self._notify("warning", "You are offline. Changes will sync when the connection returns")

    async def close(self):
        self._cancel_retry()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

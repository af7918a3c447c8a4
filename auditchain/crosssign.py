"""
Cross-signing of the chain tip by peer ledgers.

Each configured peer has a policy: push after N new entries and/or after
N days. When a policy is due, the current tip is sent to the peer as a
signed request; the peer's signed reply is verified before the target's
bookkeeping advances.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import requests
from pydantic import ValidationError

from .db import connect, transaction
from .keys import KeyProvider, verify_ed25519
from .ledger import ChainEntry, SqliteBlakechain
from .logging_config import audit_log
from .models import CrossSignTarget
from .responses import SIGNATURE_HEADER
from .util import Clock, canonicalize, iso8601, parse_iso8601, utc_now

logger = logging.getLogger(__name__)

CLIENT_ID_HEADER = "Chronicle-Client-Key-ID"


class CrossSigner(ABC):
    @abstractmethod
    def maybe_cross_sign(self) -> List[Dict[str, Any]]:
        """Run every cross-sign that is due; return one result per attempt."""
        pass


class NullCrossSigner(CrossSigner):
    def maybe_cross_sign(self) -> List[Dict[str, Any]]:
        return []


class CrossSignScheduler(CrossSigner):
    def __init__(
        self,
        db_path: Union[str, Path],
        ledger: SqliteBlakechain,
        keys: KeyProvider,
        targets_loader: Callable[[], list],
        clock: Clock = utc_now,
        post: Callable[..., Any] = requests.post,
        timeout: float = 5.0
    ):
        self.db_path = Path(db_path)
        self.ledger = ledger
        self.keys = keys
        self._targets_loader = targets_loader
        self._clock = clock
        self._post = post
        self.timeout = timeout
        self._running = threading.Lock()

    def _targets(self) -> List[CrossSignTarget]:
        targets = []
        for raw in self._targets_loader():
            try:
                targets.append(CrossSignTarget.model_validate(raw))
            except ValidationError as e:
                logger.error("Ignoring malformed cross-sign target %r: %s", raw, e)
        return targets

    def _state(self, name: str) -> Dict[str, Any]:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT last_run, last_seq FROM xsign_targets WHERE name=?", (name,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return {"last_run": None, "last_seq": 0}
        return {"last_run": row["last_run"], "last_seq": row["last_seq"]}

    def _record(self, name: str, last_run: str, last_seq: int) -> None:
        conn = connect(self.db_path)
        try:
            with transaction(conn):
                conn.execute(
                    "INSERT INTO xsign_targets(name, last_run, last_seq) VALUES(?,?,?) "
                    "ON CONFLICT(name) DO UPDATE SET last_run=excluded.last_run, last_seq=excluded.last_seq",
                    (name, last_run, last_seq)
                )
        finally:
            conn.close()

    def is_due(self, target: CrossSignTarget, tip: ChainEntry, state: Dict[str, Any]) -> bool:
        pending = tip.seq - int(state["last_seq"])
        if pending <= 0:
            return False
        policy = target.policy
        if policy.push_after and pending >= policy.push_after:
            return True
        if policy.push_days:
            if state["last_run"] is None:
                return True
            elapsed = self._clock() - parse_iso8601(state["last_run"])
            if elapsed >= timedelta(days=policy.push_days):
                return True
        return False

    def _failure(self, name: str, error: Exception) -> Dict[str, Any]:
        logger.exception("Cross-sign run for %s failed", name)
        audit_log.cross_sign(name, "FAILURE", str(error))
        return {"target": name, "status": "FAILURE", "error": str(error)}

    def maybe_cross_sign(self) -> List[Dict[str, Any]]:
        """
        Run every due cross-sign. Failures are logged and reported as
        results; this method never raises.
        """
        # A run already in progress in another request covers this one
        if not self._running.acquire(blocking=False):
            return []
        try:
            try:
                tip = self.ledger.last_entry()
                if tip is None:
                    return []
                targets = self._targets()
            except Exception as e:
                return [self._failure("*", e)]

            results = []
            for target in targets:
                try:
                    if self.is_due(target, tip, self._state(target.name)):
                        results.append(self.cross_sign(target, tip))
                except Exception as e:
                    results.append(self._failure(target.name, e))
            return results
        finally:
            self._running.release()

    def cross_sign(self, target: CrossSignTarget, tip: ChainEntry) -> Dict[str, Any]:
        """Send the tip to one peer and verify its signed acknowledgement."""
        now = iso8601(self._clock())
        body = canonicalize({
            "target": target.publickey,
            "cross-sign-at": now,
            "seq": tip.seq,
            "currhash": tip.currhash,
            "summaryhash": tip.summaryhash,
        })
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: self.keys.sign_b64url(body),
        }
        if target.clientid:
            headers[CLIENT_ID_HEADER] = target.clientid
        try:
            response = self._post(target.url, data=body, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            audit_log.cross_sign(target.name, "FAILURE", str(e))
            return {"target": target.name, "status": "FAILURE", "error": str(e)}

        signature = response.headers.get(SIGNATURE_HEADER, "")
        if not verify_ed25519(signature, response.content, target.publickey):
            audit_log.cross_sign(target.name, "FAILURE", "invalid response signature")
            return {"target": target.name, "status": "FAILURE", "error": "invalid response signature"}

        self._record(target.name, now, tip.seq)
        audit_log.cross_sign(target.name, "SUCCESS")
        return {"target": target.name, "status": "SUCCESS", "seq": tip.seq}

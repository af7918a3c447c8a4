"""
Hash chain ledger for auditchain.

Each entry stores a signed message together with two BLAKE2b-256 links:

    currhash    = H(prevhash || data)
    summaryhash = H(prev_summaryhash || currhash)

Hashes are stored as base64url text; the first entry links to nothing.
Appends are serialized by a process lock plus an IMMEDIATE transaction so
concurrent writers can never compute conflicting previous links.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .db import connect, transaction
from .errors import LedgerError
from .keys import verify_ed25519
from .logging_config import audit_log
from .util import Clock, b64url_decode, b64url_encode, blake2b_256, canonicalize, iso8601, utc_now


@dataclass(frozen=True)
class ChainEntry:
    seq: int
    data: str
    signature: str
    publickey: str
    prevhash: Optional[str]
    currhash: str
    summaryhash: str
    created: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def linkage(self) -> Dict[str, str]:
        """The metadata returned to callers after an append."""
        return {
            "currhash": self.currhash,
            "summaryhash": self.summaryhash,
            "created": self.created,
        }


def compute_links(
    prevhash: Optional[str],
    prev_summaryhash: Optional[str],
    data: str
) -> Tuple[str, str]:
    """Return (currhash, summaryhash) for a new entry."""
    prev_raw = b64url_decode(prevhash) if prevhash else b""
    prev_summary_raw = b64url_decode(prev_summaryhash) if prev_summaryhash else b""
    curr_raw = blake2b_256(prev_raw + data.encode("utf-8"))
    summary_raw = blake2b_256(prev_summary_raw + curr_raw)
    return b64url_encode(curr_raw), b64url_encode(summary_raw)


class LedgerMirror(ABC):
    """Secondary write-once copy of each chain entry."""

    @abstractmethod
    def write_entry(self, entry: ChainEntry) -> None:
        pass


class S3ObjectLockMirror(LedgerMirror):
    """Writes each chain entry as a separate immutable object to an S3 bucket with Object Lock.
    Requires bucket with Object Lock enabled.
    Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
    """

    def __init__(self, bucket: str, prefix: str, retention_days: int, legal_hold: str = "OFF", client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client

    def _get_client(self):
        if self._client is None:
            import boto3
            self._client = boto3.client("s3")
        return self._client

    def write_entry(self, entry: ChainEntry) -> None:
        key = f"{self.prefix}{entry.seq:012d}-{entry.currhash}.json"
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        self._get_client().put_object(
            Bucket=self.bucket,
            Key=key,
            Body=canonicalize(entry.to_dict()),
            ContentType="application/json",
            ObjectLockMode="COMPLIANCE",
            ObjectLockRetainUntilDate=retain_until,
            ObjectLockLegalHoldStatus=self.legal_hold
        )


class LedgerPublisher(ABC):
    """Append-only ledger interface consumed by the registration pipeline."""

    @abstractmethod
    def append(self, signature: str, message: str, public_key: str) -> Dict[str, str]:
        """
        Append one signed message and return its linkage metadata.

        Args:
            signature: base64url detached signature over ``message``
            message: the exact signed text
            public_key: base64url key of the signer
        """
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class SqliteBlakechain(LedgerPublisher):
    """BLAKE2b hash chain persisted in the ``chain`` table."""

    def __init__(
        self,
        db_path: Union[str, Path],
        clock: Clock = utc_now,
        mirror: Optional[LedgerMirror] = None
    ):
        self.db_path = Path(db_path)
        self._clock = clock
        self._mirror = mirror
        self._lock = threading.Lock()

    def append(self, signature: str, message: str, public_key: str) -> Dict[str, str]:
        created = iso8601(self._clock())
        with self._lock:
            conn = connect(self.db_path)
            try:
                with transaction(conn):
                    tip = conn.execute(
                        "SELECT currhash, summaryhash FROM chain ORDER BY seq DESC LIMIT 1"
                    ).fetchone()
                    prevhash = tip["currhash"] if tip else None
                    currhash, summaryhash = compute_links(
                        prevhash, tip["summaryhash"] if tip else None, message
                    )
                    cur = conn.execute(
                        "INSERT INTO chain(data, signature, publickey, prevhash, currhash, summaryhash, created) "
                        "VALUES(?,?,?,?,?,?,?)",
                        (message, signature, public_key, prevhash, currhash, summaryhash, created)
                    )
                    entry = ChainEntry(
                        seq=cur.lastrowid,
                        data=message,
                        signature=signature,
                        publickey=public_key,
                        prevhash=prevhash,
                        currhash=currhash,
                        summaryhash=summaryhash,
                        created=created,
                    )
                    # Mirror inside the transaction: a failed mirror write undoes the append
                    if self._mirror is not None:
                        try:
                            self._mirror.write_entry(entry)
                        except Exception as e:
                            raise LedgerError(f"Could not mirror chain entry {entry.seq}: {e}") from e
            except sqlite3.Error as e:
                raise LedgerError(f"Could not extend the chain: {e}") from e
            finally:
                conn.close()

        audit_log.chain_extended(entry.seq, entry.currhash, entry.summaryhash)
        return entry.linkage()

    def _rows(self, sql: str, params: tuple = ()) -> List[ChainEntry]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [ChainEntry(**dict(row)) for row in rows]

    def last_entry(self) -> Optional[ChainEntry]:
        rows = self._rows(
            "SELECT seq, data, signature, publickey, prevhash, currhash, summaryhash, created "
            "FROM chain ORDER BY seq DESC LIMIT 1"
        )
        return rows[0] if rows else None

    def entries_since(self, seq: int) -> List[ChainEntry]:
        return self._rows(
            "SELECT seq, data, signature, publickey, prevhash, currhash, summaryhash, created "
            "FROM chain WHERE seq > ? ORDER BY seq ASC",
            (seq,)
        )

    def export(self) -> List[Dict[str, Any]]:
        """Export the complete chain, oldest first."""
        return [e.to_dict() for e in self.entries_since(0)]

    def count(self) -> int:
        conn = connect(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) AS cnt FROM chain").fetchone()["cnt"]
        finally:
            conn.close()


def verify_chain(entries: List[Dict[str, Any]]) -> Tuple[bool, Optional[int], str]:
    """
    Recompute every link and check every signature of an exported chain.

    Returns:
        (ok, failing seq or None, reason)
    """
    prevhash = None
    prev_summary = None
    for entry in entries:
        seq = entry.get("seq")
        if entry.get("prevhash") != prevhash:
            return False, seq, "prevhash does not match previous entry"
        currhash, summaryhash = compute_links(prevhash, prev_summary, entry["data"])
        if entry.get("currhash") != currhash:
            return False, seq, "currhash mismatch"
        if entry.get("summaryhash") != summaryhash:
            return False, seq, "summaryhash mismatch"
        if not verify_ed25519(entry["signature"], entry["data"].encode("utf-8"), entry["publickey"]):
            return False, seq, "invalid signature"
        prevhash, prev_summary = currhash, summaryhash
    return True, None, "ok"


def get_ledger_mirror(
    backend: str,
    bucket: str = "",
    prefix: str = "auditchain/chain/",
    retention_days: int = 365
) -> Optional[LedgerMirror]:
    if backend == "s3_object_lock":
        if not bucket:
            raise ValueError("S3_BUCKET required for s3_object_lock mirror")
        return S3ObjectLockMirror(bucket=bucket, prefix=prefix, retention_days=retention_days)
    return None

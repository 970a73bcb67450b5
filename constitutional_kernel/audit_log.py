"""Tamper-evident append-only audit log.

Every evaluation appends exactly one record:

- sequence_number: 1, 2, 3, ... with no gaps, even under concurrent appends
- proposal_hash: SHA256 of the proposal's canonical JSON (hex)
- prev_hash: record_hash of the previous record (64 zeros for the first)
- decision_summary: canonical JSON of the decision
- record_hash: SHA256(len-prefixed prev_hash || proposal_hash || decision_summary)
- key_id / signature_b64: optional Ed25519 signature over the record hash

Records can be mirrored to a JSONL file (one record per line, fields in the
order above) so that an independent verifier can recompute the chain.

Note: the chain detects after-the-fact edits; it does not protect against an
attacker who can rewrite the whole file and also controls the signing key.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .crypto import GENESIS_HASH, Ed25519KeyPair, TrustedKeyStore, _safe_hash_encode, _sha256_hex, canonical_json_dumps
from .errors import AuditChainBroken
from .metrics import record_audit_append


logger = logging.getLogger("constitutional_kernel.audit")

AUDIT_VERSION = "CK_AUDIT_V1"

# Serialized field order; independent verifiers rely on it.
RECORD_FIELDS = (
    "sequence_number",
    "proposal_hash",
    "prev_hash",
    "decision_summary",
    "record_hash",
    "key_id",
    "signature_b64",
)


def compute_record_hash(prev_hash: str, proposal_hash: str, decision_summary: str) -> str:
    return _sha256_hex(_safe_hash_encode([prev_hash, proposal_hash, decision_summary]))


def _signature_payload(sequence_number: int, record_hash: str) -> bytes:
    return _safe_hash_encode([AUDIT_VERSION, str(sequence_number), record_hash])


@dataclass(frozen=True)
class AuditRecord:
    sequence_number: int
    proposal_hash: str
    prev_hash: str
    decision_summary: str
    record_hash: str
    key_id: str = ""
    signature_b64: str = ""

    def decision(self) -> Dict[str, Any]:
        return json.loads(self.decision_summary)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in RECORD_FIELDS}

    def to_json(self) -> str:
        # No sort_keys: the on-disk field order is part of the format.
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditRecord":
        return cls(
            sequence_number=int(data["sequence_number"]),
            proposal_hash=str(data["proposal_hash"]),
            prev_hash=str(data["prev_hash"]),
            decision_summary=str(data["decision_summary"]),
            record_hash=str(data["record_hash"]),
            key_id=str(data.get("key_id") or ""),
            signature_b64=str(data.get("signature_b64") or ""),
        )


@dataclass(frozen=True)
class ChainVerification:
    """Outcome of a chain check; truthy only when the checked range is intact."""
    ok: bool
    checked: int
    broken_at: Optional[int] = None
    reason: str = "OK"

    def __bool__(self) -> bool:
        return self.ok


def _verify_records(
    records: List[AuditRecord],
    start_seq: int,
    prev: str,
    trusted_keys: Optional[TrustedKeyStore] = None,
) -> ChainVerification:
    expected_seq = start_seq
    checked = 0
    for rec in records:
        checked += 1
        if rec.sequence_number != expected_seq:
            return ChainVerification(False, checked, expected_seq, "SEQUENCE_GAP")
        if rec.prev_hash != prev:
            return ChainVerification(False, checked, rec.sequence_number, "CHAIN_BROKEN")
        expected_hash = compute_record_hash(rec.prev_hash, rec.proposal_hash, rec.decision_summary)
        if expected_hash != rec.record_hash:
            return ChainVerification(False, checked, rec.sequence_number, "RECORD_HASH_MISMATCH")
        if trusted_keys is not None:
            if not rec.key_id or not rec.signature_b64:
                return ChainVerification(False, checked, rec.sequence_number, "UNSIGNED_RECORD")
            try:
                sig = base64.b64decode(rec.signature_b64, validate=True)
            except ValueError:
                return ChainVerification(False, checked, rec.sequence_number, "BAD_SIGNATURE_ENCODING")
            payload = _signature_payload(rec.sequence_number, expected_hash)
            if not trusted_keys.verify_signature(rec.key_id, payload, sig):
                return ChainVerification(False, checked, rec.sequence_number, "INVALID_SIGNATURE")
        prev = expected_hash
        expected_seq += 1
    return ChainVerification(True, checked)


class AuditLog:
    """Append-only, hash-chained decision log.

    ``append`` is the only serialization point between concurrent
    evaluations. Reads (``range_query``, ``verify``) work on a snapshot of the
    already-appended records and never take the lock.
    """

    def __init__(self, path: Optional[str] = None, signer: Optional[Ed25519KeyPair] = None):
        self.path = str(path) if path else None
        self.signer = signer
        self._lock = threading.Lock()
        self._records: List[AuditRecord] = []
        self._last_hash = GENESIS_HASH

        if self.path:
            p = Path(self.path)
            p.parent.mkdir(parents=True, exist_ok=True)
            if p.exists() and p.stat().st_size > 0:
                self._records = self._read_records(p)
                if self._records:
                    self._last_hash = self._records[-1].record_hash
                logger.info("resumed audit log %s at sequence %d", self.path, len(self._records))

    @classmethod
    def load(cls, path: str, signer: Optional[Ed25519KeyPair] = None) -> "AuditLog":
        return cls(path=path, signer=signer)

    @staticmethod
    def _read_records(path: Path) -> List[AuditRecord]:
        records = []
        with path.open("r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(AuditRecord.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as e:
                    raise AuditChainBroken(line_no, f"PARSE_ERROR: {e}") from e
        return records

    @property
    def last_hash(self) -> str:
        return self._last_hash

    def __len__(self) -> int:
        return len(self._records)

    def append(self, proposal_hash: str, decision: Any) -> AuditRecord:
        """Append one decision and return the created record."""
        summary_obj = decision.summary() if hasattr(decision, "summary") else dict(decision)
        summary = canonical_json_dumps(summary_obj)

        with self._lock:
            seq = len(self._records) + 1
            prev = self._last_hash
            record_hash = compute_record_hash(prev, proposal_hash, summary)

            key_id, sig_b64 = "", ""
            if self.signer is not None:
                sig = self.signer.sign(_signature_payload(seq, record_hash))
                key_id = self.signer.key_id
                sig_b64 = base64.b64encode(sig).decode("ascii")

            rec = AuditRecord(
                sequence_number=seq,
                proposal_hash=proposal_hash,
                prev_hash=prev,
                decision_summary=summary,
                record_hash=record_hash,
                key_id=key_id,
                signature_b64=sig_b64,
            )

            if self.path:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(rec.to_json() + "\n")

            self._records.append(rec)
            self._last_hash = record_hash

        record_audit_append(seq)
        return rec

    def range_query(self, from_seq: int = 1, to_seq: Optional[int] = None) -> List[AuditRecord]:
        """Records with from_seq <= sequence_number <= to_seq (inclusive)."""
        snapshot = self._records[:]
        if to_seq is None:
            to_seq = len(snapshot)
        if from_seq < 1:
            raise ValueError("from_seq must be >= 1")
        return snapshot[from_seq - 1:to_seq]

    def verify(
        self,
        from_seq: int = 1,
        to_seq: Optional[int] = None,
        trusted_keys: Optional[TrustedKeyStore] = None,
    ) -> ChainVerification:
        """Recompute the chain over [from_seq, to_seq] and report the first broken link.

        When starting past the genesis record, the preceding record's stored
        hash is taken as the anchor.
        """
        snapshot = self._records[:]
        if to_seq is None:
            to_seq = len(snapshot)
        if from_seq < 1 or to_seq > len(snapshot) or (snapshot and from_seq > to_seq + 1):
            raise ValueError(f"invalid range [{from_seq}, {to_seq}] for log of length {len(snapshot)}")
        prev = GENESIS_HASH if from_seq == 1 else snapshot[from_seq - 2].record_hash
        return _verify_records(snapshot[from_seq - 1:to_seq], from_seq, prev, trusted_keys)

    def raise_if_broken(
        self,
        from_seq: int = 1,
        to_seq: Optional[int] = None,
        trusted_keys: Optional[TrustedKeyStore] = None,
    ) -> ChainVerification:
        result = self.verify(from_seq, to_seq, trusted_keys)
        if not result:
            logger.error("audit chain broken at %s: %s", result.broken_at, result.reason)
            raise AuditChainBroken(result.broken_at, result.reason)
        return result

    @staticmethod
    def verify_file(path: str, trusted_keys: Optional[TrustedKeyStore] = None) -> ChainVerification:
        """Verify a JSONL audit log without loading it into an AuditLog."""
        p = Path(path)
        if not p.exists():
            return ChainVerification(True, 0, reason="NO_FILE")
        try:
            records = AuditLog._read_records(p)
        except AuditChainBroken as e:
            return ChainVerification(False, 0, e.broken_at, "PARSE_ERROR")
        return _verify_records(records, 1, GENESIS_HASH, trusted_keys)

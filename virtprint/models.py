import dataclasses
import datetime as _dt
import hashlib
import hmac
import ipaddress
import secrets
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional, Union

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_BASE62 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
# no 0, O, I, l
_BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_ID_EPOCH_MS = 1704067200000  # 2024-01-01T00:00:00Z

_id_lock = threading.Lock()
_id_last_ms = 0
_id_counter = 0


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _iso(value: Optional[_dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[_dt.datetime]:
    return _dt.datetime.fromisoformat(value) if value else None


def generate_short_id() -> str:
    """12 base62 chars: 7 for milliseconds since 2024, 5 for random + counter.

    Ids sort roughly by creation time.
    """
    global _id_last_ms, _id_counter
    with _id_lock:
        now = int(time.time() * 1000) - _ID_EPOCH_MS
        if now == _id_last_ms:
            _id_counter = (_id_counter + 1) & 0xFFFF
        else:
            _id_counter = 0
            _id_last_ms = now
        counter = _id_counter

    head = []
    for _ in range(7):
        head.append(_BASE62[now % 62])
        now //= 62
    tail_value = (secrets.randbits(32) << 16) | counter
    tail = []
    for _ in range(5):
        tail.append(_BASE62[tail_value % 62])
        tail_value //= 62
    return "".join(reversed(head)) + "".join(reversed(tail))


def generate_token_secret(length: int = 32) -> str:
    return "".join(secrets.choice(_BASE58) for _ in range(length))


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def secret_matches(secret_hash: str, secret: str) -> bool:
    return hmac.compare_digest(secret_hash, hash_secret(secret))


def parse_network(value: str) -> IPNetwork:
    """Parse an address or CIDR range; a bare address becomes a /32 (or /128)."""
    return ipaddress.ip_network(value.strip(), strict=False)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobOrigin(str, Enum):
    RAW = "raw"
    IPP = "ipp"


@dataclasses.dataclass
class PrintJob:
    id: str
    number: int
    origin: JobOrigin
    source_ip: str
    spool_path: str
    account_id: Optional[str] = None
    input_format: str = "application/octet-stream"
    status: JobStatus = JobStatus.PENDING
    size: int = 0
    document_name: str = ""
    app_name: str = ""
    user_name: str = ""
    document_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    page_count: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    attempts: int = 0
    cancel_requested: bool = False
    created_at: _dt.datetime = dataclasses.field(default_factory=utcnow)
    updated_at: _dt.datetime = dataclasses.field(default_factory=utcnow)
    started_at: Optional[_dt.datetime] = None
    finished_at: Optional[_dt.datetime] = None

    @property
    def orphaned(self) -> bool:
        return not self.account_id

    def copy(self) -> "PrintJob":
        return dataclasses.replace(self)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["origin"] = self.origin.value
        data["status"] = self.status.value
        for key in ("created_at", "updated_at", "started_at", "finished_at"):
            data[key] = _iso(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrintJob":
        fields = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in data.items() if k in fields}
        values["origin"] = JobOrigin(values["origin"])
        values["status"] = JobStatus(values.get("status", JobStatus.PENDING.value))
        for key in ("created_at", "updated_at", "started_at", "finished_at"):
            values[key] = _parse_iso(values.get(key))
        if values["created_at"] is None:
            values["created_at"] = utcnow()
        if values["updated_at"] is None:
            values["updated_at"] = values["created_at"]
        return cls(**values)


@dataclasses.dataclass(frozen=True)
class IPRegistration:
    id: str
    account_id: str
    network: IPNetwork
    description: str = ""
    created_at: _dt.datetime = dataclasses.field(default_factory=utcnow)
    expires_at: Optional[_dt.datetime] = None
    active: bool = True

    def is_valid(self, now: Optional[_dt.datetime] = None) -> bool:
        if not self.active:
            return False
        if self.expires_at is None:
            return True
        return (now or utcnow()) < self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "network": str(self.network),
            "description": self.description,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IPRegistration":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            network=parse_network(data["network"]),
            description=data.get("description") or "",
            created_at=_parse_iso(data.get("created_at")) or utcnow(),
            expires_at=_parse_iso(data.get("expires_at")),
            active=bool(data.get("active", True)),
        )


@dataclasses.dataclass(frozen=True)
class IPPToken:
    id: str
    account_id: str
    name: str
    secret_hash: str
    created_at: _dt.datetime = dataclasses.field(default_factory=utcnow)
    expires_at: Optional[_dt.datetime] = None
    revoked: bool = False

    def is_valid(self, now: Optional[_dt.datetime] = None) -> bool:
        if self.revoked:
            return False
        if self.expires_at is None:
            return True
        return (now or utcnow()) < self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "name": self.name,
            "secret_hash": self.secret_hash,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "revoked": self.revoked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IPPToken":
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            name=data.get("name") or "",
            secret_hash=data["secret_hash"],
            created_at=_parse_iso(data.get("created_at")) or utcnow(),
            expires_at=_parse_iso(data.get("expires_at")),
            revoked=bool(data.get("revoked", False)),
        )

import dataclasses
import datetime as _dt
import ipaddress
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, NamedTuple, Optional, Tuple, Union

from .errors import AuthenticationError
from .models import (
    IPPToken,
    IPRegistration,
    generate_short_id,
    generate_token_secret,
    hash_secret,
    parse_network,
    secret_matches,
    utcnow,
)

logger = logging.getLogger("identity")

Address = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


class _Snapshot(NamedTuple):
    registrations: Tuple[IPRegistration, ...]
    tokens: Mapping[str, IPPToken]  # secret_hash -> token


def normalize_address(address: Address) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    if isinstance(address, str):
        # strip an IPv6 zone id such as fe80::1%eth0
        address = ipaddress.ip_address(address.split("%", 1)[0].strip())
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


class IdentityDirectory:
    """Address registrations and IPP tokens, read through immutable snapshots.

    Writers serialize on a lock, build a new snapshot and swap the reference,
    so a reader always sees either the old or the new table, never a mix.
    Account management lives outside the core; this only holds the mappings.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path else None
        self._write_lock = threading.Lock()
        self._snapshot = _Snapshot((), MappingProxyType({}))
        # (inode, mtime, size) of the file the tables were last read from or written to
        self._stamp: Optional[Tuple[int, int, int]] = None

    @classmethod
    def load(cls, path: Union[str, Path]) -> "IdentityDirectory":
        directory = cls(path)
        directory.reload()
        return directory

    def _file_stamp(self) -> Optional[Tuple[int, int, int]]:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def reload(self) -> None:
        """Replace the in-memory tables with the file's current contents."""
        if self.path is None:
            return
        # read under the write lock so a concurrent writer's file and tables stay paired
        with self._write_lock:
            stamp = self._file_stamp()
            if stamp is None:
                return
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            registrations = tuple(IPRegistration.from_dict(r) for r in data.get("registrations", []))
            tokens = {t.secret_hash: t for t in (IPPToken.from_dict(d) for d in data.get("tokens", []))}
            self._snapshot = _Snapshot(registrations, MappingProxyType(tokens))
            self._stamp = stamp
        logger.info(
            "Loaded identity directory %s: %d registrations, %d tokens",
            self.path,
            len(registrations),
            len(tokens),
        )

    def refresh(self, force: bool = False) -> bool:
        """Reload if another process rewrote the file; True when tables changed.

        An unreadable file is logged and the current tables stay in place.
        """
        if self.path is None:
            return False
        stamp = self._file_stamp()
        if stamp is None or (stamp == self._stamp and not force):
            return False
        try:
            self.reload()
        except (OSError, ValueError, KeyError, TypeError):
            self._stamp = stamp
            logger.exception("Cannot read identity file %s; keeping the previous tables", self.path)
            return False
        return True

    def snapshot(self) -> _Snapshot:
        self.refresh()
        return self._snapshot

    def list_registrations(self, account_id: Optional[str] = None) -> List[IPRegistration]:
        regs = self.snapshot().registrations
        return [r for r in regs if account_id is None or r.account_id == account_id]

    def list_tokens(self, account_id: Optional[str] = None) -> List[IPPToken]:
        tokens = sorted(self.snapshot().tokens.values(), key=lambda t: t.created_at)
        return [t for t in tokens if account_id is None or t.account_id == account_id]

    def add_registration(
        self,
        account_id: str,
        network: str,
        description: str = "",
        expires_at: Optional[_dt.datetime] = None,
    ) -> IPRegistration:
        reg = IPRegistration(
            id=generate_short_id(),
            account_id=account_id,
            network=parse_network(network),
            description=description,
            expires_at=expires_at,
        )
        self.refresh()
        with self._write_lock:
            current = self._snapshot
            self._swap(_Snapshot(current.registrations + (reg,), current.tokens))
        logger.info("Registered %s for account %s (id=%s)", reg.network, account_id, reg.id)
        return reg

    def remove_registration(self, registration_id: str) -> IPRegistration:
        self.refresh()
        with self._write_lock:
            current = self._snapshot
            found = None
            regs = []
            for reg in current.registrations:
                if reg.id == registration_id:
                    found = reg
                    continue
                regs.append(reg)
            if found is None:
                raise KeyError(registration_id)
            self._swap(_Snapshot(tuple(regs), current.tokens))
        logger.info("Removed registration %s (%s)", registration_id, found.network)
        return found

    def add_token(
        self,
        account_id: str,
        name: str,
        expires_at: Optional[_dt.datetime] = None,
    ) -> Tuple[IPPToken, str]:
        """Create a token; the plaintext secret is returned once and never stored."""
        self.refresh()
        with self._write_lock:
            current = self._snapshot
            while True:
                secret = generate_token_secret()
                secret_hash = hash_secret(secret)
                if secret_hash not in current.tokens:
                    break
            token = IPPToken(
                id=generate_short_id(),
                account_id=account_id,
                name=name,
                secret_hash=secret_hash,
                expires_at=expires_at,
            )
            tokens = dict(current.tokens)
            tokens[secret_hash] = token
            self._swap(_Snapshot(current.registrations, MappingProxyType(tokens)))
        logger.info("Created IPP token %s (%s) for account %s", token.id, name, account_id)
        return token, secret

    def revoke_token(self, token_id: str) -> IPPToken:
        self.refresh()
        with self._write_lock:
            current = self._snapshot
            tokens = dict(current.tokens)
            for secret_hash, token in tokens.items():
                if token.id == token_id:
                    revoked = dataclasses.replace(token, revoked=True)
                    tokens[secret_hash] = revoked
                    break
            else:
                raise KeyError(token_id)
            self._swap(_Snapshot(current.registrations, MappingProxyType(tokens)))
        logger.info("Revoked IPP token %s", token_id)
        return revoked

    def _swap(self, snapshot: _Snapshot) -> None:
        # caller holds _write_lock
        if self.path is not None:
            self._write(snapshot)
        self._snapshot = snapshot

    def _write(self, snapshot: _Snapshot) -> None:
        assert self.path is not None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "registrations": [r.to_dict() for r in snapshot.registrations],
            "tokens": [t.to_dict() for t in snapshot.tokens.values()],
        }
        fd, tmp = tempfile.mkstemp(prefix=".identity-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
            self._stamp = self._file_stamp()
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


class IdentityResolver:
    """Maps network provenance (source address or IPP credential) to an account."""

    def __init__(self, directory: IdentityDirectory) -> None:
        self.directory = directory

    def match_address(self, address: Address) -> Optional[IPRegistration]:
        """Most specific registration containing ``address``.

        Longest prefix wins; among equal prefixes the newest registration wins.
        """
        try:
            ip = normalize_address(address)
        except ValueError:
            logger.debug("Cannot resolve malformed address %r", address)
            return None

        now = utcnow()
        best = None
        best_key = None
        for index, reg in enumerate(self.directory.snapshot().registrations):
            if reg.network.version != ip.version or ip not in reg.network:
                continue
            if not reg.is_valid(now):
                continue
            key = (reg.network.prefixlen, reg.created_at, index)
            if best_key is None or key > best_key:
                best, best_key = reg, key
        return best

    def resolve_address(self, address: Address) -> Optional[str]:
        reg = self.match_address(address)
        return reg.account_id if reg else None

    def resolve_token(self, account_id: str, secret: str) -> IPPToken:
        """Verify an IPP credential; raises AuthenticationError on any mismatch."""
        if not secret:
            raise AuthenticationError("empty credential")
        token = self.directory.snapshot().tokens.get(hash_secret(secret))
        if token is None or not secret_matches(token.secret_hash, secret):
            raise AuthenticationError("unknown token")
        if token.account_id != account_id:
            raise AuthenticationError("token does not belong to account")
        if not token.is_valid():
            raise AuthenticationError("token revoked or expired")
        return token

"""
Credential Store

Holds the ordered credential records of each wallet identity.

Credential documents come in two shapes. W3C-shaped credentials expose a ``type`` array
and their own ``id``; legacy attestation documents have no ``type`` and carry their id at
``data.id``. The shape is resolved once, when a document enters the store, into a
``CredentialRecord`` tagged with its ``CredentialKind``.

Writes for one identity are serialized: a keyed ``asyncio.Lock`` orders writers inside
this process and a single database transaction, backed by a unique constraint on
``(account_guid, credential_id)``, keeps a batch all-or-nothing across processes.
"""

import asyncio
import copy
import enum
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ulid import ULID

from social.graze.wallet.identity.directory import AccountDirectory
from social.graze.wallet.identity.errors import DuplicateCredentialId, InvalidCredential
from social.graze.wallet.identity.helpers import is_w3c_credential
from social.graze.wallet.identity.share_request import ShareRequest, ShareRequestDecoder
from social.graze.wallet.model.credential import StoredCredential

logger = logging.getLogger(__name__)


class CredentialKind(str, enum.Enum):
    W3C = "w3c"
    LEGACY = "legacy"


@dataclass(frozen=True)
class CredentialRecord:
    id: str
    kind: CredentialKind
    types: Tuple[str, ...] = ()
    payload: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "CredentialRecord":
        """
        Resolve a credential document into a record, assigning an id when it has none.

        The document is copied; an assigned id is written into the copy.
        """
        if not isinstance(document, Mapping):
            raise ValueError("Credential document must be a JSON object")

        payload = copy.deepcopy(dict(document))

        if is_w3c_credential(payload):
            types = payload["type"]
            if isinstance(types, str):
                types = [types]
            if not isinstance(types, list) or not all(isinstance(t, str) for t in types):
                raise ValueError("Credential type must be a string or a list of strings")
            credential_id = payload.get("id")
            if not credential_id:
                credential_id = f"urn:ulid:{ULID()}"
                payload["id"] = credential_id
            return cls(
                id=str(credential_id),
                kind=CredentialKind.W3C,
                types=tuple(types),
                payload=payload,
            )

        data = payload.setdefault("data", {})
        if not isinstance(data, dict):
            raise ValueError("Legacy credential data must be a JSON object")
        credential_id = data.get("id")
        if not credential_id:
            credential_id = str(ULID())
            data["id"] = credential_id
        return cls(id=str(credential_id), kind=CredentialKind.LEGACY, payload=payload)

    @classmethod
    def from_row(cls, row: StoredCredential) -> "CredentialRecord":
        return cls(
            id=row.credential_id,
            kind=CredentialKind(row.kind),
            types=tuple(row.types),
            payload=row.payload,
        )

    def satisfies(self, share_request: ShareRequest) -> bool:
        if not share_request.requirements:
            return True
        types = set(self.types)
        return any(set(requirement) <= types for requirement in share_request.requirements)


class KeyedLock:
    """One ``asyncio.Lock`` per key, released for collection once no one holds it."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def __call__(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class CredentialStore:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        directory: AccountDirectory,
        share_request_decoder: ShareRequestDecoder,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.directory = directory
        self.share_request_decoder = share_request_decoder
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.write_locks = KeyedLock()

    async def save(
        self, access_token: str, documents: Iterable[Mapping[str, Any]]
    ) -> List[CredentialRecord]:
        """
        Append credential documents in order, all or nothing.

        Raises:
            Unauthenticated: If the access token is not currently valid
            InvalidCredential: If a document has a malformed type or data member
            DuplicateCredentialId: If any id collides with a stored record or another
                document in the batch
        """
        account_guid = await self.directory.resolve_access_token(access_token)
        try:
            records = [CredentialRecord.from_document(document) for document in documents]
        except ValueError as e:
            raise InvalidCredential(str(e)) from e

        seen = set()
        for record in records:
            if record.id in seen:
                raise DuplicateCredentialId(record.id)
            seen.add(record.id)

        if not records:
            return []

        now = self.clock()
        async with self.write_locks(account_guid):
            async with self.database_session_maker() as database_session:
                try:
                    async with database_session.begin():
                        existing_stmt = select(StoredCredential.credential_id).where(
                            StoredCredential.account_guid == account_guid,
                            StoredCredential.credential_id.in_(sorted(seen)),
                        )
                        existing = (await database_session.scalars(existing_stmt)).first()
                        if existing is not None:
                            raise DuplicateCredentialId(existing)

                        database_session.add_all(
                            [
                                StoredCredential(
                                    account_guid=account_guid,
                                    credential_id=record.id,
                                    kind=record.kind.value,
                                    types=list(record.types),
                                    payload=record.payload,
                                    created_at=now,
                                )
                                for record in records
                            ]
                        )
                except IntegrityError as e:
                    # Lost a race with a writer in another process.
                    logger.warning("Credential batch rejected by unique constraint")
                    raise DuplicateCredentialId(", ".join(sorted(seen))) from e

        logger.debug("Saved %d credentials for %s", len(records), account_guid)
        return records

    async def list(
        self, access_token: str, share_request_token: Optional[str] = None
    ) -> List[CredentialRecord]:
        """
        Return the identity's records in insertion order, optionally filtered.

        Raises:
            Unauthenticated: If the access token is not currently valid
            InvalidShareToken: If the share request token cannot be decoded
        """
        account_guid = await self.directory.resolve_access_token(access_token)

        share_request: Optional[ShareRequest] = None
        if share_request_token is not None:
            share_request = self.share_request_decoder.decode(share_request_token)

        async with self.database_session_maker() as database_session:
            stmt = (
                select(StoredCredential)
                .where(StoredCredential.account_guid == account_guid)
                .order_by(StoredCredential.seq)
            )
            rows: Sequence[StoredCredential] = (await database_session.scalars(stmt)).all()

        records = [CredentialRecord.from_row(row) for row in rows]
        if share_request is None:
            return records
        return [record for record in records if record.satisfies(share_request)]

    async def delete_one(self, access_token: str, credential_id: str) -> None:
        account_guid = await self.directory.resolve_access_token(access_token)
        async with self.write_locks(account_guid):
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    await database_session.execute(
                        delete(StoredCredential).where(
                            StoredCredential.account_guid == account_guid,
                            StoredCredential.credential_id == credential_id,
                        )
                    )

    async def delete_all(self, access_token: str) -> None:
        account_guid = await self.directory.resolve_access_token(access_token)
        async with self.write_locks(account_guid):
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    await database_session.execute(
                        delete(StoredCredential).where(
                            StoredCredential.account_guid == account_guid
                        )
                    )

"""
Tests for the credential store: record resolution, ordered all-or-nothing saves,
share-request filtering, deletes and per-identity isolation.
"""

import asyncio

import pytest

from social.graze.wallet.identity.credentials import (
    CredentialKind,
    CredentialRecord,
    KeyedLock,
)
from social.graze.wallet.identity.errors import (
    DuplicateCredentialId,
    InvalidCredential,
    InvalidShareToken,
    Unauthenticated,
)
from social.graze.wallet.identity.share_request import ShareRequest
from tests.test_helpers import (
    build_share_request_token,
    legacy_credential,
    w3c_credential,
)


class TestCredentialRecord:
    def test_w3c_document(self):
        record = CredentialRecord.from_document(w3c_credential("urn:test:1", "EmailCredential"))
        assert record.kind == CredentialKind.W3C
        assert record.id == "urn:test:1"
        assert record.types == ("VerifiableCredential", "EmailCredential")

    def test_w3c_document_without_id(self):
        document = w3c_credential(None, "EmailCredential")
        record = CredentialRecord.from_document(document)

        assert record.id.startswith("urn:ulid:")
        assert record.payload["id"] == record.id
        assert "id" not in document

    def test_legacy_document(self):
        record = CredentialRecord.from_document(legacy_credential("legacy-1"))
        assert record.kind == CredentialKind.LEGACY
        assert record.id == "legacy-1"
        assert record.types == ()

    def test_legacy_document_without_id(self):
        record = CredentialRecord.from_document(legacy_credential())
        assert record.kind == CredentialKind.LEGACY
        assert record.id
        assert record.payload["data"]["id"] == record.id

    def test_empty_type_is_legacy(self):
        record = CredentialRecord.from_document({"type": [], "data": {"id": "x"}})
        assert record.kind == CredentialKind.LEGACY
        assert record.id == "x"

    def test_not_an_object(self):
        with pytest.raises(ValueError):
            CredentialRecord.from_document(["not", "a", "dict"])  # type: ignore

    def test_w3c_type_string(self):
        record = CredentialRecord.from_document({"type": "VerifiableCredential", "id": "a"})
        assert record.types == ("VerifiableCredential",)

    @pytest.mark.parametrize(
        "types", [{"VerifiableCredential": True}, 42, ["VerifiableCredential", 1]]
    )
    def test_w3c_type_must_be_strings(self, types):
        with pytest.raises(ValueError):
            CredentialRecord.from_document({"type": types, "id": "a"})

    def test_legacy_data_must_be_an_object(self):
        with pytest.raises(ValueError):
            CredentialRecord.from_document({"data": "opaque-blob", "signature": {}})

    def test_legacy_document_without_data(self):
        record = CredentialRecord.from_document({"signature": "legacy-signature"})
        assert record.payload["signature"] == "legacy-signature"
        assert record.payload["data"] == {"id": record.id}

    def test_satisfies(self):
        record = CredentialRecord.from_document(
            w3c_credential("a", "EmailCredential", "ProofOfEmail")
        )
        assert record.satisfies(ShareRequest())
        assert record.satisfies(ShareRequest(requirements=(("EmailCredential",),)))
        assert record.satisfies(
            ShareRequest(requirements=(("PhoneCredential",), ("ProofOfEmail",)))
        )
        assert not record.satisfies(
            ShareRequest(requirements=(("EmailCredential", "PhoneCredential"),))
        )


class TestKeyedLock:
    def test_same_key_same_lock(self):
        locks = KeyedLock()
        first = locks("a")
        assert locks("a") is first
        assert locks("b") is not first


class TestSave:
    async def test_save_and_list_in_order(self, credential_store, access_token_factory):
        access_token = await access_token_factory()
        saved = await credential_store.save(
            access_token,
            [
                w3c_credential("c1", "EmailCredential"),
                legacy_credential("c2"),
                w3c_credential("c3", "PhoneCredential"),
            ],
        )
        await credential_store.save(access_token, [w3c_credential("c4")])

        assert [record.id for record in saved] == ["c1", "c2", "c3"]
        listed = await credential_store.list(access_token)
        assert [record.id for record in listed] == ["c1", "c2", "c3", "c4"]
        assert listed[1].kind == CredentialKind.LEGACY
        assert listed[0].payload["credentialSubject"]["id"] == "did:web:holder.example.com"

    async def test_save_empty_batch(self, credential_store, access_token_factory):
        access_token = await access_token_factory()
        assert await credential_store.save(access_token, []) == []

    async def test_malformed_document_rejects_batch(
        self, credential_store, access_token_factory
    ):
        access_token = await access_token_factory()
        with pytest.raises(InvalidCredential):
            await credential_store.save(
                access_token, [w3c_credential("a"), {"data": "opaque-blob"}]
            )
        assert await credential_store.list(access_token) == []

    async def test_duplicate_within_batch_rejects_all(
        self, credential_store, access_token_factory
    ):
        access_token = await access_token_factory()
        with pytest.raises(DuplicateCredentialId):
            await credential_store.save(
                access_token, [w3c_credential("dup"), w3c_credential("dup")]
            )
        assert await credential_store.list(access_token) == []

    async def test_duplicate_with_stored_rejects_all(
        self, credential_store, access_token_factory
    ):
        access_token = await access_token_factory()
        await credential_store.save(access_token, [w3c_credential("c1")])

        with pytest.raises(DuplicateCredentialId) as exc_info:
            await credential_store.save(
                access_token, [w3c_credential("c2"), w3c_credential("c1")]
            )

        assert exc_info.value.credential_id == "c1"
        listed = await credential_store.list(access_token)
        assert [record.id for record in listed] == ["c1"]

    async def test_ids_unique_per_identity_only(
        self, credential_store, access_token_factory
    ):
        alice = await access_token_factory("alice@example.com")
        bob = await access_token_factory("bob@example.com")

        await credential_store.save(alice, [w3c_credential("shared")])
        await credential_store.save(bob, [w3c_credential("shared")])

        assert [r.id for r in await credential_store.list(alice)] == ["shared"]
        assert [r.id for r in await credential_store.list(bob)] == ["shared"]

    async def test_concurrent_saves_keep_every_record(
        self, credential_store, access_token_factory
    ):
        access_token = await access_token_factory()
        await asyncio.gather(
            *[
                credential_store.save(access_token, [w3c_credential(f"c{i}")])
                for i in range(5)
            ]
        )
        listed = await credential_store.list(access_token)
        assert sorted(record.id for record in listed) == [f"c{i}" for i in range(5)]


class TestList:
    async def test_filter_by_share_request(self, credential_store, access_token_factory):
        access_token = await access_token_factory()
        await credential_store.save(
            access_token,
            [
                w3c_credential("email", "EmailCredential"),
                w3c_credential("phone", "PhoneCredential"),
                legacy_credential("legacy"),
            ],
        )

        share_request_token = build_share_request_token([["EmailCredential"]])
        matched = await credential_store.list(access_token, share_request_token)
        assert [record.id for record in matched] == ["email"]

        either = build_share_request_token([["PhoneCredential"], ["EmailCredential"]])
        matched = await credential_store.list(access_token, either)
        assert [record.id for record in matched] == ["email", "phone"]

    async def test_share_request_without_requirements(
        self, credential_store, access_token_factory
    ):
        access_token = await access_token_factory()
        await credential_store.save(
            access_token, [w3c_credential("a"), legacy_credential("b")]
        )

        matched = await credential_store.list(access_token, build_share_request_token([]))
        assert [record.id for record in matched] == ["a", "b"]

    async def test_invalid_share_request(self, credential_store, access_token_factory):
        access_token = await access_token_factory()
        with pytest.raises(InvalidShareToken):
            await credential_store.list(access_token, "not-a-jwt")

    async def test_empty_share_request_is_invalid(
        self, credential_store, access_token_factory
    ):
        access_token = await access_token_factory()
        await credential_store.save(access_token, [w3c_credential("a")])
        with pytest.raises(InvalidShareToken):
            await credential_store.list(access_token, "")

    async def test_isolation_between_identities(
        self, credential_store, access_token_factory
    ):
        alice = await access_token_factory("alice@example.com")
        bob = await access_token_factory("bob@example.com")
        await credential_store.save(alice, [w3c_credential("a1")])

        assert await credential_store.list(bob) == []


class TestDelete:
    async def test_delete_one(self, credential_store, access_token_factory):
        access_token = await access_token_factory()
        await credential_store.save(
            access_token, [w3c_credential("a"), w3c_credential("b"), w3c_credential("c")]
        )

        await credential_store.delete_one(access_token, "b")

        listed = await credential_store.list(access_token)
        assert [record.id for record in listed] == ["a", "c"]

    async def test_delete_missing_is_noop(self, credential_store, access_token_factory):
        access_token = await access_token_factory()
        await credential_store.save(access_token, [w3c_credential("a")])

        await credential_store.delete_one(access_token, "missing")

        assert len(await credential_store.list(access_token)) == 1

    async def test_delete_all_is_idempotent(self, credential_store, access_token_factory):
        access_token = await access_token_factory()
        await credential_store.save(access_token, [w3c_credential("a"), legacy_credential()])

        await credential_store.delete_all(access_token)
        await credential_store.delete_all(access_token)

        assert await credential_store.list(access_token) == []

    async def test_deleted_id_can_be_saved_again(
        self, credential_store, access_token_factory
    ):
        access_token = await access_token_factory()
        await credential_store.save(access_token, [w3c_credential("a")])
        await credential_store.delete_one(access_token, "a")
        await credential_store.save(access_token, [w3c_credential("a")])

        assert [r.id for r in await credential_store.list(access_token)] == ["a"]


class TestAuthentication:
    @pytest.mark.parametrize("access_token", ["", "unknown-token"])
    async def test_invalid_tokens(self, credential_store, access_token):
        with pytest.raises(Unauthenticated):
            await credential_store.list(access_token)
        with pytest.raises(Unauthenticated):
            await credential_store.save(access_token, [w3c_credential("a")])
        with pytest.raises(Unauthenticated):
            await credential_store.delete_one(access_token, "a")
        with pytest.raises(Unauthenticated):
            await credential_store.delete_all(access_token)

    async def test_expired_token(self, credential_store, access_token_factory, clock):
        access_token = await access_token_factory()
        clock.advance(3600)
        with pytest.raises(Unauthenticated):
            await credential_store.list(access_token)

    async def test_revoked_token(self, credential_store, directory, access_token_factory):
        access_token = await access_token_factory()
        await directory.revoke(access_token)
        with pytest.raises(Unauthenticated):
            await credential_store.list(access_token)

import base64

import pytest
from cryptography.fernet import Fernet
from jwcrypto import jwk
from pydantic import ValidationError

from social.graze.wallet.app.config import Settings


class TestSettings:
    def test_encryption_key_from_string(self):
        key = Fernet.generate_key()
        settings = Settings(encryption_key=base64.b64encode(key).decode("ascii"))

        token = Fernet(key).encrypt(b"seed")
        assert settings.encryption_key.decrypt(token) == b"seed"

    def test_encryption_key_rejects_other_types(self):
        with pytest.raises(ValidationError):
            Settings(encryption_key=42)

    def test_did_method_must_be_supported(self):
        with pytest.raises(ValidationError):
            Settings(did_method="plc")

        settings = Settings(supported_did_methods=["plc"], did_method="plc")
        assert settings.did_method == "plc"

    def test_ephemeral_signing_key(self):
        signing_key = Settings().load_signing_key()
        assert signing_key.has_private
        assert signing_key.key_id

    def test_signing_key_from_file(self, tmp_path):
        key = jwk.JWK.generate(kty="EC", crv="P-256", kid="wallet-key")
        key_file = tmp_path / "signing.jwk"
        key_file.write_text(key.export_private())

        loaded = Settings(signing_key_file=str(key_file)).load_signing_key()
        assert loaded.key_id == "wallet-key"
        assert loaded.thumbprint() == key.thumbprint()

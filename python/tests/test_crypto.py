"""Tests for CryptoUtils."""

import pytest

from athar.crypto import CryptoUtils
from athar.types import ContentDigest


class TestDigest:
    def test_deterministic(self):
        assert CryptoUtils.digest(b"hello") == CryptoUtils.digest(b"hello")

    def test_digest_matches_hex_hash(self):
        d = CryptoUtils.digest(b"hello")
        assert isinstance(d, ContentDigest)
        assert d.algorithm == "sha256"
        assert d.hex() == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
        assert len(d.value) == 32

    def test_digest_equality_is_bytewise(self):
        assert CryptoUtils.digest(b"a") == CryptoUtils.digest(bytearray(b"a"))
        assert CryptoUtils.digest(b"a") != CryptoUtils.digest(b"b")

    def test_digest_empty(self):
        assert len(CryptoUtils.digest(b"").hex()) == 64

    def test_digest_rejects_text(self):
        with pytest.raises(ValueError):
            CryptoUtils.digest("not bytes")


class TestKeyPair:
    def test_generate_key_pair(self, key_pair):
        public_key, private_key = key_pair
        assert "BEGIN PUBLIC KEY" in public_key
        assert "BEGIN PRIVATE KEY" in private_key

    def test_extract_public_key(self, key_pair):
        public_key, private_key = key_pair
        extracted = CryptoUtils.get_public_key_from_private_key(private_key)
        assert extracted == public_key


class TestSigning:
    def test_sign_and_verify(self, key_pair):
        public_key, private_key = key_pair
        content = "message to sign"
        signature = CryptoUtils.sign_content(content, private_key)
        assert CryptoUtils.verify_signature(content, signature, public_key)

    def test_verify_wrong_content(self, key_pair):
        public_key, private_key = key_pair
        signature = CryptoUtils.sign_content("original", private_key)
        assert not CryptoUtils.verify_signature("tampered", signature, public_key)

    def test_verify_invalid_signature(self, key_pair):
        public_key, _ = key_pair
        assert not CryptoUtils.verify_signature("msg", "badsig", public_key)

    def test_verify_garbage_key(self, key_pair):
        _, private_key = key_pair
        signature = CryptoUtils.sign_content("msg", private_key)
        assert not CryptoUtils.verify_signature("msg", signature, "not a pem")

    def test_verify_wrong_key(self, key_pair):
        _, sk1 = key_pair
        pk2, _ = CryptoUtils.generate_key_pair()
        sig = CryptoUtils.sign_content("data", sk1)
        assert not CryptoUtils.verify_signature("data", sig, pk2)


class TestCanonicalJson:
    def test_sorted_keys(self):
        j = CryptoUtils.canonical_json({"b": 2, "a": 1})
        assert j == '{"a":1,"b":2}'

    def test_no_spaces(self):
        j = CryptoUtils.canonical_json({"key": "value"})
        assert " " not in j


class TestGenerateUuid:
    def test_format(self):
        uid = CryptoUtils.generate_uuid()
        assert uid.startswith("urn:uuid:")

    def test_uniqueness(self):
        assert CryptoUtils.generate_uuid() != CryptoUtils.generate_uuid()

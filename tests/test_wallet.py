"""
Tests for caller identities and request signatures.
"""

from stakeflow_core.wallet import Wallet, derive_address, verify_signature


class TestWallet:
    def test_address_format(self, alice_wallet):
        assert alice_wallet.address.startswith("sf")
        assert len(alice_wallet.address) == 42

    def test_from_seed_is_deterministic(self):
        assert Wallet.from_seed("x").address == Wallet.from_seed("x").address
        assert Wallet.from_seed("x").address != Wallet.from_seed("y").address

    def test_create_is_random(self):
        assert Wallet.create().address != Wallet.create().address

    def test_public_key_is_uncompressed(self, alice_wallet):
        assert len(alice_wallet.public_key) == 65
        assert alice_wallet.public_key[0] == 4

    def test_address_ignores_prefix_byte(self, alice_wallet):
        assert derive_address(alice_wallet.public_key[1:]) == alice_wallet.address

    def test_repr(self, alice_wallet):
        assert alice_wallet.address in repr(alice_wallet)


class TestSignatures:
    def test_sign_and_verify(self, alice_wallet):
        sig = alice_wallet.sign(b"payload")
        assert verify_signature(alice_wallet.public_key, sig, b"payload")

    def test_deterministic_signature(self, alice_wallet):
        assert alice_wallet.sign(b"m") == alice_wallet.sign(b"m")

    def test_tampered_message(self, alice_wallet):
        sig = alice_wallet.sign(b"payload")
        assert not verify_signature(alice_wallet.public_key, sig, b"payl0ad")

    def test_wrong_key(self, alice_wallet, admin_wallet):
        sig = alice_wallet.sign(b"payload")
        assert not verify_signature(admin_wallet.public_key, sig, b"payload")

    def test_malformed_key(self, alice_wallet):
        sig = alice_wallet.sign(b"payload")
        assert not verify_signature(b"\x04\x01\x02", sig, b"payload")

    def test_garbage_signature(self, alice_wallet):
        assert not verify_signature(alice_wallet.public_key, b"\x00" * 64, b"payload")

    def test_request_headers(self, alice_wallet):
        headers = alice_wallet.sign_request(b"{}")
        assert bytes.fromhex(headers["X-Public-Key"]) == alice_wallet.public_key
        assert verify_signature(
            alice_wallet.public_key, bytes.fromhex(headers["X-Signature"]), b"{}",
        )

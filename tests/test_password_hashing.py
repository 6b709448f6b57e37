"""Tests for the salted password hasher."""

from __future__ import annotations

import unittest

from localdata.passwords import PASSWORD_SCHEME, PasswordHasher, build_crypt_context


class PasswordHashingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.hasher = PasswordHasher(build_crypt_context(rounds=1000))

    def test_hash_and_verify(self) -> None:
        hashed = self.hasher.hash("supersecurepassword")
        self.assertTrue(hashed.startswith(f"${PASSWORD_SCHEME.replace('_', '-')}$"))
        self.assertNotIn("supersecurepassword", hashed)
        self.assertTrue(self.hasher.verify("supersecurepassword", hashed))
        self.assertFalse(self.hasher.verify("incorrect", hashed))

    def test_each_hash_uses_a_fresh_salt(self) -> None:
        first = self.hasher.hash("same")
        second = self.hasher.hash("same")
        self.assertNotEqual(first, second)
        self.assertTrue(self.hasher.verify("same", first))
        self.assertTrue(self.hasher.verify("same", second))

    def test_malformed_hashes_never_verify(self) -> None:
        self.assertFalse(self.hasher.verify("anything", "not-a-hash"))
        self.assertFalse(self.hasher.verify("anything", ""))
        self.assertFalse(self.hasher.verify("anything", None))

    def test_default_context_verifies_low_round_hashes(self) -> None:
        hashed = self.hasher.hash("anothersecurepassword")
        default = PasswordHasher()
        self.assertTrue(default.verify("anothersecurepassword", hashed))

    def test_weaker_hashes_need_update(self) -> None:
        weak = self.hasher.hash("upgrade-me")
        stronger = PasswordHasher(build_crypt_context(rounds=2000))
        self.assertTrue(stronger.needs_update(weak))
        self.assertFalse(stronger.needs_update(stronger.hash("upgrade-me")))
        self.assertFalse(self.hasher.needs_update(weak))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

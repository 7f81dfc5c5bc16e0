"""Tests for PKCE verifier and challenge generation."""

import re

from oidctester.core.pkce import (
    CODE_CHALLENGE_METHOD,
    PKCEPair,
    derive_code_challenge,
    generate_code_verifier,
    verify_code_challenge,
)

BASE64URL = re.compile(r"^[A-Za-z0-9_-]+$")


class TestCodeVerifier:
    """Tests for code verifier generation."""

    def test_verifier_is_43_base64url_chars(self) -> None:
        """Test verifiers are 43 unpadded base64url characters."""
        for _ in range(20):
            verifier = generate_code_verifier()
            assert len(verifier) == 43
            assert BASE64URL.match(verifier)

    def test_verifiers_are_unique(self) -> None:
        """Test each call produces a different verifier."""
        verifiers = {generate_code_verifier() for _ in range(100)}
        assert len(verifiers) == 100


class TestCodeChallenge:
    """Tests for S256 challenge derivation and verification."""

    def test_rfc7636_example(self) -> None:
        """Test the example from RFC 7636 Appendix B."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert derive_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_challenge_has_no_padding(self) -> None:
        """Test the challenge is unpadded base64url."""
        challenge = derive_code_challenge(generate_code_verifier())
        assert len(challenge) == 43
        assert "=" not in challenge

    def test_verify_matching_pair(self) -> None:
        """Test a verifier matches its own challenge."""
        verifier = generate_code_verifier()
        assert verify_code_challenge(verifier, derive_code_challenge(verifier)) is True

    def test_verify_other_verifier(self) -> None:
        """Test a different verifier does not match."""
        challenge = derive_code_challenge(generate_code_verifier())
        assert verify_code_challenge(generate_code_verifier(), challenge) is False

    def test_verify_missing_values(self) -> None:
        """Test missing verifier or challenge never match."""
        verifier = generate_code_verifier()
        assert verify_code_challenge(None, derive_code_challenge(verifier)) is False
        assert verify_code_challenge(verifier, None) is False
        assert verify_code_challenge("", "") is False

    def test_verify_non_ascii_verifier(self) -> None:
        """Test a non-ASCII verifier is rejected rather than raising."""
        assert verify_code_challenge("vérifier", "anything") is False


class TestPKCEPair:
    """Tests for PKCEPair."""

    def test_generate(self) -> None:
        """Test generated pairs are consistent."""
        pair = PKCEPair.generate()
        assert pair.method == CODE_CHALLENGE_METHOD == "S256"
        assert pair.challenge == derive_code_challenge(pair.verifier)

    def test_repr_hides_verifier(self) -> None:
        """Test the verifier does not appear in repr()."""
        pair = PKCEPair.generate()
        assert pair.verifier not in repr(pair)
        assert pair.challenge in repr(pair)

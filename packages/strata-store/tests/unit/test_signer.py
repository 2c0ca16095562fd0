"""Unit tests for signed access URLs."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from strata_store.errors import SignatureError
from strata_store.stores import UrlSigner

LOCATION = "memory://artifacts/run-1/templates/shop-root.json"
START = datetime(2026, 3, 1, 12, 0, 30, 500000, tzinfo=UTC)


class MutableClock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        return self.now


class TestUrlSigner:
    """Tests for UrlSigner."""

    def test_sign_and_verify(self) -> None:
        """A fresh URL verifies to its location."""
        signer = UrlSigner(b"secret", clock=MutableClock())
        access = signer.sign(LOCATION, 3600)

        assert access.url.startswith(f"{LOCATION}?se=")
        assert "&sig=" in access.url
        assert access.expires_at == datetime(2026, 3, 1, 13, 0, 30, tzinfo=UTC)
        assert signer.verify(access.url) == LOCATION

    def test_expired(self) -> None:
        """URLs stop verifying at their expiry."""
        clock = MutableClock()
        signer = UrlSigner(b"secret", clock=clock)
        access = signer.sign(LOCATION, 60)

        clock.now = START + timedelta(seconds=60)

        with pytest.raises(SignatureError, match="expired"):
            signer.verify(access.url)

    def test_tampered_location(self) -> None:
        """Changing the location invalidates the signature."""
        signer = UrlSigner(b"secret", clock=MutableClock())
        access = signer.sign(LOCATION, 3600)
        forged = access.url.replace("shop-root", "shop-compute-01")

        with pytest.raises(SignatureError) as exc_info:
            signer.verify(forged)
        assert exc_info.value.location.endswith("shop-compute-01.json")

    def test_extended_expiry_rejected(self) -> None:
        """The expiry is covered by the signature."""
        signer = UrlSigner(b"secret", clock=MutableClock())
        access = signer.sign(LOCATION, 3600)
        expiry = int(access.expires_at.timestamp())
        forged = access.url.replace(f"se={expiry}", f"se={expiry + 86400}")

        with pytest.raises(SignatureError, match="Invalid access signature"):
            signer.verify(forged)

    def test_other_secret_rejected(self) -> None:
        """Signatures are bound to the secret."""
        access = UrlSigner(b"secret", clock=MutableClock()).sign(LOCATION, 3600)
        with pytest.raises(SignatureError):
            UrlSigner(b"other", clock=MutableClock()).verify(access.url)

    @pytest.mark.parametrize(
        "url",
        [LOCATION, f"{LOCATION}?se=soon&sig=abc", f"{LOCATION}?sig=abc"],
    )
    def test_malformed(self, url: str) -> None:
        """URLs without a numeric expiry and signature are rejected."""
        with pytest.raises(SignatureError, match="Malformed"):
            UrlSigner(b"secret").verify(url)

    def test_signature_not_in_message(self) -> None:
        """Errors name the location, never the signature."""
        signer = UrlSigner(b"secret", clock=MutableClock())
        access = signer.sign(LOCATION, 3600)
        signature = access.url.rsplit("sig=", 1)[1]

        with pytest.raises(SignatureError) as exc_info:
            UrlSigner(b"other", clock=MutableClock()).verify(access.url)
        assert signature not in str(exc_info.value)
        assert LOCATION in str(exc_info.value)

    def test_empty_secret(self) -> None:
        """An empty secret is refused."""
        with pytest.raises(ValueError, match="must not be empty"):
            UrlSigner(b"")

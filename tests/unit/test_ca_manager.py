"""Unit tests for CA Manager component."""

import pytest
from datetime import timedelta
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives.asymmetric import rsa

from localca.crypto_utils import CertificateVerifier
from localca.errors import ConflictError, CryptoError, NotFoundError, ValidationError
from localca.pki_service.ca_manager import CAManager
from localca.pki_service.models import CASubject


@pytest.fixture
def ca_manager(store, settings):
    return CAManager(store, settings)


class TestCACreation:
    """Test CA creation."""

    def test_create_ca_returns_name(self, ca_manager):
        name = ca_manager.create_ca(CASubject(common_name="Root-A", country="GB"), expiry_days=3650)
        assert name == "Root-A"

    def test_created_ca_is_listed_once(self, ca_manager):
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        assert ca_manager.list_cas().count("Root-A") == 1

    def test_ca_is_self_signed(self, ca_manager):
        """Test that a fresh CA's issuer equals its subject and its signature verifies."""
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        cert = ca_manager.load_ca("Root-A").certificate

        assert cert.issuer == cert.subject
        assert CertificateVerifier.is_self_signed(cert)

    @pytest.mark.parametrize("days", [1, 30, 3650])
    def test_validity_is_exactly_expiry_days(self, ca_manager, days):
        ca_manager.create_ca(CASubject(common_name=f"CA-{days}"), expiry_days=days)
        cert = ca_manager.load_ca(f"CA-{days}").certificate

        assert cert.not_valid_after_utc - cert.not_valid_before_utc == timedelta(days=days)

    def test_default_expiry(self, ca_manager, settings):
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        cert = ca_manager.load_ca("Root-A").certificate

        assert cert.not_valid_after_utc - cert.not_valid_before_utc == timedelta(
            days=settings.default_ca_expiry_days
        )

    def test_ca_extensions(self, ca_manager):
        """Test CA constraints and key usage."""
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        cert = ca_manager.load_ca("Root-A").certificate

        basic = cert.extensions.get_extension_for_class(x509.BasicConstraints)
        assert basic.critical
        assert basic.value.ca is True

        usage = cert.extensions.get_extension_for_class(x509.KeyUsage)
        assert usage.critical
        assert usage.value.key_cert_sign
        assert usage.value.crl_sign

        cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)

    def test_subject_fields(self, ca_manager):
        subject = CASubject(
            common_name="Root-A",
            country="gb",
            state="England",
            locality="London",
            organization="Acme",
        )
        ca_manager.create_ca(subject)
        name = ca_manager.load_ca("Root-A").certificate.subject

        assert name.get_attributes_for_oid(NameOID.COUNTRY_NAME)[0].value == "GB"
        assert name.get_attributes_for_oid(NameOID.STATE_OR_PROVINCE_NAME)[0].value == "England"
        assert name.get_attributes_for_oid(NameOID.LOCALITY_NAME)[0].value == "London"
        assert name.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == "Acme"

    def test_blank_fields_default(self, ca_manager, settings):
        """Test that blank organization defaults and blank location fields are omitted."""
        ca_manager.create_ca(CASubject(common_name="Root-A", country=" ", state="", organization=""))
        name = ca_manager.load_ca("Root-A").certificate.subject

        assert name.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == settings.default_organization
        assert name.get_attributes_for_oid(NameOID.COUNTRY_NAME) == []
        assert name.get_attributes_for_oid(NameOID.STATE_OR_PROVINCE_NAME) == []

    def test_key_size(self, ca_manager, settings):
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        key = ca_manager.load_ca("Root-A").private_key

        assert isinstance(key, rsa.RSAPrivateKey)
        assert key.key_size == settings.ca_key_size


class TestCAValidation:
    """Test rejected CA requests."""

    def test_empty_common_name(self, ca_manager):
        with pytest.raises(ValidationError):
            ca_manager.create_ca(CASubject(common_name="   "))

    @pytest.mark.parametrize("days", [0, -5, 36501])
    def test_bad_expiry(self, ca_manager, days):
        with pytest.raises(ValidationError):
            ca_manager.create_ca(CASubject(common_name="Root-A"), expiry_days=days)
        assert ca_manager.list_cas() == []

    def test_unsafe_name(self, ca_manager):
        with pytest.raises(ValidationError):
            ca_manager.create_ca(CASubject(common_name="../Root"))

    def test_duplicate_name_conflicts(self, ca_manager):
        """Test that a second CA with the same name fails and the first is kept."""
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        first = ca_manager.load_ca("Root-A").certificate

        with pytest.raises(ConflictError):
            ca_manager.create_ca(CASubject(common_name="Root-A"))

        assert ca_manager.list_cas() == ["Root-A"]
        assert ca_manager.load_ca("Root-A").certificate == first

    def test_serial_exhaustion(self, ca_manager, monkeypatch):
        """Test that the bounded serial loop gives up instead of reusing a serial."""
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        taken = ca_manager.load_ca("Root-A").certificate.serial_number
        monkeypatch.setattr(x509, "random_serial_number", lambda: taken)

        with pytest.raises(CryptoError):
            ca_manager.create_ca(CASubject(common_name="Root-B"))
        assert ca_manager.list_cas() == ["Root-A"]


class TestCALifecycle:
    """Test loading and deleting CAs."""

    def test_load_missing(self, ca_manager):
        with pytest.raises(NotFoundError):
            ca_manager.load_ca("Nope")

    def test_delete(self, ca_manager):
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        ca_manager.delete_ca("Root-A")

        assert ca_manager.list_cas() == []

    def test_delete_missing(self, ca_manager):
        with pytest.raises(NotFoundError):
            ca_manager.delete_ca("Nope")

    def test_certificate_pem(self, ca_manager):
        ca_manager.create_ca(CASubject(common_name="Root-A"))
        pem = ca_manager.get_ca_certificate_pem("Root-A")

        assert pem.startswith(b"-----BEGIN CERTIFICATE-----")
        assert b"PRIVATE KEY" not in pem

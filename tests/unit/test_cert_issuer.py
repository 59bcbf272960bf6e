"""Unit tests for Certificate Issuer component."""

import threading
from datetime import timedelta

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID

from localca.crypto_utils import CertificateVerifier
from localca.errors import ConflictError, CryptoError, NotFoundError, ValidationError
from localca.pki_service.ca_manager import CAManager
from localca.pki_service.cert_issuer import CertificateIssuer
from localca.pki_service.models import CASubject
from localca.pki_service.store import StoredEntry

from ..utils.test_helpers import CertificateFactory, get_common_name, get_san


@pytest.fixture
def ca_manager(store, settings):
    manager = CAManager(store, settings)
    manager.create_ca(CASubject(common_name="Root-A", country="GB"))
    return manager


@pytest.fixture
def issuer(ca_manager, store, settings):
    return CertificateIssuer(ca_manager, store, settings)


class TestCertificateIssuance:
    """Test leaf certificate issuance."""

    def test_identifier(self, issuer):
        identifier = issuer.create_certificate("device1.local", "10.0.0.5", "Root-A")
        assert identifier == "device1.local_signed-by_Root-A"
        assert issuer.list_certificates() == [identifier]

    def test_signed_by_ca(self, issuer, ca_manager, store):
        """Test that the leaf names and verifies against its CA."""
        identifier = issuer.create_certificate("device1.local", "", "Root-A")
        leaf = store.load_certificate(identifier)
        ca = ca_manager.load_ca("Root-A").certificate

        assert leaf.issuer == ca.subject
        assert CertificateVerifier.is_issued_by(leaf, ca)
        assert get_common_name(leaf.subject) == "device1.local"

    def test_cn_is_first_san(self, issuer, store):
        identifier = issuer.create_certificate("device1.local", "alt.local, 10.0.0.5, device1.local", "Root-A")
        dns, ips = get_san(store.load_certificate(identifier))

        assert dns == ["device1.local", "alt.local"]
        assert ips == ["10.0.0.5"]

    def test_ip_common_name(self, issuer, store):
        identifier = issuer.create_certificate("192.168.1.10", "", "Root-A")
        dns, ips = get_san(store.load_certificate(identifier))

        assert dns == []
        assert ips == ["192.168.1.10"]

    def test_display_name_not_a_san(self, issuer, store):
        """Test that a CN with spaces is kept out of the SAN list."""
        identifier = issuer.create_certificate("Office Printer", "printer.local", "Root-A")
        dns, _ = get_san(store.load_certificate(identifier))

        assert dns == ["printer.local"]

    def test_wildcard(self, issuer, store):
        identifier = issuer.create_certificate("*.example.com", "", "Root-A")
        assert identifier == "_wildcard.example.com_signed-by_Root-A"

        dns, _ = get_san(store.load_certificate(identifier))
        assert dns == ["*.example.com"]

    def test_leaf_extensions(self, issuer, store):
        identifier = issuer.create_certificate("device1.local", "", "Root-A")
        cert = store.load_certificate(identifier)

        assert cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca is False
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert usage.digital_signature and usage.key_encipherment
        assert not usage.key_cert_sign
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert ExtendedKeyUsageOID.SERVER_AUTH in eku
        assert ExtendedKeyUsageOID.CLIENT_AUTH in eku
        cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier)

    def test_validity(self, issuer, store, settings):
        default_id = issuer.create_certificate("a.local", "", "Root-A")
        custom_id = issuer.create_certificate("b.local", "", "Root-A", expiry_days=90)

        default_cert = store.load_certificate(default_id)
        custom_cert = store.load_certificate(custom_id)
        assert default_cert.not_valid_after_utc - default_cert.not_valid_before_utc == timedelta(
            days=settings.default_cert_expiry_days
        )
        assert custom_cert.not_valid_after_utc - custom_cert.not_valid_before_utc == timedelta(days=90)

    def test_distinct_key_from_ca(self, issuer, ca_manager, store):
        identifier = issuer.create_certificate("device1.local", "", "Root-A")
        leaf = store.load_entry(identifier)
        ca = ca_manager.load_ca("Root-A")

        assert leaf.private_key.private_numbers() != ca.private_key.private_numbers()


class TestIssuanceValidation:
    """Test rejected issuance requests."""

    def test_empty_common_name(self, issuer):
        with pytest.raises(ValidationError):
            issuer.create_certificate("  ", "a.local", "Root-A")

    def test_missing_issuer_name(self, issuer):
        with pytest.raises(ValidationError):
            issuer.create_certificate("device1.local", "", "")

    def test_unknown_ca(self, issuer):
        with pytest.raises(NotFoundError):
            issuer.create_certificate("device1.local", "", "Nope")
        assert issuer.list_certificates() == []

    def test_bad_san(self, issuer):
        with pytest.raises(ValidationError):
            issuer.create_certificate("device1.local", "bücher.example", "Root-A")

    @pytest.mark.parametrize("days", [0, -1, 36501])
    def test_bad_expiry(self, issuer, days):
        with pytest.raises(ValidationError):
            issuer.create_certificate("device1.local", "", "Root-A", expiry_days=days)

    def test_duplicate(self, issuer):
        issuer.create_certificate("device1.local", "", "Root-A")
        with pytest.raises(ConflictError):
            issuer.create_certificate("device1.local", "", "Root-A")

    def test_same_cn_different_ca(self, issuer, ca_manager):
        ca_manager.create_ca(CASubject(common_name="Root-B"))
        issuer.create_certificate("device1.local", "", "Root-A")
        issuer.create_certificate("device1.local", "", "Root-B")

        assert issuer.list_certificates() == [
            "device1.local_signed-by_Root-A",
            "device1.local_signed-by_Root-B",
        ]


class TestSerialNumbers:
    """Test serial allocation."""

    def test_serials_distinct(self, issuer, store, ca_manager):
        ids = [issuer.create_certificate(f"d{i}.local", "", "Root-A") for i in range(3)]
        serials = {store.load_certificate(i).serial_number for i in ids}
        serials.add(ca_manager.load_ca("Root-A").certificate.serial_number)

        assert len(serials) == 4

    def test_collision_retried(self, issuer, ca_manager, store, monkeypatch):
        """Test that a colliding serial is redrawn."""
        taken = ca_manager.load_ca("Root-A").certificate.serial_number
        draws = iter([taken, taken, 12345678901234567890])
        monkeypatch.setattr(x509, "random_serial_number", lambda: next(draws))

        identifier = issuer.create_certificate("device1.local", "", "Root-A")

        assert store.load_certificate(identifier).serial_number == 12345678901234567890

    def test_collision_exhausted(self, issuer, ca_manager, monkeypatch):
        taken = ca_manager.load_ca("Root-A").certificate.serial_number
        monkeypatch.setattr(x509, "random_serial_number", lambda: taken)

        with pytest.raises(CryptoError):
            issuer.create_certificate("device1.local", "", "Root-A")
        assert issuer.list_certificates() == []

    def test_concurrent_issuance(self, issuer, store):
        """Test that parallel issuance against one CA yields distinct serials."""
        results, errors = [], []

        def issue(cn):
            try:
                results.append(issuer.create_certificate(cn, "", "Root-A"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=issue, args=(f"host{i}.local",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert sorted(results) == issuer.list_certificates()
        serials = {store.load_certificate(i).serial_number for i in results}
        assert len(serials) == 4


class TestOrphans:
    """Test weak issuer references."""

    def test_not_orphaned(self, issuer):
        identifier = issuer.create_certificate("device1.local", "", "Root-A")
        assert not issuer.is_orphaned(identifier)
        assert issuer.list_orphaned_certificates() == []

    def test_ca_deleted(self, issuer, ca_manager):
        """Test that deleting the CA keeps the leaf and marks it orphaned."""
        identifier = issuer.create_certificate("device1.local", "", "Root-A")
        ca_manager.delete_ca("Root-A")

        assert issuer.list_certificates() == [identifier]
        assert issuer.is_orphaned(identifier)
        assert issuer.list_orphaned_certificates() == [identifier]

    def test_ca_replaced(self, issuer, ca_manager, store):
        """Test that a different CA stored under the same name does not adopt old leaves."""
        identifier = issuer.create_certificate("device1.local", "", "Root-A")
        ca_manager.delete_ca("Root-A")
        cert, key = CertificateFactory.create_ca_certificate("Root-A")
        store.save(StoredEntry("Root-A", cert, key))

        assert issuer.resolve_issuer(identifier) is None
        assert issuer.list_orphaned_certificates() == [identifier]


class TestDeletion:

    def test_delete_certificate(self, issuer):
        identifier = issuer.create_certificate("device1.local", "", "Root-A")
        issuer.delete_certificate(identifier)
        assert issuer.list_certificates() == []

    def test_delete_missing(self, issuer):
        with pytest.raises(NotFoundError):
            issuer.delete_certificate("ghost.local_signed-by_Root-A")

    def test_delete_rejects_ca_name(self, issuer):
        with pytest.raises(ValidationError):
            issuer.delete_certificate("Root-A")

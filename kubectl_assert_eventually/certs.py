import datetime
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

CA_SERIAL = 2019
CA_VALIDITY_YEARS = 10
KEY_SIZE = 4096

TLS_SECRET_NAME = "reg-cert"
CA_CONFIGMAP_NAME = "reg-ca"
CA_CONFIGMAP_KEY = "domain.crt"


def _years_after(moment: datetime.datetime, years: int) -> datetime.datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return moment.replace(year=moment.year + years, day=28)


def generate(dns_name: str, key_size: int = KEY_SIZE) -> tuple[str, str]:
    """
    Create a self-signed CA certificate for `dns_name`.

    The certificate can sign other certificates and is valid for both
    server and client authentication for ten years. Returns
    (certificate PEM, PKCS#1 private key PEM).
    """
    if not dns_name:
        raise ValueError("dns_name must not be empty")

    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Company, INC."),
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.COMMON_NAME, dns_name),
        ]
    )
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(CA_SERIAL)
        .not_valid_before(now)
        .not_valid_after(_years_after(now, CA_VALIDITY_YEARS))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(dns_name)]), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return cert_pem, key_pem


# ----------------------------
# Manifests for the setup collaborator
# ----------------------------


def tls_secret_manifest(
    cert_pem: str, key_pem: str, namespace: str, name: str = TLS_SECRET_NAME
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "type": "kubernetes.io/tls",
        "stringData": {"tls.crt": cert_pem, "tls.key": key_pem},
    }


def ca_configmap_manifest(
    cert_pem: str, namespace: str, name: str = CA_CONFIGMAP_NAME
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": {CA_CONFIGMAP_KEY: cert_pem},
    }

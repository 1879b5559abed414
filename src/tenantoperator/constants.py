"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "CERTS_PATH",
    "CONFIGURATION_PATH",
    "CONSOLE_HTTPS_PORT",
    "CONSOLE_PORT",
    "CREDENTIALS_ACCESS_KEY",
    "CREDENTIALS_SECRET_KEY",
    "CSR_HOSTS_ANNOTATION",
    "DEFAULT_CONSOLE_IMAGE",
    "DEFAULT_KES_IMAGE",
    "DEFAULT_KES_KEY_NAME",
    "DEFAULT_MINIO_IMAGE",
    "DEFAULT_MOUNT_PATH",
    "KES_CONFIG_PATH",
    "KES_PORT",
    "KUBERNETES_NAME_PATTERN",
    "KUBERNETES_REQUEST_TIMEOUT",
    "LABEL_CONSOLE",
    "LABEL_KES",
    "LABEL_NAMESPACE",
    "LABEL_POOL",
    "LABEL_ROLE",
    "LABEL_TENANT",
    "MINIO_ARGS_KEY",
    "MINIO_PORT",
    "MINIO_UPDATE_MINISIGN_PUBKEY",
    "PENDING_KEY_SECRET_KEY",
    "RESERVED_ENV",
    "TENANT_GROUP",
    "TENANT_KIND",
    "TENANT_PLURAL",
    "TENANT_VERSION",
    "TLS_CERT_KEY",
    "TLS_PRIVATE_KEY_KEY",
    "VALIDATE_MOUNTS_INTERVAL",
    "VOLUME_NAME_PREFIX",
]

CONFIGURATION_PATH = Path("/etc/tenant-operator/config.yaml")
"""Default path to operator configuration."""

TENANT_GROUP = "minio.min.io"
"""API group of the ``Tenant`` custom resource."""

TENANT_VERSION = "v2"
"""API version of the ``Tenant`` custom resource."""

TENANT_PLURAL = "tenants"
"""Plural under which ``Tenant`` objects are served."""

TENANT_KIND = "Tenant"
"""Kind of the ``Tenant`` custom resource."""

KUBERNETES_NAME_PATTERN = "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
"""Pattern matching valid Kubernetes names."""

LABEL_TENANT = "v1.min.io/tenant"
"""Label carrying the owning tenant name, set on every generated object."""

LABEL_POOL = "v1.min.io/pool"
"""Label carrying the pool name, set on per-pool objects."""

LABEL_CONSOLE = "v1.min.io/console"
"""Label selecting the management console pods of a tenant."""

LABEL_KES = "v1.min.io/kes"
"""Label selecting the KES pods of a tenant."""

LABEL_NAMESPACE = "v1.min.io/namespace"
"""Label carrying the tenant namespace on cluster-scoped objects."""

LABEL_ROLE = "v1.min.io/certificate-role"
"""Label carrying the certificate role on CSRs and certificate secrets."""

CSR_HOSTS_ANNOTATION = "v1.min.io/hosts-hash"
"""Annotation recording a digest of the SAN host list of a CSR."""

DEFAULT_MINIO_IMAGE = "minio/minio:RELEASE.2020-11-19T23-48-16Z"
"""Storage server image used if the tenant does not specify one."""

DEFAULT_CONSOLE_IMAGE = "minio/console:v0.4.6"
"""Console image used if the console section does not specify one."""

DEFAULT_KES_IMAGE = "minio/kes:v0.13.1"
"""KES image used if the KES section does not specify one."""

DEFAULT_KES_KEY_NAME = "my-minio-key"
"""Name of the KMS key requested from KES if none is configured."""

DEFAULT_MOUNT_PATH = "/export"
"""Base path at which data volumes are mounted."""

CERTS_PATH = "/tmp/certs"  # noqa: S108
"""Path at which the projected TLS material is mounted."""

KES_CONFIG_PATH = "/tmp/kes"  # noqa: S108
"""Path at which the KES configuration and certificates are mounted."""

MINIO_PORT = 9000
"""Port on which the storage servers listen."""

CONSOLE_PORT = 9090
"""Port on which the management console listens over HTTP."""

CONSOLE_HTTPS_PORT = 9443
"""Port on which the management console listens over HTTPS."""

KES_PORT = 7373
"""Port on which KES listens."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""Timeout for Kubernetes API calls made outside of a reconcile attempt."""

VOLUME_NAME_PREFIX = "data"
"""Prefix of the per-server data volume claim names."""

MINIO_ARGS_KEY = "MINIO_ARGS"
"""Key in the arguments secret holding the server endpoint arguments."""

CREDENTIALS_ACCESS_KEY = "accesskey"
"""Key in the credentials secret holding the access key."""

CREDENTIALS_SECRET_KEY = "secretkey"
"""Key in the credentials secret holding the secret key."""

TLS_CERT_KEY = "public.crt"
"""Key holding the PEM certificate in operator-issued TLS secrets."""

TLS_PRIVATE_KEY_KEY = "private.key"
"""Key holding the PEM private key in operator-issued TLS secrets."""

PENDING_KEY_SECRET_KEY = "private.key"
"""Key holding the PEM private key while a certificate request is pending."""

MINIO_UPDATE_MINISIGN_PUBKEY = (
    "RWTx5Zr1tiHQLwG9keckT0c45M3AGeHD6IvimQHpyRywVWGbP1aVSGav"
)
"""Public key used by the storage server to verify in-place updates."""

RESERVED_ENV = {
    "MINIO_ACCESS_KEY",
    "MINIO_ARGS",
    "MINIO_KMS_KES_CA_PATH",
    "MINIO_KMS_KES_CERT_FILE",
    "MINIO_KMS_KES_ENDPOINT",
    "MINIO_KMS_KES_KEY_FILE",
    "MINIO_KMS_KES_KEY_NAME",
    "MINIO_SECRET_KEY",
    "MINIO_UPDATE",
    "MINIO_UPDATE_MINISIGN_PUBKEY",
}
"""Environment variables set by the operator that tenants may not override."""

VALIDATE_MOUNTS_INTERVAL = timedelta(seconds=2)
"""Polling interval of the init containers waiting for mounts and DNS."""

from typing import List

from localdb.models import K8sExecAction, K8sProbe

# Port of the database server inside the Pod and behind the Service.
DB_PORT = 5432

# Name of the container and service port.
DB_PORT_NAME = "database"

# Where the database server keeps its data inside the container.
DB_DATA_DIR = "/var/lib/pgsql/data"

# Size of the persistent volume of each database.
DB_STORAGE = "1Gi"

# Length of generated user names and passwords.
CREDENTIAL_LENGTH = 16


def probe_command() -> List[str]:
    """Return a command that succeeds iff the database accepts queries.

    The variables are expanded by K8s from the container environment and
    `psql` picks up the password from `PGPASSWORD`.

    """
    return [
        "psql",
        "-U",
        "$(POSTGRESQL_USER)",
        "-d",
        "$(POSTGRESQL_DATABASE)",
        "-c",
        "SELECT 1",
    ]


def liveness_probe() -> K8sProbe:
    return K8sProbe(
        exec=K8sExecAction(command=probe_command()),
        initialDelaySeconds=15,
        timeoutSeconds=2,
    )


def readiness_probe() -> K8sProbe:
    return K8sProbe(
        exec=K8sExecAction(command=probe_command()),
        initialDelaySeconds=45,
        timeoutSeconds=2,
    )

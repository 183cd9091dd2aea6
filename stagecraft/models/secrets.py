"""Opaque secret references for the migration environment.

The orchestrator only ever handles references.  Resolution happens inside
the migration runner, and resolved values are ``SecretStr`` so they
never render in logs, reprs, or artifacts.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, SecretStr

SECRET_SCHEME = "secret://"


class SecretRef(BaseModel):
    """Points at one key inside a secret held by the provisioning layer."""

    model_config = ConfigDict(frozen=True)

    secret_id: str
    key: str

    def __str__(self) -> str:
        return f"{SECRET_SCHEME}{self.secret_id}#{self.key}"

    @classmethod
    def parse(cls, raw: str) -> SecretRef:
        if not raw.startswith(SECRET_SCHEME) or "#" not in raw:
            raise ValueError(f"Not a secret reference: {raw[:len(SECRET_SCHEME)]}...")
        secret_id, key = raw[len(SECRET_SCHEME):].rsplit("#", 1)
        return cls(secret_id=secret_id, key=key)

    @staticmethod
    def is_ref(raw: str) -> bool:
        return raw.startswith(SECRET_SCHEME)


class DatabaseSecretRefs(BaseModel):
    """Connection parameters for a database, each as a secret reference."""

    model_config = ConfigDict(frozen=True)

    database_id: str
    host: SecretRef
    port: SecretRef
    username: SecretRef
    password: SecretRef
    dbname: SecretRef

    @classmethod
    def from_secret(cls, database_id: str, secret_id: str) -> DatabaseSecretRefs:
        """Reference the standard keys of a generated credentials secret."""
        return cls(
            database_id=database_id,
            host=SecretRef(secret_id=secret_id, key="host"),
            port=SecretRef(secret_id=secret_id, key="port"),
            username=SecretRef(secret_id=secret_id, key="username"),
            password=SecretRef(secret_id=secret_id, key="password"),
            dbname=SecretRef(secret_id=secret_id, key="dbname"),
        )

    def as_env(self) -> dict[str, str]:
        """Execution environment entries, in the PG* naming convention."""
        return {
            "PGHOST": str(self.host),
            "PGPORT": str(self.port),
            "PGUSER": str(self.username),
            "PGPASSWORD": str(self.password),
            "PGDATABASE": str(self.dbname),
        }


class ResolvedConnection(BaseModel):
    """Resolved connection parameters.  Only the migration runner sees these."""

    model_config = ConfigDict(frozen=True)

    host: SecretStr
    port: SecretStr
    username: SecretStr
    password: SecretStr
    dbname: SecretStr

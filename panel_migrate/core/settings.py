"""Migration settings configuration.

Provides centralized path, timeout and credential configuration using Pydantic
BaseSettings with environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigrationSettings(BaseSettings):
    """Paths, timeouts and credentials used by the migration pipelines."""

    panel_root: str = Field(
        "/opt/ace", alias="PANEL_ROOT", description="Panel install root; websites live in <root>/sites"
    )
    key_path: str = Field(
        "/tmp/ace_migration_key",
        alias="MIGRATION_KEY_PATH",
        description="Fixed path of the ephemeral migration key pair",
    )
    dump_dir: str = Field(
        "/tmp", alias="MIGRATION_DUMP_DIR", description="Directory for temporary database dumps"
    )
    remote_user: str = Field("root", alias="REMOTE_USER", description="SSH user on the remote host")
    systemd_unit_dir: str = Field(
        "/etc/systemd/system", alias="SYSTEMD_UNIT_DIR", description="Where project service units live"
    )

    remote_api_timeout: int = Field(
        30, alias="REMOTE_API_TIMEOUT", description="Remote panel API timeout in seconds"
    )
    remote_verify_tls: bool = Field(
        False,
        alias="REMOTE_VERIFY_TLS",
        description="Verify the remote panel certificate (panels usually run self-signed)",
    )

    keygen_timeout: int = Field(30, alias="KEYGEN_TIMEOUT", description="ssh-keygen timeout in seconds")
    rsync_timeout: int = Field(
        3600, alias="RSYNC_TIMEOUT", description="Single rsync transfer timeout in seconds"
    )
    dump_timeout: int = Field(1800, alias="DUMP_TIMEOUT", description="Database dump timeout in seconds")
    import_timeout: int = Field(
        1800, alias="IMPORT_TIMEOUT", description="Remote database import timeout in seconds"
    )

    progress_interval: float = Field(
        1.0, alias="PROGRESS_INTERVAL", description="Progress push cadence in seconds"
    )

    mysql_root_password: str = Field("", alias="MYSQL_ROOT_PASSWORD")
    postgres_password: str = Field("", alias="POSTGRES_PASSWORD")
    remote_mysql_password_file: str = Field(
        "/usr/local/etc/ace/mysql_root_password", alias="REMOTE_MYSQL_PASSWORD_FILE"
    )
    remote_postgres_password_file: str = Field(
        "/usr/local/etc/ace/postgresql_password", alias="REMOTE_POSTGRES_PASSWORD_FILE"
    )

    authorized_keys_path: str = Field(
        "/root/.ssh/authorized_keys",
        alias="AUTHORIZED_KEYS_PATH",
        description="Trust store updated when a peer deploys its migration key here",
    )
    signature_max_skew: int = Field(
        300, alias="SIGNATURE_MAX_SKEW", description="Accepted clock skew for signed requests"
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

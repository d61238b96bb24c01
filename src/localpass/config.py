# LocalPass configuration - reads from environment variables.
#
# A .env file in the working directory is loaded first (python-dotenv);
# variables already set in the environment win over the file.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .vault.encryption import DEFAULT_KDF_PARAMS, KdfParams

ENV_PREFIX = "LOCALPASS_"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the vault service."""

    data_dir: Path = Path("data")
    db_name: str = "vault.db"
    audit_dir: Optional[Path] = None
    kdf_memory_kib: int = DEFAULT_KDF_PARAMS.memory
    kdf_time: int = DEFAULT_KDF_PARAMS.time
    kdf_parallelism: int = DEFAULT_KDF_PARAMS.parallelism
    min_password_length: int = 8
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @property
    def audit_log_dir(self) -> Path:
        return self.audit_dir if self.audit_dir is not None else self.data_dir / "audit_logs"

    @property
    def kdf_params(self) -> KdfParams:
        return KdfParams(
            memory=self.kdf_memory_kib,
            time=self.kdf_time,
            parallelism=self.kdf_parallelism,
        ).validate()


def _int_var(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env: Mapping to read instead of os.environ (tests)
        dotenv: Load ./.env into os.environ first

    Raises:
        ValueError: A numeric variable does not parse or is out of range
    """
    if env is None:
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        env = os.environ

    data_dir = Path(env.get(ENV_PREFIX + "DATA_DIR") or "data")
    audit_dir = env.get(ENV_PREFIX + "AUDIT_DIR")

    settings = Settings(
        data_dir=data_dir,
        db_name=env.get(ENV_PREFIX + "DB_NAME") or "vault.db",
        audit_dir=Path(audit_dir) if audit_dir else None,
        kdf_memory_kib=_int_var(env, "KDF_MEMORY_KIB", DEFAULT_KDF_PARAMS.memory, 8),
        kdf_time=_int_var(env, "KDF_TIME", DEFAULT_KDF_PARAMS.time, 1),
        kdf_parallelism=_int_var(env, "KDF_PARALLELISM", DEFAULT_KDF_PARAMS.parallelism, 1),
        min_password_length=_int_var(env, "MIN_PASSWORD_LENGTH", 8, 1),
        host=env.get(ENV_PREFIX + "HOST") or "127.0.0.1",
        port=_int_var(env, "PORT", 8000, 1),
    )
    # Surface bad KDF combinations at startup rather than at first unlock
    settings.kdf_params
    return settings

"""Service configuration and wiring of the default collaborators."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .audit import AuditLogger
from .crypto import SoftwareCryptoProvider, SoftwareToken
from .service import LocalCertService, TaskExecutor
from .store import FileCertificateStore, MemoryCertificateStore, PasswordPrompt, TokenAuthenticator


logger = logging.getLogger(__name__)


STORE_DIR_ENV = "LOCALCERT_STORE_DIR"


class ServiceConfig(BaseModel):
    """Local certificate service configuration."""
    store_dir: Optional[Path] = Field(None, description="Token and certificate directory (in-memory if unset)")
    max_workers: int = Field(2, ge=1, description="Worker threads for certificate tasks")
    audit_log: Optional[Path] = Field(None, description="JSON-lines audit log path")
    login_attempts: int = Field(3, ge=1, description="Password attempts before unlock fails")


def load_config(path: Optional[str] = None) -> ServiceConfig:
    """
    Load configuration from a JSON file, then apply environment overrides.

    Args:
        path: JSON config file (defaults only if None)

    Returns:
        ServiceConfig
    """
    data = {}
    if path:
        with open(path, "r") as f:
            data = json.load(f)

    env_store_dir = os.environ.get(STORE_DIR_ENV)
    if env_store_dir:
        data["store_dir"] = env_store_dir

    return ServiceConfig(**data)


def build_service(config: ServiceConfig, prompt: Optional[PasswordPrompt] = None) -> LocalCertService:
    """Create a LocalCertService with the software token and a matching store."""
    if config.store_dir:
        token = SoftwareToken(config.store_dir / "token")
        store = FileCertificateStore(config.store_dir / "certs", token)
        logger.debug(f"Using certificate store at {config.store_dir}")
    else:
        token = SoftwareToken()
        store = MemoryCertificateStore(token)

    audit = AuditLogger(log_file=config.audit_log) if config.audit_log else None

    return LocalCertService(
        store=store,
        provider=SoftwareCryptoProvider(token),
        authenticator=TokenAuthenticator(prompt, max_attempts=config.login_attempts),
        executor=TaskExecutor(max_workers=config.max_workers),
        audit=audit,
    )

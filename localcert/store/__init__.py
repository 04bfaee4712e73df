"""Certificate stores and store authentication."""

from .base import CertificateStore
from .memory import MemoryCertificateStore
from .file import FileCertificateStore
from .authenticator import StoreAuthenticator, TokenAuthenticator, PasswordPrompt

__all__ = [
    "CertificateStore",
    "MemoryCertificateStore",
    "FileCertificateStore",
    "StoreAuthenticator",
    "TokenAuthenticator",
    "PasswordPrompt",
]

"""Fixtures for local certificate service tests."""

import pytest

from localcert.crypto import SoftwareCryptoProvider, SoftwareToken
from localcert.service import CertificateGenerator, LocalCertService
from localcert.store import MemoryCertificateStore, TokenAuthenticator

from .helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token():
    """Token with an empty credential."""
    token = SoftwareToken()
    token.init_pin("")
    return token


@pytest.fixture
def store(token):
    return MemoryCertificateStore(token)


@pytest.fixture
def provider(token):
    return SoftwareCryptoProvider(token)


@pytest.fixture
def generator(store, provider, clock):
    return CertificateGenerator(store, provider, clock=clock)


@pytest.fixture
def service(store, provider, clock):
    service = LocalCertService(store, provider, TokenAuthenticator(), clock=clock)
    yield service
    service.close()

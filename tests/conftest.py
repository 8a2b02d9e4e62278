"""Shared fixtures: a generated certificate store and a local timestamp authority"""

import io
import threading

import pytest
from werkzeug.serving import make_server

from gitsmimesign.certstore import CertificateStore
from gitsmimesign.status import StatusEmitter

from cert_utils import generate, generate_tsa
from tsa_app import app

SIGNER_EMAIL = "tester@example.com"


@pytest.fixture
def certs(tmp_path):
    """Certificate store with a CA and an RSA signer, plus the generated objects"""
    path = tmp_path / "store"
    material = generate(path, email=SIGNER_EMAIL)
    material["path"] = path
    return material


@pytest.fixture
def store(certs):
    with CertificateStore(certs["path"]) as opened:
        yield opened


@pytest.fixture
def signer(store):
    return store.find_signer(SIGNER_EMAIL)


@pytest.fixture
def channels():
    """(emitter, status buffer, info buffer)"""
    status = io.StringIO()
    info = io.StringIO()
    return StatusEmitter(status, info), status, info


@pytest.fixture(scope="session")
def tsa_material():
    return generate_tsa()


@pytest.fixture(scope="session")
def tsa_server(tsa_material):
    """Start the test TSA on a free port and return its base URL"""
    tsa_key, tsa_cert = tsa_material
    app.config["TSA_KEY"] = tsa_key
    app.config["TSA_CERT"] = tsa_cert

    server = make_server("127.0.0.1", 0, app)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://127.0.0.1:{server.server_port}"

    server.shutdown()
    thread.join(timeout=5)

"""Software key token: credential state and persistent private keys."""

import base64
import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Dict, Optional

import nacl.exceptions
import nacl.pwhash
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..errors import AuthenticationError, ProviderUnavailableError


logger = logging.getLogger(__name__)


def key_id_for(public_key: ec.EllipticCurvePublicKey) -> str:
    """Identify a key by the SHA-256 of its SubjectPublicKeyInfo."""
    spki = public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return hashlib.sha256(spki).hexdigest()


class SoftwareToken:
    """
    Software stand-in for a hardware key token.

    Holds the token credential (never set, empty, or a password hashed
    with Argon2 via PyNaCl) and the private keys generated on it. Keys
    never leave the token; callers only see key ids.

    When ``directory`` is given the credential lives in ``token.json``
    and keys in ``keys/<key_id>.pem``, encrypted with the token password
    when one is set.
    """

    def __init__(self, directory: Optional[Path] = None):
        """
        Initialize token.

        Args:
            directory: Persistence directory (in-memory token if None)
        """
        self.directory = Path(directory) if directory else None

        self._lock = threading.RLock()
        self._initialized = False
        self._password_hash: Optional[bytes] = None
        self._password: Optional[str] = None
        self._logged_in = False
        self._keys: Dict[str, ec.EllipticCurvePrivateKey] = {}
        self._keys_loaded = self.directory is None
        self._closed = False

        if self.directory:
            self._load_state()

    # Credential state

    def needs_user_init(self) -> bool:
        """True until a credential (possibly empty) has been set."""
        with self._lock:
            return not self._initialized

    def init_pin(self, password: str = ""):
        """
        Set the initial credential.

        An empty password leaves the token permanently unlocked.
        """
        with self._lock:
            if self._initialized:
                raise AuthenticationError("Token credential already initialized")
            self._password_hash = nacl.pwhash.str(password.encode("utf-8")) if password else None
            self._password = password
            self._initialized = True
            self._logged_in = True
            self._save_state()
        logger.info(f"Token credential initialized ({'password' if password else 'empty'})")

    def needs_login(self) -> bool:
        """True when a non-empty password protects the token."""
        with self._lock:
            return self._initialized and self._password_hash is not None

    def is_logged_in(self) -> bool:
        with self._lock:
            return self._logged_in

    def login(self, password: str):
        """
        Unlock the token.

        Raises:
            AuthenticationError: Wrong password or uninitialized token
        """
        with self._lock:
            if not self._initialized:
                raise AuthenticationError("Token credential not initialized")
            if self._password_hash is None:
                self._logged_in = True
                return
            try:
                nacl.pwhash.verify(self._password_hash, password.encode("utf-8"))
            except nacl.exceptions.InvalidkeyError:
                logger.warning("Token login failed: incorrect password")
                raise AuthenticationError("Incorrect token password")
            self._password = password
            self._logged_in = True
        logger.info("Token unlocked")

    def logout(self):
        """Lock the token and forget cached key material."""
        with self._lock:
            if not self.needs_login():
                return
            self._logged_in = False
            self._password = None
            if self.directory:
                self._keys.clear()
                self._keys_loaded = False

    def change_password(self, old_password: str, new_password: str):
        """Replace the token password, re-encrypting stored keys."""
        with self._lock:
            if not self._initialized:
                raise AuthenticationError("Token credential not initialized")
            if self._password_hash is not None:
                try:
                    nacl.pwhash.verify(self._password_hash, old_password.encode("utf-8"))
                except nacl.exceptions.InvalidkeyError:
                    raise AuthenticationError("Incorrect token password")
            self._password = old_password
            self._logged_in = True
            self._ensure_keys_loaded()

            self._password_hash = nacl.pwhash.str(new_password.encode("utf-8")) if new_password else None
            self._password = new_password
            self._save_state()
            for key_id, key in self._keys.items():
                self._write_key(key_id, key)
        logger.info("Token password changed")

    # Key registry

    def store_private_key(self, key: ec.EllipticCurvePrivateKey) -> str:
        """Keep a private key on the token, returning its key id."""
        key_id = key_id_for(key.public_key())
        with self._lock:
            self._require_access()
            self._keys[key_id] = key
            self._write_key(key_id, key)
        return key_id

    def private_key(self, key_id: str) -> ec.EllipticCurvePrivateKey:
        with self._lock:
            self._require_access()
            try:
                return self._keys[key_id]
            except KeyError:
                raise ProviderUnavailableError(f"Key {key_id[:16]} not present on token")

    def delete_key(self, key_id: str) -> bool:
        """Remove a key; returns False if it was not present."""
        with self._lock:
            self._require_access()
            if self._keys.pop(key_id, None) is None:
                return False
            if self.directory:
                self._key_path(key_id).unlink(missing_ok=True)
        logger.debug(f"Deleted key {key_id[:16]} from token")
        return True

    def key_ids(self):
        with self._lock:
            self._require_access()
            return sorted(self._keys)

    # Lifecycle

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        with self._lock:
            self._closed = True
            self._keys.clear()
            self._keys_loaded = self.directory is None

    def _require_access(self):
        if self._closed:
            raise ProviderUnavailableError("Token is closed")
        if not self._initialized:
            raise AuthenticationError("Token credential not initialized")
        if self._password_hash is not None and not self._logged_in:
            raise AuthenticationError("Token is locked")
        self._ensure_keys_loaded()

    # Persistence

    def _state_path(self) -> Path:
        return self.directory / "token.json"

    def _key_path(self, key_id: str) -> Path:
        return self.directory / "keys" / f"{key_id}.pem"

    def _load_state(self):
        path = self._state_path()
        if not path.exists():
            return
        with open(path, "r") as f:
            state = json.load(f)
        self._initialized = bool(state.get("initialized"))
        password_hash = state.get("password_hash")
        self._password_hash = base64.b64decode(password_hash) if password_hash else None
        # An empty credential never needs a login
        self._logged_in = self._initialized and self._password_hash is None

    def _save_state(self):
        if not self.directory:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        state = {
            "initialized": self._initialized,
            "password_hash": (
                base64.b64encode(self._password_hash).decode("ascii")
                if self._password_hash else None
            ),
        }
        with open(self._state_path(), "w") as f:
            json.dump(state, f, indent=2)

    def _ensure_keys_loaded(self):
        if self._keys_loaded:
            return
        key_dir = self.directory / "keys"
        password = self._password.encode("utf-8") if self._password else None
        if key_dir.is_dir():
            for path in sorted(key_dir.glob("*.pem")):
                try:
                    key = serialization.load_pem_private_key(path.read_bytes(), password=password)
                except (ValueError, TypeError, OSError) as e:
                    raise ProviderUnavailableError(f"Cannot load key {path.stem[:16]}: {e}") from e
                self._keys[path.stem] = key
        self._keys_loaded = True
        logger.debug(f"Loaded {len(self._keys)} keys from {key_dir}")

    def _write_key(self, key_id: str, key: ec.EllipticCurvePrivateKey):
        if not self.directory:
            return
        if self._password:
            encryption = serialization.BestAvailableEncryption(self._password.encode("utf-8"))
        else:
            encryption = serialization.NoEncryption()
        path = self._key_path(key_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                encryption
            ))
        # Restrict private key permissions
        path.chmod(0o600)


class KeySlot:
    """
    Scoped handle on a token.

    Released on exit from its ``with`` block; a released slot refuses
    further use.
    """

    def __init__(self, token: SoftwareToken, name: str = "internal"):
        self._token: Optional[SoftwareToken] = token
        self.name = name

    @property
    def token(self) -> SoftwareToken:
        if self._token is None:
            raise ProviderUnavailableError(f"Key slot '{self.name}' already released")
        return self._token

    @property
    def released(self) -> bool:
        return self._token is None

    def release(self):
        self._token = None

    def __enter__(self) -> "KeySlot":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

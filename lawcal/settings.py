"""Local settings for the calendar: a JSON file plus an encrypted vault.

``settings.json`` holds plain values (database location, recently used
suggestions). Anything sensitive, such as the admin password, lives in
``secrets.enc``, a Fernet token keyed from ``LAWCAL_SECRET_KEY`` or, when
that is unset, from a generated ``master.key`` next to the settings.
"""

from __future__ import annotations

import base64
import json
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

APP_DIR_NAME = "law-calendar"
KDF_ITERATIONS = 390_000


def config_home() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    root = Path(xdg) if xdg else Path.home() / ".config"
    return root / APP_DIR_NAME


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


@dataclass
class SettingsPaths:
    config_dir: Path

    @property
    def settings_file(self) -> Path:
        return self.config_dir / "settings.json"

    @property
    def secrets_file(self) -> Path:
        return self.config_dir / "secrets.enc"

    @property
    def master_key_file(self) -> Path:
        return self.config_dir / "master.key"


class SecretVault:
    """Fernet-encrypted JSON object on disk."""

    def __init__(self, path: Path, salt: bytes, iterations: int, passphrase: Optional[str]) -> None:
        self.path = path
        self.salt = salt
        self.iterations = iterations
        self.passphrase = passphrase

    def _fernet(self, passphrase: Optional[str]) -> Fernet:
        phrase = passphrase or self.passphrase
        if not phrase:
            raise RuntimeError("No passphrase for the secrets file; set LAWCAL_SECRET_KEY.")
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=self.salt, iterations=self.iterations)
        return Fernet(base64.urlsafe_b64encode(kdf.derive(phrase.encode("utf-8"))))

    def read(self, passphrase: Optional[str] = None) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            plain = self._fernet(passphrase).decrypt(self.path.read_bytes())
        except InvalidToken as exc:
            raise RuntimeError("Cannot decrypt secrets.enc with this passphrase.") from exc
        try:
            return json.loads(plain)
        except json.JSONDecodeError as exc:
            raise RuntimeError("secrets.enc does not contain valid JSON.") from exc

    def write(self, payload: Dict[str, Any], passphrase: Optional[str] = None) -> None:
        token = self._fernet(passphrase).encrypt(json.dumps(payload).encode("utf-8"))
        _write_atomic(self.path, token)


class SettingsManager:
    """Plain settings, small JSON lists and vault-backed secrets."""

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.paths = SettingsPaths(Path(config_dir) if config_dir else config_home())
        self.paths.config_dir.mkdir(parents=True, exist_ok=True)
        self._values: Dict[str, Any] = self._read_values()

        if "secret_salt" not in self._values:
            self._values["secret_salt"] = base64.urlsafe_b64encode(os.urandom(16)).decode("ascii")
            self._values.setdefault("secret_iterations", KDF_ITERATIONS)
            self._flush()

        self.vault = SecretVault(
            self.paths.secrets_file,
            salt=base64.urlsafe_b64decode(self._values["secret_salt"]),
            iterations=int(self._values.get("secret_iterations", KDF_ITERATIONS)),
            passphrase=os.environ.get("LAWCAL_SECRET_KEY") or self._master_key(),
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if key in self._values:
            del self._values[key]
            self._flush()

    def get_list(self, key: str) -> List[str]:
        """Decode a list saved with ``set_list``; anything unreadable is empty."""
        raw = self._values.get(key)
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                return []
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, str)]

    def set_list(self, key: str, values: List[str]) -> None:
        self.set(key, json.dumps(list(values), ensure_ascii=False))

    def get_secret(self, key: str, default: Any = None, passphrase: Optional[str] = None) -> Any:
        return self.vault.read(passphrase).get(key, default)

    def set_secret(self, key: str, value: Any, passphrase: Optional[str] = None) -> None:
        payload = self.vault.read(passphrase)
        payload[key] = value
        self.vault.write(payload, passphrase)

    def delete_secret(self, key: str, passphrase: Optional[str] = None) -> None:
        payload = self.vault.read(passphrase)
        if key in payload:
            del payload[key]
            self.vault.write(payload, passphrase)

    def _read_values(self) -> Dict[str, Any]:
        try:
            text = self.paths.settings_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            raise RuntimeError(f"{self.paths.settings_file} is not valid JSON; fix or remove it.") from None

    def _flush(self) -> None:
        data = json.dumps(self._values, indent=2, sort_keys=True, ensure_ascii=False)
        _write_atomic(self.paths.settings_file, data.encode("utf-8"))

    def _master_key(self) -> str:
        key_file = self.paths.master_key_file
        if key_file.exists():
            key = key_file.read_text(encoding="utf-8").strip()
            if key:
                return key
        key = secrets.token_urlsafe(32)
        key_file.write_text(key, encoding="utf-8")
        try:
            key_file.chmod(0o600)
        except OSError:
            pass
        return key


settings_manager = SettingsManager()

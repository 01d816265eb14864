"""
필드 보호 (호스트 키 기반 컬럼 암호화)

보호 컬럼은 호스트 로컬 마스터 키로 암호화되어 저장됩니다.
백업에는 평문으로 기록되고, 복원 시 대상 호스트의 키로 다시 암호화됩니다.
"""

import base64
import logging
import os
import secrets
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.core.error_handling import CryptoError, ErrorCodes

logger = logging.getLogger(__name__)

MASTER_KEY_FILE = "master.key"
MASTER_KEY_SIZE = 32


class DataProtectionService(ABC):
    """호스트 범위 데이터 보호 서비스 계약"""

    @abstractmethod
    def protect(self, purpose: str, plaintext: str) -> str:
        pass

    @abstractmethod
    def unprotect(self, purpose: str, ciphertext: str) -> str:
        pass


class KeyFileDataProtectionService(DataProtectionService):
    """키 파일 기반 데이터 보호 서비스

    용도(purpose)마다 마스터 키에서 HKDF 로 별도 Fernet 키를 파생합니다.
    """

    def __init__(self, key_dir: str, application_name: str = "tga-backup-batch"):
        self.key_dir = Path(key_dir)
        self.application_name = application_name
        self._master_key: Optional[bytes] = None
        self._fernets: Dict[str, Fernet] = {}
        self._lock = threading.Lock()

    def _load_master_key(self) -> bytes:
        if self._master_key is not None:
            return self._master_key

        key_path = self.key_dir / MASTER_KEY_FILE
        if key_path.exists():
            self._master_key = key_path.read_bytes()
        else:
            self.key_dir.mkdir(parents=True, exist_ok=True)
            key = secrets.token_bytes(MASTER_KEY_SIZE)
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(key)
            self._master_key = key
            logger.info(f"새 데이터 보호 마스터 키 생성: {key_path}")

        if len(self._master_key) != MASTER_KEY_SIZE:
            raise CryptoError(f"마스터 키 길이가 올바르지 않습니다: {key_path}")
        return self._master_key

    def _fernet_for(self, purpose: str) -> Fernet:
        with self._lock:
            fernet = self._fernets.get(purpose)
            if fernet is None:
                hkdf = HKDF(
                    algorithm=hashes.SHA256(),
                    length=32,
                    salt=None,
                    info=f"{self.application_name}:{purpose}".encode("utf-8"),
                )
                derived = hkdf.derive(self._load_master_key())
                fernet = Fernet(base64.urlsafe_b64encode(derived))
                self._fernets[purpose] = fernet
            return fernet

    def protect(self, purpose: str, plaintext: str) -> str:
        token = self._fernet_for(purpose).encrypt(plaintext.encode("utf-8"))
        return token.decode("ascii")

    def unprotect(self, purpose: str, ciphertext: str) -> str:
        try:
            data = self._fernet_for(purpose).decrypt(ciphertext.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError, ValueError) as e:
            raise CryptoError(
                f"보호 필드 복호화 실패 (purpose: {purpose})",
                error_code=ErrorCodes.CRYPTO_PROTECT_FAILED,
                cause=e,
            ) from e
        return data.decode("utf-8")


class FieldProtectionBridge:
    """내보내기/가져오기 시 보호 필드 변환"""

    def __init__(self, protection: DataProtectionService):
        self.protection = protection

    def decrypt_for_export(self, value: Optional[str], purpose: str) -> Optional[str]:
        """보호 값을 평문으로 변환. 실패하면 경고 후 원래 값을 그대로 반환"""
        if not value:
            return value
        try:
            return self.protection.unprotect(purpose, value)
        except Exception as e:
            logger.warning(f"보호 필드 복호화 실패, 원본 값 유지 (purpose: {purpose}): {e}")
            return value

    def encrypt_for_import(self, value: Optional[str], purpose: str) -> Optional[str]:
        """평문 값을 대상 호스트 키로 다시 보호. 실패는 호출자에게 전파"""
        if not value:
            return value
        return self.protection.protect(purpose, value)

    def verify_protected(self, value: str, purpose: str) -> None:
        """현재 호스트 키로 복호화 가능한지 확인 (실패 시 CryptoError)"""
        self.protection.unprotect(purpose, value)

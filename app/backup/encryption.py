"""
백업 아카이브 암호화

패스프레이즈 기반 AES-256-GCM 인증 암호화.

포맷: magic(7) | salt(32) | nonce(12) | ciphertext(N) | tag(16)
"""

import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.core.error_handling import CryptoError, ErrorCodes
from config.constants import ENCRYPTED_MAGIC, PBKDF2_ITERATIONS

logger = logging.getLogger(__name__)

SALT_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
HEADER_SIZE = len(ENCRYPTED_MAGIC) + SALT_SIZE + NONCE_SIZE


class BackupEncryptionService:
    """백업 아카이브 암호화 서비스"""

    def __init__(self, iterations: int = PBKDF2_ITERATIONS):
        self.iterations = iterations

    def _derive_key(self, passphrase: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))

    def encrypt(self, plaintext: bytes, passphrase: str) -> bytes:
        """평문 아카이브 암호화 (호출마다 새 salt / nonce)"""
        if not passphrase:
            raise ValueError("패스프레이즈가 비어 있습니다")

        salt = secrets.token_bytes(SALT_SIZE)
        nonce = secrets.token_bytes(NONCE_SIZE)
        key = self._derive_key(passphrase, salt)

        # AESGCM.encrypt 결과는 ciphertext || tag
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        logger.debug(f"아카이브 암호화 완료: {len(plaintext)} -> {len(sealed) + HEADER_SIZE} bytes")
        return ENCRYPTED_MAGIC + salt + nonce + sealed

    def decrypt(self, blob: bytes, passphrase: str) -> bytes:
        """
        암호화 아카이브 복호화

        Raises:
            CryptoError: 매직 헤더 없음, 길이 부족, 잘못된 패스프레이즈, 변조
        """
        if not self.is_encrypted(blob):
            raise CryptoError(
                "암호화된 아카이브가 아닙니다 (매직 헤더 없음)",
                error_code=ErrorCodes.CRYPTO_NOT_ENCRYPTED,
            )
        if len(blob) < HEADER_SIZE + TAG_SIZE:
            raise CryptoError("암호화 아카이브 길이가 너무 짧습니다")

        offset = len(ENCRYPTED_MAGIC)
        salt = blob[offset : offset + SALT_SIZE]
        offset += SALT_SIZE
        nonce = blob[offset : offset + NONCE_SIZE]
        offset += NONCE_SIZE
        sealed = blob[offset:]

        key = self._derive_key(passphrase or "", salt)
        try:
            return AESGCM(key).decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise CryptoError(
                "복호화 실패: 잘못된 패스프레이즈이거나 손상된 아카이브입니다", cause=e
            ) from e

    @staticmethod
    def is_encrypted(blob: bytes) -> bool:
        """매직 헤더 존재 여부만 확인"""
        return bytes(blob[: len(ENCRYPTED_MAGIC)]) == ENCRYPTED_MAGIC

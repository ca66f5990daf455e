import hashlib
import hmac
import secrets

CODE_MIN = 100000
CODE_MAX = 999999


def generate_code() -> str:
    """Random 6-digit code in [100000, 999999]."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def hash_code(code: str) -> str:
    """SHA-256 hex digest of the plaintext code. Only this is stored."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def codes_match(submitted_hash: str, stored_hash: str) -> bool:
    return hmac.compare_digest(submitted_hash.encode("utf-8"), stored_hash.encode("utf-8"))

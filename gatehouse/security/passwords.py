from functools import lru_cache

from pwdlib import PasswordHash


password_hash = PasswordHash.recommended()


@lru_cache(maxsize=1)
def _placeholder_hash() -> str:
    return password_hash.hash('gatehouse-unknown-account')


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str | None) -> bool:
    # Unknown accounts still pay for one verification so login timing does not reveal them.
    if not hashed_password:
        password_hash.verify(raw_password, _placeholder_hash())
        return False
    return password_hash.verify(raw_password, hashed_password)

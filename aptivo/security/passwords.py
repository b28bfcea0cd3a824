"""
aptivo/security/passwords.py
bcrypt hashing via passlib, kept off the event loop.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor

from passlib.context import CryptContext

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__truncate_error=False,
    bcrypt__rounds=10,
)

# Thread pool for running blocking operations
_executor = None


def get_executor():
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=4)
    return _executor


def normalize_password(password: str) -> str:
    """
    bcrypt only supports 72 bytes.
    Truncate AFTER UTF-8 encoding so multi-byte characters are not split.
    """
    encoded = password.encode("utf-8")
    if len(encoded) > 72:
        encoded = encoded[:72]
    return encoded.decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
    return pwd_context.hash(normalize_password(password))


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(normalize_password(plain), hashed)


async def hash_password_async(password: str) -> str:
    """Async-friendly password hashing that doesn't block the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_executor(), hash_password, password)


async def verify_password_async(plain: str, hashed: str) -> bool:
    """Async-friendly password verification that doesn't block the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_executor(), verify_password, plain, hashed)

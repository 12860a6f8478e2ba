"""Argon2id password hashing for organization credentials.

Every credential write and check goes through ``PASSWORD_HASHER`` so stored
hashes share one parameter set; hashes made with older parameters are
upgraded on the next successful check.
"""

from argon2 import PasswordHasher
from argon2 import exceptions as argon_exc

# Memory 64 MB, 3 iterations, 4 lanes
PASSWORD_HASHER = PasswordHasher(
	time_cost=3,
	memory_cost=65536,
	parallelism=4,
	hash_len=32,
	salt_len=16,
)


def hash_password(password: str) -> str:
	return PASSWORD_HASHER.hash(password)


def verify_password(hash: str, password: str) -> bool:
	"""Return True when ``password`` matches ``hash``.

	A malformed stored hash counts as a mismatch.
	"""
	if not hash:
		return False
	try:
		return PASSWORD_HASHER.verify(hash, password)
	except (argon_exc.VerificationError, argon_exc.InvalidHashError):
		return False


def check_needs_rehash(hash: str) -> bool:
	return PASSWORD_HASHER.check_needs_rehash(hash)

"""
Exercise file loading.

Exercises are JSON documents with ordered visible (``test_cases``) and hidden
(``hidden_test_cases``) lists. Since hidden test cases must not be readable by
students, exercise files may be distributed as Fernet-encrypted ``.enc`` files,
keyed either by a key file or by a password (PBKDF2, salt stored in the file).
"""

import base64
import json
import os
from pathlib import Path
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import ExerciseLoadError, ValidationError
from .models import Exercise


SALT_PREFIX = b'SALT'
SALT_SIZE = 16
PBKDF2_ITERATIONS = 480000  # OWASP recommendation for 2024


def derive_key_from_password(password: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    key_material = kdf.derive(password.encode('utf-8'))
    return base64.urlsafe_b64encode(key_material)


def encrypt_exercise(plaintext: bytes, key: Optional[bytes] = None, password: Optional[str] = None) -> bytes:
    """
    Encrypt exercise JSON.

    Password-based output is ``SALT`` + 16-byte salt + Fernet token; key-based
    output is the bare Fernet token.
    """
    if password is not None:
        salt = os.urandom(SALT_SIZE)
        token = Fernet(derive_key_from_password(password, salt)).encrypt(plaintext)
        return SALT_PREFIX + salt + token

    if key is None:
        raise ValueError("Either a key or a password is required")
    return Fernet(key).encrypt(plaintext)


def decrypt_exercise(data: bytes, key: Optional[Union[str, bytes]] = None, password: Optional[str] = None) -> bytes:
    """
    Decrypt an encrypted exercise file's content.

    Raises:
        ExerciseLoadError: If the required secret is missing or wrong
    """
    if data.startswith(SALT_PREFIX):
        if password is None:
            raise ExerciseLoadError("This exercise was encrypted with a password")
        salt = data[len(SALT_PREFIX):len(SALT_PREFIX) + SALT_SIZE]
        token = data[len(SALT_PREFIX) + SALT_SIZE:]
        fernet_key = derive_key_from_password(password, salt)
    else:
        if key is None:
            raise ExerciseLoadError("This exercise was encrypted with a key file")
        token = data
        fernet_key = key.strip() if isinstance(key, bytes) else key.strip().encode('utf-8')

    try:
        return Fernet(fernet_key).decrypt(token)
    except InvalidToken:
        raise ExerciseLoadError("Decryption failed: invalid key/password or corrupted file")
    except ValueError as e:
        # Malformed key material
        raise ExerciseLoadError(f"Invalid encryption key: {e}")


def parse_exercise(plaintext: Union[str, bytes]) -> Exercise:
    """
    Parse and validate exercise JSON.

    Raises:
        ExerciseLoadError: If the JSON or the exercise structure is invalid
    """
    try:
        data = json.loads(plaintext)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ExerciseLoadError(f"Invalid JSON in exercise file: {e}")

    if not isinstance(data, dict):
        raise ExerciseLoadError("Exercise file must contain a JSON object")

    try:
        exercise = Exercise.from_dict(data)
    except ValidationError as e:
        raise ExerciseLoadError(f"Invalid exercise: {e}")

    is_valid, error_message = exercise.validate()
    if not is_valid:
        raise ExerciseLoadError(error_message)
    return exercise


def load_exercise(
    exercise_path: Path,
    key: Optional[Union[str, bytes]] = None,
    password: Optional[str] = None
) -> Exercise:
    """
    Load an exercise from a plain ``.json`` or an encrypted file.

    Args:
        exercise_path: Path to the exercise file
        key: Fernet key (key-file encrypted exercises)
        password: Password (password encrypted exercises)

    Returns:
        Exercise with normalized test cases

    Raises:
        ExerciseLoadError: If the file cannot be read, decrypted or parsed
    """
    exercise_path = Path(exercise_path)
    try:
        with open(exercise_path, 'rb') as f:
            data = f.read()
    except OSError as e:
        raise ExerciseLoadError(f"Cannot read exercise file '{exercise_path}': {e}")

    if exercise_path.suffix.lower() == '.json':
        return parse_exercise(data)

    return parse_exercise(decrypt_exercise(data, key=key, password=password))

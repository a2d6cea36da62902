#!/usr/bin/env python3
"""
build_exercise.py - Encrypt plaintext JSON exercise files.

Usage with a new key file:
    python tools/build_exercise.py --in sum.json --out exercises/sum.enc --new-key SUM.key

Usage with an existing key file:
    python tools/build_exercise.py --in sum.json --out exercises/sum.enc --key-file SUM.key

Usage with password:
    python tools/build_exercise.py --in sum.json --out exercises/sum.enc --password
"""

import argparse
import getpass
import hashlib
import sys
from pathlib import Path

from cryptography.fernet import Fernet

sys.path.insert(0, str(Path(__file__).parent.parent))
from labgrader.errors import ExerciseLoadError
from labgrader.exercise_loader import encrypt_exercise, parse_exercise


def _read_password() -> str:
    password = getpass.getpass("Enter encryption password: ")
    if password != getpass.getpass("Confirm password: "):
        print("[ERROR] Passwords do not match", file=sys.stderr)
        sys.exit(1)
    if len(password) < 8:
        print("[ERROR] Password must be at least 8 characters", file=sys.stderr)
        sys.exit(1)
    return password


def build_exercise(
    in_file: str,
    out_file: str,
    key_file: str = None,
    use_password: bool = False,
    new_key_file: str = None
) -> None:
    """Validate a plaintext JSON exercise and write it encrypted."""
    try:
        with open(in_file, 'rb') as f:
            plaintext = f.read()

        # Nothing is written unless the exercise parses
        try:
            exercise = parse_exercise(plaintext)
        except ExerciseLoadError as e:
            print(f"[ERROR] Invalid exercise file: {e}", file=sys.stderr)
            sys.exit(1)

        password = None
        key = None
        if use_password:
            password = _read_password()
            method = "Password-based"
        elif new_key_file:
            if Path(new_key_file).exists():
                print(f"[ERROR] Refusing to overwrite existing key file: {new_key_file}", file=sys.stderr)
                sys.exit(1)
            key = Fernet.generate_key()
            with open(new_key_file, 'wb') as f:
                f.write(key)
            method = f"New key file ({new_key_file})"
        elif key_file:
            with open(key_file, 'rb') as f:
                key = f.read().strip()
            method = f"Key file ({key_file})"
        else:
            print("[ERROR] Must specify --key-file, --new-key or --password", file=sys.stderr)
            sys.exit(1)

        final_data = encrypt_exercise(plaintext, key=key, password=password)

        Path(out_file).parent.mkdir(parents=True, exist_ok=True)
        with open(out_file, 'wb') as f:
            f.write(final_data)

        print(f"[OK] Exercise encrypted: {exercise.id or 'unknown'} ({exercise.title or 'untitled'})")
        print(f"  Tests: {len(exercise.visible_tests)} visible, {len(exercise.hidden_tests)} hidden")
        print(f"  Output: {out_file} ({len(final_data)} bytes)")
        print(f"  Method: {method}")
        print(f"  SHA256: {hashlib.sha256(final_data).hexdigest()}")
        if new_key_file:
            print(f"\n[!] Keep {new_key_file} on the grading server. Never hand it to students.")

    except FileNotFoundError as e:
        print(f"[ERROR] File not found: {e}", file=sys.stderr)
        sys.exit(1)
    except (OSError, ValueError) as e:
        print(f"[ERROR] Error encrypting exercise: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="Encrypt a plaintext JSON exercise file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tools/build_exercise.py --in sum.json --out exercises/sum.enc --new-key SUM.key
  python tools/build_exercise.py --in lab3.json --out exercises/lab3.enc --password

Notes:
  - Input file must be a valid exercise (test_cases / hidden_test_cases)
  - Output directory will be created if it doesn't exist
  - Hidden test cases are only as secret as the key or password
        """
    )
    parser.add_argument("--in", dest="in_file", required=True, help="Input plaintext JSON exercise")
    parser.add_argument("--out", required=True, help="Output encrypted exercise file (.enc)")

    secret = parser.add_mutually_exclusive_group(required=True)
    secret.add_argument("--key-file", help="Existing file containing the encryption key")
    secret.add_argument("--new-key", dest="new_key_file", help="Generate a new key and save it to this file")
    secret.add_argument("--password", action="store_true", help="Use password-based encryption")

    args = parser.parse_args()
    build_exercise(args.in_file, args.out, args.key_file, args.password, args.new_key_file)


if __name__ == "__main__":
    main()

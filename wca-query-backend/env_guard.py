#!/usr/bin/env python3
"""
WCA Query Backend - Environment Guard (Fail-Fast Startup Validation)

Run before the server starts so a broken install or a missing secret fails
at boot instead of on the first request.

GUARANTEES:
1. All runtime dependencies are importable
2. Required environment variables are set (after loading .env)
3. Settings parse without errors

USAGE:
    from env_guard import validate_environment
    validate_environment()  # Raises EnvironmentError if invalid
"""

import os
from typing import List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from settings import SettingsError, load_settings

# ============================================================================
# CONFIGURATION
# ============================================================================
REQUIRED_PACKAGES = [
    # (module_name, package_name)
    ("fastapi", "fastapi"),
    ("uvicorn", "uvicorn"),
    ("sqlalchemy", "sqlalchemy"),
    ("pymysql", "pymysql"),
    ("pydantic", "pydantic"),
    ("jwt", "pyjwt"),
    ("dotenv", "python-dotenv"),
]

REQUIRED_ENV_VARS = [
    "JWT_SECRET",
]


# ============================================================================
# VALIDATION FUNCTIONS
# ============================================================================

def validate_packages() -> Tuple[List[str], List[str]]:
    """
    Validate all required packages are importable.

    Returns:
        (errors, package_info)
    """
    errors = []
    info = []

    for module_name, package_name in REQUIRED_PACKAGES:
        try:
            module = __import__(module_name, fromlist=[''])
            version = getattr(module, "__version__", None)
            info.append(f"  {package_name}: {version or 'imported'}")
        except ImportError as e:
            errors.append(
                f"MISSING PACKAGE: {package_name}\n"
                f"  Import error: {e}\n"
                f"  Solution: pip install {package_name}"
            )

    return errors, info


def validate_env_vars(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """
    Validate required environment variables are set.

    Returns:
        List of errors (empty if valid)
    """
    if env is None:
        load_dotenv()
        env = os.environ

    errors = []

    for var_name in REQUIRED_ENV_VARS:
        if not env.get(var_name):
            errors.append(
                f"MISSING ENVIRONMENT VARIABLE: {var_name}\n"
                f"  Solution: Add {var_name}=your_value to .env file"
            )

    return errors


def validate_settings(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Parse settings the way the server will; report the first problem."""
    try:
        load_settings(dict(env) if env is not None else None)
    except SettingsError as e:
        return [f"INVALID CONFIGURATION: {e}"]
    return []


def _mask(value: str) -> str:
    return value[:4] + "..." + value[-4:] if len(value) > 12 else "***"


def validate_environment(strict: bool = True, env: Optional[Mapping[str, str]] = None) -> bool:
    """
    Run all environment validations.

    Args:
        strict: If True, raise EnvironmentError on any failure.
                If False, print warnings and return success status.
        env: Mapping to validate instead of os.environ

    Returns:
        True if environment is valid, False otherwise.

    Raises:
        EnvironmentError: If strict=True and validation fails.
    """
    print("=" * 70)
    print("WCA QUERY BACKEND ENVIRONMENT GUARD - Startup Validation")
    print("=" * 70)

    all_errors = []

    print("\n[1/3] Checking required packages...")
    package_errors, package_info = validate_packages()
    all_errors.extend(package_errors)
    for info in package_info:
        print(info)

    print("\n[2/3] Checking environment variables...")
    env_errors = validate_env_vars(env)
    all_errors.extend(env_errors)
    source = env if env is not None else os.environ
    for var in REQUIRED_ENV_VARS:
        value = source.get(var)
        print(f"  {var}: {_mask(value) if value else 'NOT SET'}")

    print("\n[3/3] Parsing settings...")
    if not env_errors:
        settings_errors = validate_settings(env)
        all_errors.extend(settings_errors)
        if not settings_errors:
            print("  Settings: OK")
    else:
        print("  Skipped (missing variables)")

    print("\n" + "=" * 70)

    if all_errors:
        print("ENVIRONMENT VALIDATION FAILED!")
        print("=" * 70)
        for i, error in enumerate(all_errors, 1):
            print(f"\nError {i}:")
            print(error)

        if strict:
            raise EnvironmentError(
                f"Environment validation failed with {len(all_errors)} error(s). "
                f"See above for details."
            )
        return False

    print("ENVIRONMENT VALIDATION PASSED!")
    print("=" * 70)
    return True


if __name__ == "__main__":
    import sys

    sys.exit(0 if validate_environment(strict=False) else 1)

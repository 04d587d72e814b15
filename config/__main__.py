"""Command line interface for checking configuration loading"""
import sys

from . import get_settings, SettingsError

SECRET_KEYS = {'stripe_secret_key', 'stripe_webhook_secret', 'alchemy_signing_key', 'jwt_secret'}

def mask(key: str, value) -> str:
    """Hide all but the last four characters of secret values."""
    if key in SECRET_KEYS and value:
        return '*' * 8 + str(value)[-4:]
    return str(value)

def main():
    """Display loaded configuration"""
    try:
        settings = get_settings()
    except SettingsError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings.model_dump().items():
        print(f"{key}: {mask(key, value)}")

    missing = [key for key in sorted(SECRET_KEYS) if not getattr(settings, key)]
    if missing:
        print("\nWarning: the following secrets are empty and the matching features will be rejected:")
        for key in missing:
            print(f"  - {key}")

if __name__ == "__main__":
    main()

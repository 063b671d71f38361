"""Per-user, per-provider API key lookup.

Key storage and decryption live outside this service; the deployment exposes
decrypted keys through environment variables, which is all the core needs.
"""
import os
from typing import Optional

PROVIDERS = ("openai", "anthropic", "google", "openrouter")

_PROVIDER_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


def get_api_key(user_id: str, provider: str) -> Optional[str]:
    """Return the decrypted key for ``provider``, or None if the user has none.

    Raises:
        ValueError: For an unknown provider
    """
    env_var = _PROVIDER_ENV.get(provider)
    if env_var is None:
        raise ValueError(
            f"Unknown provider '{provider}'. Supported: {', '.join(PROVIDERS)}"
        )
    return os.environ.get(env_var) or None

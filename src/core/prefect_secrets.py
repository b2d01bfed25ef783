from __future__ import annotations

import os
from typing import Optional


def load_prefect_secret(block_name: str) -> Optional[str]:
    """Load a Prefect Secret block value by name.

    Returns None if Prefect isn't available, credentials are missing, or the block
    does not exist.
    """
    try:
        from prefect.blocks.system import Secret
        from prefect.utilities.asyncutils import run_coro_as_sync

        # `load()` may return an awaitable depending on the Prefect version.
        if hasattr(Secret, "aload"):
            block = run_coro_as_sync(Secret.aload(block_name))
        else:
            block = Secret.load(block_name)

        value = block.get()
        if value is None:
            return None
        value = str(value).strip()
        return value or None
    except Exception:
        return None


def env_or_prefect_secret(env_key: str, block_name: str, *, strip: bool = True) -> Optional[str]:
    """Return an env var if present, else try a Prefect Secret block."""
    value = os.getenv(env_key)
    if value is not None:
        value = str(value)
        return value.strip() if strip else value
    return load_prefect_secret(block_name)

"""
Secrets verification.

Checks that the settings clipper needs are present and well-formed and,
optionally, that each one is accepted by its service. Rotated keys are
checked one by one, so a single revoked key in a pool is reported.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import httpx

from clipper.config import ClipperConfig
from clipper.key_rotation import KeyRotation, env_var_name

logger = logging.getLogger(__name__)

PLACEHOLDERS = {"your-username", "clipper-actions"}

DEEPGRAM_KEY_RE = re.compile(r"^([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}|[a-f0-9]{40})$", re.I)
TELEGRAM_TOKEN_RE = re.compile(r"^\d+:[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class CheckResult:
    """Outcome of checking one secret."""
    name: str
    valid: bool
    message: str = ""
    required: bool = True


# -----------------------------------------------------------------------------
# Format checks: value -> (valid, message)
# -----------------------------------------------------------------------------

def _check_plain(value: str) -> tuple[bool, str]:
    if not value:
        return False, "Missing"
    if value in PLACEHOLDERS:
        return False, "Not configured (still set to placeholder)"
    return True, "Set"


def _check_github_token(value: str) -> tuple[bool, str]:
    if not value or not value.startswith(("ghp_", "github_pat_")):
        return False, "Invalid format (should start with ghp_ or github_pat_)"
    if len(value) < 40:
        return False, "Too short (likely incomplete)"
    return True, "Format OK"


def _check_deepgram_key(value: str) -> tuple[bool, str]:
    if not value:
        return False, "Missing"
    if not DEEPGRAM_KEY_RE.match(value):
        return False, "Invalid format (expected UUID or 40-char hex)"
    return True, "Format OK"


def _check_gemini_key(value: str) -> tuple[bool, str]:
    if not value:
        return False, "Missing"
    if not value.startswith("AIzaSy"):
        return False, "Invalid format (should start with AIzaSy)"
    if len(value) < 35:
        return False, "Too short (likely incomplete)"
    return True, "Format OK"


def _check_telegram_token(value: str) -> tuple[bool, str]:
    if not value:
        return False, "Not configured (optional)"
    if not TELEGRAM_TOKEN_RE.match(value):
        return False, "Invalid format (should be number:letters)"
    return True, "Format OK"


# -----------------------------------------------------------------------------
# Live checks: (client, value) -> (valid, message)
# -----------------------------------------------------------------------------

def _live_github(client: httpx.Client, value: str) -> tuple[bool, str]:
    response = client.get(
        "https://api.github.com/user",
        headers={"Authorization": f"Bearer {value}", "User-Agent": "clipper-secrets-check"},
    )
    if response.status_code == 200:
        return True, "Token is valid"
    return False, f"HTTP {response.status_code}"


def _live_deepgram(client: httpx.Client, value: str) -> tuple[bool, str]:
    response = client.get(
        "https://api.deepgram.com/v1/projects",
        headers={"Authorization": f"Token {value}"},
    )
    if response.status_code == 200:
        return True, "Key is valid"
    # 403: key is valid but has no project access
    if response.status_code == 403:
        return True, "Key is valid (no project access)"
    return False, f"HTTP {response.status_code}"


def _live_gemini(client: httpx.Client, value: str) -> tuple[bool, str]:
    response = client.get(
        "https://generativelanguage.googleapis.com/v1beta/models",
        params={"key": value},
    )
    if response.status_code == 200:
        return True, "Key is valid"
    return False, f"HTTP {response.status_code}"


def _live_telegram(client: httpx.Client, value: str) -> tuple[bool, str]:
    response = client.get(f"https://api.telegram.org/bot{value}/getMe")
    try:
        data = response.json()
    except ValueError:
        return False, "Invalid response"
    if data.get("ok") and (data.get("result") or {}).get("is_bot"):
        return True, f"Bot: @{data['result'].get('username')}"
    return False, data.get("description") or "Invalid token"


FormatCheck = Callable[[str], tuple[bool, str]]
LiveCheck = Callable[[httpx.Client, str], tuple[bool, str]]


@dataclass(frozen=True)
class SecretSpec:
    name: str
    description: str
    required: bool
    check: FormatCheck
    live: Optional[LiveCheck] = None


SECRETS = (
    SecretSpec("GITHUB_OWNER", "GitHub username or organization", True, _check_plain),
    SecretSpec("GITHUB_REPO", "Repository name", True, _check_plain),
    SecretSpec("TELEGRAM_TOKEN", "Telegram Bot Token for video delivery", False, _check_telegram_token, _live_telegram),
    SecretSpec("CHAT_ID", "Telegram chat to deliver to", False, _check_plain),
)

# Rotated services -> (format check, live check)
KEY_CHECKS: dict[str, tuple[FormatCheck, LiveCheck]] = {
    "github": (_check_github_token, _live_github),
    "deepgram": (_check_deepgram_key, _live_deepgram),
    "gemini": (_check_gemini_key, _live_gemini),
}


def _run_live(live: LiveCheck, client: httpx.Client, value: str) -> tuple[bool, str]:
    try:
        return live(client, value)
    except httpx.TimeoutException:
        return False, "Request timeout"
    except httpx.HTTPError:
        return False, "Network error"


def secret_values(config: ClipperConfig) -> dict[str, str]:
    """Secret values from a loaded config, keyed by their environment variable names."""
    return {
        "GITHUB_OWNER": config.github_owner,
        "GITHUB_REPO": config.github_repo,
        "GH_PAT": config.github_token,
        "TELEGRAM_TOKEN": config.telegram_token,
        "CHAT_ID": config.telegram_chat_id,
    }


def check_secrets(
    values: Mapping[str, str],
    rotation: KeyRotation,
    live: bool = False,
    client: Optional[httpx.Client] = None,
) -> list[CheckResult]:
    """
    Check configured secrets and every key in the rotation pools.

    A service whose pool is empty is checked against its single value in
    `values` (e.g. GH_PAT for github), if there is one.

    Args:
        values: Secret values by environment variable name (see secret_values)
        rotation: Key pools to check
        live: Also call each service to confirm the value is accepted
        client: httpx client for live checks (created if needed)

    Returns:
        One CheckResult per secret / rotated key
    """
    own_client = live and client is None
    if own_client:
        client = httpx.Client(timeout=10.0)

    results: list[CheckResult] = []
    try:
        for secret in SECRETS:
            value = values.get(secret.name) or ""
            valid, message = secret.check(value)
            if valid and live and secret.live is not None:
                valid, message = _run_live(secret.live, client, value)
            results.append(CheckResult(secret.name, valid, message, secret.required))

        for service, (check, live_check) in KEY_CHECKS.items():
            keys = rotation.get_all(service)
            if not keys and values.get(env_var_name(service)):
                keys = [values[env_var_name(service)]]
            if not keys:
                results.append(CheckResult(env_var_name(service), False, "No keys in pool or environment"))
                continue
            for index, key in enumerate(keys, start=1):
                valid, message = check(key)
                if valid and live:
                    valid, message = _run_live(live_check, client, key)
                results.append(CheckResult(f"{service}[{index}/{len(keys)}]", valid, message))
    finally:
        if own_client:
            client.close()

    return results


def all_required_valid(results: list[CheckResult]) -> bool:
    return all(r.valid for r in results if r.required)

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

_secrets: Dict[str, str] = {}


class SecretLookupError(RuntimeError):
    """Raised when a credential cannot be read from Parameter Store."""


def read_secret(name: str, *, client: Any = None) -> str:
    """Return the decrypted value of SecureString ``name``; values are kept for the process lifetime."""
    if not name:
        raise ValueError("Parameter name cannot be empty")
    if name in _secrets:
        return _secrets[name]
    ssm = client or boto3.client("ssm")
    try:
        parameter = ssm.get_parameter(Name=name, WithDecryption=True)["Parameter"]
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "unknown")
        raise SecretLookupError(f"SSM parameter {name} could not be read ({code})") from exc
    except BotoCoreError as exc:
        raise SecretLookupError(f"SSM parameter {name} could not be read: {exc}") from exc
    _secrets[name] = parameter["Value"]
    return _secrets[name]


def hydrate_env(env_name: str, parameter_name: Optional[str], *, client: Any = None) -> bool:
    """Export the API key stored under ``parameter_name`` as ``env_name``.

    An explicitly set environment variable always wins. Returns True when the
    variable was filled from Parameter Store.
    """
    if not parameter_name or os.getenv(env_name):
        return False
    os.environ[env_name] = read_secret(parameter_name, client=client)
    logger.info("Loaded %s from SSM parameter %s", env_name, parameter_name)
    return True

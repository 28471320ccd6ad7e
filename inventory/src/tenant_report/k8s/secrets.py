from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..config import RunConfig
from ..util.errors import CredentialError, describe_error, is_k8s_error


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)


def read_secret_data(
    core: Any,
    namespace: str,
    secret_name: str,
    *,
    timeout: Optional[float] = None,
) -> Dict[str, str]:
    """
    Read a Secret and return its data with values still base64-encoded, as the API returns them.
    """
    kwargs: Dict[str, Any] = {}
    if timeout is not None:
        kwargs["_request_timeout"] = timeout
    try:
        secret = core.read_namespaced_secret(secret_name, namespace, **kwargs)
    except Exception as e:
        if is_k8s_error(e):
            raise CredentialError(
                namespace, f"failed to get secret {namespace}/{secret_name}: {describe_error(e)}"
            ) from e
        raise
    return dict(getattr(secret, "data", None) or {})


def secret_value(data: Dict[str, str], namespace: str, secret_name: str, key: str) -> str:
    encoded = data.get(key)
    if encoded is None:
        raise CredentialError(namespace, f"key {key} not found in secret {namespace}/{secret_name}")
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise CredentialError(namespace, f"key {key} in secret {namespace}/{secret_name} is not valid base64 text") from e


def resolve_credentials(
    core: Any,
    namespace: str,
    cfg: RunConfig,
    *,
    timeout: Optional[float] = None,
) -> Credentials:
    """
    Fetch the tenant database credentials for a namespace.

    scoped: username and password both come from the secret.
    root: the root password comes from the secret, the username is fixed.
    """
    data = read_secret_data(core, namespace, cfg.secret_name, timeout=timeout)
    if cfg.credentials == "root":
        password = secret_value(data, namespace, cfg.secret_name, cfg.root_password_key)
        return Credentials(username=cfg.root_username, password=password)
    password = secret_value(data, namespace, cfg.secret_name, cfg.password_key)
    username = secret_value(data, namespace, cfg.secret_name, cfg.username_key)
    return Credentials(username=username, password=password)

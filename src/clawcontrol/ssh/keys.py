"""Local SSH key pair generation."""

from __future__ import annotations

import io
from dataclasses import dataclass

import paramiko

DEFAULT_KEY_BITS = 4096


@dataclass
class SSHKeyPair:
    private_key: str
    public_key: str


def generate_key_pair(comment: str = "clawcontrol", bits: int = DEFAULT_KEY_BITS) -> SSHKeyPair:
    """Generate a fresh RSA key pair in OpenSSH formats."""
    key = paramiko.RSAKey.generate(bits)
    buffer = io.StringIO()
    key.write_private_key(buffer)
    public_key = f"{key.get_name()} {key.get_base64()} {comment}"
    return SSHKeyPair(private_key=buffer.getvalue(), public_key=public_key)

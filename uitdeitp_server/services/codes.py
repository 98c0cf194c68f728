# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time numeric codes."""

import secrets


def generate_code(length: int = 6) -> str:
    """Uniformly random zero-padded numeric code, e.g. "004271"."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def codes_match(submitted: str, stored: str) -> bool:
    """Constant-time comparison."""
    return secrets.compare_digest(submitted.encode(), stored.encode())

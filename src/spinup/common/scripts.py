"""
Security gate for custom server startup scripts.

Scripts for the custom adapter are mounted read-only into the generic
server image and exec'd by its entrypoint. Anything stored must pass
`validate_script` first.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from spinup.common import settings
from spinup.common.db.models import CustomScript
from spinup.common.errors import ScriptValidationError

logger = logging.getLogger(__name__)

# rm with a recursive flag anywhere among its options, then a bare (optionally
# quoted) / or /* ending at whitespace, a quote or a shell operator
ROOT_DELETE = (
    r"\brm\s+(?:-\S*\s+)*(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)\s+(?:-\S*\s+)*"
    r"['\"]?/\*?(?=[\s;&|)'\"]|$)"
)

# set -euo pipefail, set -Eeuxo pipefail, set -eu -o pipefail or
# set -o errexit -o nounset -o pipefail
STRICT_MODE = (
    r"^[ \t]*set[ \t]+(?:"
    r"-(?=[a-zA-Z]*e)(?=[a-zA-Z]*u)[a-zA-Z]*o[ \t]+pipefail\b"
    r"|-(?=[a-zA-Z]*e)(?=[a-zA-Z]*u)[a-zA-Z]+[ \t]+-o[ \t]+pipefail\b"
    r"|(?=[^\n]*-o[ \t]+errexit\b)(?=[^\n]*-o[ \t]+nounset\b)[^\n]*-o[ \t]+pipefail\b"
    r")"
)

# (pattern, message) - any match rejects the script
DANGEROUS_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(ROOT_DELETE, re.MULTILINE),
        "Detected attempt to delete root filesystem (rm -rf /)",
    ),
    (
        re.compile(r"curl[^|\n]*\|\s*(?:bash|sh|zsh)\b"),
        "Detected pipe to shell from curl (curl | sh)",
    ),
    (
        re.compile(r"wget[^|\n]*\|\s*(?:bash|sh|zsh)\b"),
        "Detected pipe to shell from wget (wget | sh)",
    ),
    (
        re.compile(r"\beval\s+['\"`$]"),
        "Detected eval command with variable expansion",
    ),
    (
        re.compile(r"__import__\s*\(\s*['\"]os['\"]\s*\)\s*\.\s*system"),
        "Detected Python os.system() call",
    ),
    (
        re.compile(r"\bexec\s*\(\s*['\"]rm"),
        "Detected Python exec() with rm command",
    ),
    (
        re.compile(r"\b(?:nc|ncat|netcat)\s+-[a-zA-Z]*[el]"),
        "Detected netcat listener (potential reverse shell)",
    ),
    (
        re.compile(r"/dev/(?:tcp|udp)/"),
        "Detected /dev/tcp usage (potential reverse shell)",
    ),
    (
        re.compile(r"\bchmod\s+(?:-\w+\s+)*[0-7]*[2367]\b"),
        "Detected chmod with world-writable permissions",
    ),
    (
        re.compile(r"\bchmod\s+(?:-\w+\s+)*\S*[ao][+=]\S*w"),
        "Detected chmod with world-writable permissions",
    ),
    (
        re.compile(r"\bdd\s+if=/dev/(?:zero|urandom)\s+of="),
        "Detected dd command (potential disk fill attack)",
    ),
]

# Suspicious but potentially legitimate - reported as warnings only
WARNING_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\brm\s+-rf\b"), "Uses recursive force delete (rm -rf)"),
    (re.compile(r"\bsudo\s+"), "Attempts to use sudo (will fail - container is non-root)"),
    (re.compile(r"\bdocker\s+"), "References Docker commands (not available in container)"),
    (
        re.compile(r"apt-get\s+install|yum\s+install|apk\s+add"),
        "Installs packages (may fail if not in PATH or already installed)",
    ),
]

# (pattern, message) - the script is rejected if it does NOT match
REQUIRED_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(STRICT_MODE, re.MULTILINE),
        "Script must include 'set -euo pipefail' for error handling",
    ),
    (
        re.compile(r"^\s*exec\s+\S", re.MULTILINE),
        "Script must use 'exec' for the final server command",
    ),
]

PORT_ENV_PATTERN = re.compile(r"(?:SERVER_|GAME_)?PORTS?\s*[:=]\s*(\d+)", re.IGNORECASE)
PORT_DEFAULT_PATTERN = re.compile(r"\$\{(?:SERVER_|GAME_)?PORT:-(\d+)\}", re.IGNORECASE)
PORT_FLAG_PATTERN = re.compile(r"--?port[=\s]+(\d+)", re.IGNORECASE)

PLACEHOLDER_SCRIPT = """#!/bin/bash
set -euo pipefail

echo "No startup script has been configured for this server yet."
echo "Add a custom script and recreate the server to run it."
exec sleep infinity
"""


@dataclass
class ScriptValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    hash: str = ""
    size: int = 0


def hash_script(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def validate_script(content: str) -> ScriptValidation:
    """Check a script against the size limit and the pattern tables."""
    errors: list[str] = []
    warnings: list[str] = []

    size = len(content.encode("utf-8"))
    if size > settings.MAX_SCRIPT_SIZE:
        errors.append(
            f"Script too large: {size} bytes (max {settings.MAX_SCRIPT_SIZE} bytes)"
        )

    for pattern, message in REQUIRED_PATTERNS:
        if not pattern.search(content):
            errors.append(message)

    for pattern, message in DANGEROUS_PATTERNS:
        if pattern.search(content) and message not in errors:
            errors.append(message)

    for pattern, message in WARNING_PATTERNS:
        if pattern.search(content):
            warnings.append(message)

    return ScriptValidation(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        hash=hash_script(content),
        size=size,
    )


def sanitize_script(content: str) -> str:
    """Normalize line endings to LF and strip NUL bytes."""
    return content.replace("\r\n", "\n").replace("\r", "\n").replace("\0", "")


def verify_script_hash(content: str, expected_hash: str) -> bool:
    return hash_script(content) == expected_hash


def extract_ports_from_script(content: str) -> list[int]:
    """
    Suggest container ports from a script.

    Looks for PORT=8080, SERVER_PORT: 27015, ${SERVER_PORT:-27015},
    -port 27015 and --port=8080 style assignments. Only unprivileged ports
    (1024-65535) are returned, sorted.
    """
    ports: set[int] = set()
    for pattern in (PORT_ENV_PATTERN, PORT_DEFAULT_PATTERN, PORT_FLAG_PATTERN):
        for match in pattern.finditer(content):
            port = int(match.group(1))
            if 1024 <= port <= 65535:
                ports.add(port)
    return sorted(ports)


def generate_example_script(game_name: str) -> str:
    """A starting template for a custom server script."""
    return f"""#!/bin/bash
set -euo pipefail

echo "Installing {game_name} Server..."

# Set working directory
cd /data

# Download and install your game server here, e.g.
#   wget https://example.com/server.tar.gz
#   tar -xzf server.tar.gz

# Environment variables such as ${{SERVER_PORT}} are available.

# Start the server in the foreground - replace this line
exec sleep infinity
"""


def save_custom_script(
    session: Session,
    server_id: str,
    content: str,
    port_specs: list[dict[str, Any]] | None = None,
    env_vars: dict[str, str] | None = None,
) -> CustomScript:
    """
    Sanitize, validate and store the startup script for a custom server.

    If no port specs are given, the ports found in the script are declared
    as tcp ports.

    Raises:
        ScriptValidationError: if the script fails validation
    """
    content = sanitize_script(content)
    result = validate_script(content)
    if not result.valid:
        raise ScriptValidationError(result.errors)
    for warning in result.warnings:
        logger.warning(f"Custom script for server {server_id}: {warning}")

    if port_specs is None:
        port_specs = [
            {"container": port, "proto": "tcp"}
            for port in extract_ports_from_script(content)
        ]

    script = session.query(CustomScript).filter(CustomScript.server_id == server_id).first()
    if script is None:
        script = CustomScript(server_id=server_id)
        session.add(script)

    script.content = content
    script.content_hash = result.hash
    script.port_specs = list(port_specs)
    script.env_vars = dict(env_vars or {})
    session.flush()
    logger.info(f"Saved custom script for server {server_id} ({result.size} bytes)")
    return script

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Container entrypoint generation.

The entrypoint is generated in code rather than shipped as a file. It
makes the nvm-managed Node.js toolchain available to every session and
prints the installed tool versions before handing over to the command.
"""

from __future__ import annotations


# Changes to this string change the Dockerfile content hash of any
# build context written by ``devenv init`` afterwards.
ENTRYPOINT_SCRIPT = """\
#!/usr/bin/env bash
set -euo pipefail

# Make node, npm and globally installed CLIs available
export NVM_DIR="/root/.nvm"
[ -s "$NVM_DIR/nvm.sh" ] && . "$NVM_DIR/nvm.sh"
if command -v node >/dev/null 2>&1; then
    NODE_VERSION=$(node --version | sed 's/v//')
    export PATH="$NVM_DIR/versions/node/v$NODE_VERSION/bin:$PATH"
fi

echo "=== Isolated Development Environment ==="
echo "Node version: $(node --version 2>/dev/null || echo missing)"
echo "npm version: $(npm --version 2>/dev/null || echo missing)"
echo "yarn version: $(yarn --version 2>/dev/null || echo missing)"
echo "Python version: $(python --version 2>/dev/null || echo missing)"
echo "pip version: $(pip --version 2>/dev/null || echo missing)"
echo "Working directory: $(pwd)"
echo "========================================"

exec "$@"
"""


def get_entrypoint_content() -> bytes:
    """Get the entrypoint script content as UTF-8 bytes."""
    return ENTRYPOINT_SCRIPT.encode("utf-8")

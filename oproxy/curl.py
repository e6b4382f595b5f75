"""
curl wrapper

Runs the curl binary with headers included in its output and parses the
result with the raw response parser.
"""

import subprocess
from typing import List

from config import CURL_FLAGS

from .cancel import TransportError
from .log import get_logger
from .parser import parse_response
from .response import HTTPResponse

logger = get_logger(__name__)


class CurlError(TransportError):
    """curl exited with a non-zero status"""

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Curl exited with code {returncode}")


def curl_command(*curl_args: str, executable: str = "curl") -> List[str]:
    return [executable, *CURL_FLAGS, *curl_args]


def curl(*curl_args: str, executable: str = "curl") -> HTTPResponse:
    """
    Run curl and return its output as a structured response.

    With -L, curl prints every redirect hop; only the first header block is
    parsed as headers, later ones end up in the body.

    Args:
        *curl_args: Arguments for curl (URL, -X, -H, -d, ...)
        executable: curl binary to run

    Returns:
        Parsed HTTPResponse

    Raises:
        CurlError: If curl exits with a non-zero status
        HTTPSyntaxError: If curl's output has no status line
    """
    command = curl_command(*curl_args, executable=executable)
    logger.debug(f"Running {' '.join(command)}")

    proc = subprocess.run(
        command,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )

    stdout = proc.stdout.decode("utf-8", errors="replace")
    stderr = proc.stderr.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        logger.error(f"Curl stderr: {stderr.strip()}")
        raise CurlError(proc.returncode, stderr)

    return parse_response(stdout)

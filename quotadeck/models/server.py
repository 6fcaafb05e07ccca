"""Server build detection.

The management server ships in a standard and a "Plus" build; only Plus can
link Copilot and Kiro accounts. There is no capability endpoint, so the build
is inferred from whatever hints are available.
"""

from typing import Optional

VERSION_HEADER_KEYS = ("x-cpa-version", "x-server-version")


def _plus_from_version(version: Optional[str]) -> Optional[bool]:
    if not version or not version.strip():
        return None
    version = version.strip().lower()
    # Plus releases are tagged with a build suffix, e.g. "6.6.80-0"
    return "-" in version or "plus" in version


def _plus_from_path(path: Optional[str]) -> Optional[bool]:
    if not path or not path.strip():
        return None
    return "plus" in path.lower()


def supports_plus_providers(
    server_version: Optional[str] = None,
    installed_version: Optional[str] = None,
    exe_path: Optional[str] = None,
) -> bool:
    """Whether the connected server can link plus-only providers.

    Signals are tried in order (version reported by the server, locally
    installed version, executable path) and the first definite answer wins.
    With no signal at all the server is given the benefit of the doubt.
    """
    for answer in (
        _plus_from_version(server_version),
        _plus_from_version(installed_version),
        _plus_from_path(exe_path),
    ):
        if answer is not None:
            return answer
    return True

"""Cross-platform browser utilities."""

import webbrowser

from .log import log_with_timestamp


def open_browser(url: str) -> bool:
    """Open a URL in the default browser.

    Returns:
        False only when launching raised; webbrowser.open() may report False
        on systems where the browser still opens.
    """
    try:
        log_with_timestamp(f"Opening: {url}", "[Browser]")
        webbrowser.open(url)
        return True
    except webbrowser.Error as e:
        log_with_timestamp(f"Could not open browser: {e}", "[Browser]")
        return False

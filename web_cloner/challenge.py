import re

# Signatures of interstitial anti-bot pages. Vendor markers first, then
# script-injected fingerprinting markers, then the visible interstitial text.
CHALLENGE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"cf-browser-verification",
        r"/cdn-cgi/challenge-platform/",
        r"_cf_chl_opt",
        r"data-digest=",
        r"app-trigger",
        r"decodeUTF8Base64",
        r"XMLHttpRequest.*fingerprint",
        r"just a moment",
        r"checking your browser",
        r"\bray id\b",
    )
]


def requires_browser(html: str) -> bool:
    """True when ``html`` looks like a JavaScript-gated challenge page."""
    if not html:
        return False
    return any(p.search(html) for p in CHALLENGE_PATTERNS)

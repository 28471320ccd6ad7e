from __future__ import annotations

import re

# Userinfo in mongodb:// and mongodb+srv:// URIs; enough to keep passwords out of logs.
_URI_USERINFO_RE = re.compile(r"\b(mongodb(?:\+srv)?://)[^@/\s]+@")


def redact_text(text: str) -> str:
    if not text:
        return ""
    return _URI_USERINFO_RE.sub(r"\1<redacted>@", str(text))

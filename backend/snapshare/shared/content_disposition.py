import re
from urllib.parse import quote

_FALLBACK_UNSAFE = re.compile(r'[^\x20-\x7e]|["\\]')


def attachment_header(filename: str) -> str:
    """``Content-Disposition`` for ``filename`` as given, with an ASCII fallback.

    The name itself travels untouched in the RFC 5987 ``filename*`` parameter;
    older clients read the ``filename`` fallback with non-ASCII and quoting
    characters replaced by ``_``.
    """
    fallback = _FALLBACK_UNSAFE.sub("_", filename) or "download"
    encoded = quote(filename, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"

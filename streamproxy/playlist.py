import logging
import re

from .urls import proxy_url, resolve_reference

logger = logging.getLogger(__name__)

# Directives whose quoted URI attribute names a resource the player will fetch.
URI_ATTRIBUTE_TAGS = (
    "#EXT-X-KEY:",
    "#EXT-X-SESSION-KEY:",
    "#EXT-X-MAP:",
    "#EXT-X-MEDIA:",
    "#EXT-X-I-FRAME-STREAM-INF:",
    "#EXT-X-PART:",
    "#EXT-X-PRELOAD-HINT:",
    "#EXT-X-RENDITION-REPORT:",
)

URI_ATTRIBUTE_RE = re.compile(r'(?<![A-Z0-9-])URI="([^"]*)"')
LINE_BREAK_RE = re.compile(r"(\r\n|\r|\n)")


def rewrite_playlist(playlist_text: str, fetched_from_url: str) -> str:
    """Route every resource referenced by an M3U8 playlist back through the proxy.

    Bare URI lines are replaced by a proxy URL; URI attributes of the
    directives in ``URI_ATTRIBUTE_TAGS`` are replaced in place. Every other
    line, the line endings and the trailing newline are kept as they are.
    Running the result through this function again changes nothing.
    """
    rewritten = 0

    def rewrite_reference(reference):
        nonlocal rewritten
        target = resolve_reference(reference, fetched_from_url)
        if target is None:
            return None
        rewritten += 1
        return proxy_url(target)

    def rewrite_attribute(match):
        new_uri = rewrite_reference(match.group(1))
        if new_uri is None:
            return match.group(0)
        return f'URI="{new_uri}"'

    # re.split with a capturing group alternates line, separator, line, ...
    parts = LINE_BREAK_RE.split(playlist_text)
    for i in range(0, len(parts), 2):
        line = parts[i]
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            if stripped.startswith(URI_ATTRIBUTE_TAGS):
                parts[i] = URI_ATTRIBUTE_RE.sub(rewrite_attribute, line)
            continue
        new_line = rewrite_reference(stripped)
        if new_line is not None:
            parts[i] = new_line

    logger.debug(f"Rewrote {rewritten} references in playlist from {fetched_from_url[:80]}")
    return "".join(parts)

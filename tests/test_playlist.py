import unittest
from urllib.parse import parse_qs, quote, urlsplit

from streamproxy.playlist import rewrite_playlist
from streamproxy.urls import PROXY_PATH, proxy_url

BASE = "https://host/a/b/index.m3u8"


def _decode(proxied):
    parts = urlsplit(proxied)
    assert parts.path == PROXY_PATH, proxied
    return parse_qs(parts.query)["url"][0]


def _uri_lines(text):
    return [line for line in text.splitlines() if line.strip() and not line.startswith("#")]


class RewritePlaylistTests(unittest.TestCase):
    def test_relative_segment_resolves_against_playlist_directory(self):
        out = rewrite_playlist("#EXTM3U\n#EXTINF:9.009,\nseg1.ts\n", BASE)
        self.assertEqual(_uri_lines(out), [proxy_url("https://host/a/b/seg1.ts")])
        self.assertEqual(_decode(_uri_lines(out)[0]), "https://host/a/b/seg1.ts")

    def test_parent_directory_traversal(self):
        out = rewrite_playlist("#EXTINF:9.009,\n../other/seg2.ts\n", BASE)
        self.assertEqual(_decode(_uri_lines(out)[0]), "https://host/a/other/seg2.ts")

    def test_root_relative_and_protocol_relative_references(self):
        out = rewrite_playlist("/live/seg.ts\n//cdn.example/x/seg.ts\n", BASE)
        self.assertEqual(
            [_decode(line) for line in _uri_lines(out)],
            ["https://host/live/seg.ts", "https://cdn.example/x/seg.ts"],
        )

    def test_absolute_reference_keeps_its_host_and_query(self):
        target = "http://other.example/v/720p.m3u8?token=a%2Fb&exp=1"
        out = rewrite_playlist(f"#EXT-X-STREAM-INF:BANDWIDTH=1\n{target}\n", BASE)
        line = _uri_lines(out)[0]
        self.assertEqual(line, f"{PROXY_PATH}?url={quote(target, safe='')}")
        self.assertEqual(_decode(line), target)

    def test_directives_pass_through(self):
        text = "#EXTM3U\n#EXT-X-TARGETDURATION:10\n#EXTINF:9.009,\n#EXT-X-ENDLIST\n"
        self.assertEqual(rewrite_playlist(text, BASE), text)

    def test_extinf_line_is_never_rewritten(self):
        out = rewrite_playlist("#EXTINF:9.009,\nseg1.ts\n", BASE)
        self.assertEqual(out.splitlines()[0], "#EXTINF:9.009,")

    def test_rewrite_is_idempotent(self):
        text = (
            "#EXTM3U\n"
            '#EXT-X-MAP:URI="init.mp4"\n'
            "#EXTINF:4,\n"
            "seg1.ts\n"
            "#EXTINF:4,\n"
            "https://cdn.example/seg2.ts\n"
        )
        once = rewrite_playlist(text, BASE)
        twice = rewrite_playlist(once, BASE)
        self.assertEqual(once, twice)

    def test_nested_proxy_urls_are_unwrapped_to_one_level(self):
        inner = proxy_url("https://host/a/b/seg1.ts")
        nested = f"{PROXY_PATH}?url={quote(inner, safe='')}"
        out = rewrite_playlist(nested + "\n", BASE)
        self.assertEqual(out, inner + "\n")

    def test_crlf_line_endings_and_missing_final_newline_are_kept(self):
        text = "#EXTM3U\r\n#EXTINF:4,\r\n\r\nseg1.ts"
        out = rewrite_playlist(text, BASE)
        self.assertEqual(out, "#EXTM3U\r\n#EXTINF:4,\r\n\r\n" + proxy_url("https://host/a/b/seg1.ts"))

    def test_blank_and_whitespace_lines_pass_through(self):
        text = "#EXTM3U\n\n   \nseg1.ts\n"
        out = rewrite_playlist(text, BASE)
        self.assertTrue(out.startswith("#EXTM3U\n\n   \n"))

    def test_uri_lines_are_stripped_before_resolution(self):
        out = rewrite_playlist("  seg1.ts  \n", BASE)
        self.assertEqual(out, proxy_url("https://host/a/b/seg1.ts") + "\n")

    def test_key_and_map_uri_attributes_are_rewritten_in_place(self):
        text = (
            '#EXT-X-KEY:METHOD=AES-128,URI="../keys/k1.bin",IV=0xabcdef\n'
            '#EXT-X-MAP:URI="init.mp4",BYTERANGE="720@0"\n'
        )
        key_line, map_line = rewrite_playlist(text, BASE).splitlines()
        expected_key = proxy_url("https://host/a/keys/k1.bin")
        self.assertEqual(key_line, f'#EXT-X-KEY:METHOD=AES-128,URI="{expected_key}",IV=0xabcdef')
        expected_map = proxy_url("https://host/a/b/init.mp4")
        self.assertEqual(map_line, f'#EXT-X-MAP:URI="{expected_map}",BYTERANGE="720@0"')

    def test_media_rendition_uri_is_rewritten(self):
        text = '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="aud",NAME="en",URI="audio/en.m3u8"\n'
        out = rewrite_playlist(text, BASE)
        self.assertIn(f'URI="{proxy_url("https://host/a/b/audio/en.m3u8")}"', out)
        self.assertIn('GROUP-ID="aud"', out)

    def test_non_http_key_uri_is_left_alone(self):
        text = '#EXT-X-KEY:METHOD=SAMPLE-AES,URI="skd://key-id",KEYFORMAT="com.apple.streamingkeydelivery"\n'
        self.assertEqual(rewrite_playlist(text, BASE), text)

    def test_uri_attribute_in_unknown_directive_is_left_alone(self):
        text = '#EXT-X-SESSION-DATA:DATA-ID="com.example",URI="data.json"\n'
        self.assertEqual(rewrite_playlist(text, BASE), text)

    def test_key_without_uri_is_left_alone(self):
        text = "#EXT-X-KEY:METHOD=NONE\n"
        self.assertEqual(rewrite_playlist(text, BASE), text)

    def test_playlist_without_references_is_unchanged(self):
        text = "#EXTM3U\n#EXT-X-VERSION:3\n"
        self.assertEqual(rewrite_playlist(text, BASE), text)
        self.assertEqual(rewrite_playlist("", BASE), "")


if __name__ == "__main__":
    unittest.main()

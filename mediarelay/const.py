SUPPORTED_REQUEST_HEADERS = [
    "accept",
    "accept-language",
    "range",
    "if-range",
]

DEFAULT_RANGE = "bytes=0-"
DEFAULT_MEDIA_TYPE = "video/mp4"
DEFAULT_MIRROR_MEDIA_TYPE = "application/json"
MANIFEST_MEDIA_TYPE = "application/vnd.apple.mpegurl"

PLAYLIST_EXTENSIONS = (".m3u", ".m3u8")
PLAYLIST_PATH_MARKERS = ("/hls_playlist/", "/hls_variant/")

# Lower-cased fragments of resolver diagnostics that mean the platform wants fresh credentials.
AUTH_CHALLENGE_MARKERS = (
    "sign in to confirm",
    "not a bot",
    "use --cookies",
    "cookies-from-browser",
    "login required",
    "this video is private",
)

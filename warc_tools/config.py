import os

from warc_tools.errors import ConfigError

# --- Record framing ---
RECORD_MARKER = "WARC/1.0"
# Header lines allowed after the marker before the stream is declared corrupt
MAX_HEADER_LINES = 100

# --- Seed data ---
TOOLS_DIR_ENV = "WARC_TOOLS_DIR"
CHARS_RELPATH = "detect-chinese/ordered_characters"

# --- Metadata correlation ---
DEFAULT_META_PATH = "data/CC-MAIN-20130516092621-00000-ip-10-60-113-184.ec2.internal.warc.wat.gz"

# --- Dispatch ---
RESULT_QUEUE_SIZE = 100
DEFAULT_WORKERS = os.cpu_count() or 4
DEFAULT_MAX_PENDING = 100

# Two deployments of the detector were tuned separately; keep both.
# "ids" prints the record ID of every match, "bodies" prints the text itself.
PRESETS = {
    "ids": {"sampling": "byte", "sample_size": 500, "threshold": 0.35, "print_body": False},
    "bodies": {"sampling": "codepoint", "sample_size": 200, "threshold": 0.30, "print_body": True},
}
DEFAULT_PRESET = "ids"


def resolve_chars_path(explicit_path: str | None = None) -> str:
    """
    Locate the target codepoint file.

    An explicit path wins; otherwise the file is expected under
    $WARC_TOOLS_DIR/detect-chinese/ordered_characters.
    """
    if explicit_path:
        return explicit_path

    root = os.environ.get(TOOLS_DIR_ENV, "")
    if not root:
        raise ConfigError(f"Must have {TOOLS_DIR_ENV} set (or pass --chars)")
    return os.path.join(root, CHARS_RELPATH)

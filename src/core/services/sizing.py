"""Resource estimation: model download size and free disk space.

`estimate_model_size` is pure: a static table of well-known models, then a
heuristic over the tag (parameter count and quantization), then a
conservative default.
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

from core.config import AppSettings
from core.errors import FilesystemError

GB = 1000**3
MB = 1000**2

# Used when neither the table nor the heuristic recognizes the name.
DEFAULT_MODEL_SIZE = 4 * 1024**3

# Download sizes of the default (q4) tags published on the Ollama library.
KNOWN_MODEL_SIZES: dict[str, int] = {
    "llama3.2": int(2.0 * GB),
    "llama3.2:1b": int(1.3 * GB),
    "llama3.2:3b": int(2.0 * GB),
    "llama3.1": int(4.9 * GB),
    "llama3.1:8b": int(4.9 * GB),
    "llama3.1:70b": int(43 * GB),
    "llama3": int(4.7 * GB),
    "llama3:8b": int(4.7 * GB),
    "llama3:70b": int(40 * GB),
    "mistral": int(4.1 * GB),
    "mistral:7b": int(4.1 * GB),
    "mixtral": int(26 * GB),
    "mixtral:8x7b": int(26 * GB),
    "gemma2": int(5.4 * GB),
    "gemma2:2b": int(1.6 * GB),
    "gemma2:9b": int(5.4 * GB),
    "gemma2:27b": int(16 * GB),
    "qwen2.5": int(4.7 * GB),
    "qwen2.5:7b": int(4.7 * GB),
    "qwen2.5:14b": int(9.0 * GB),
    "phi3": int(2.2 * GB),
    "phi3:mini": int(2.2 * GB),
    "codellama": int(3.8 * GB),
    "codellama:7b": int(3.8 * GB),
    "deepseek-r1": int(4.7 * GB),
    "deepseek-r1:7b": int(4.7 * GB),
    "llava": int(4.7 * GB),
    "llava:7b": int(4.7 * GB),
    "nomic-embed-text": 274 * MB,
    "mxbai-embed-large": 670 * MB,
    "all-minilm": 46 * MB,
}

# Bytes per parameter, including GGUF overhead.
_QUANT_BYTES_PER_PARAM: dict[str, float] = {
    "q2": 0.35,
    "q3": 0.45,
    "q4": 0.6,
    "q5": 0.7,
    "q6": 0.82,
    "q8": 1.07,
    "f16": 2.0,
    "fp16": 2.0,
    "bf16": 2.0,
    "f32": 4.0,
    "fp32": 4.0,
}
_DEFAULT_QUANT = "q4"

_PARAMS_RE = re.compile(r"(?:(\d+)x)?(\d+(?:\.\d+)?)([bm])(?![a-z])")
_QUANT_RE = re.compile(r"(q[2-8])(?:_[a-z0-9]+)*|(bf16|fp16|f16|fp32|f32)")


def _split_name(name: str) -> tuple[str, str | None]:
    last = name.strip().lower().rsplit("/", 1)[-1]
    base, sep, tag = last.partition(":")
    if not sep or tag == "latest":
        return base, None
    return base, tag


def _estimate_from_tag(base: str, tag: str | None) -> int | None:
    text = tag if tag else base
    match = _PARAMS_RE.search(text)
    if not match and tag:
        match = _PARAMS_RE.search(base)
    if not match:
        return None

    experts = int(match.group(1)) if match.group(1) else 1
    count = float(match.group(2)) * experts
    params = count * (1e9 if match.group(3) == "b" else 1e6)

    quant = _DEFAULT_QUANT
    qmatch = _QUANT_RE.search(tag or "")
    if qmatch:
        quant = qmatch.group(1) or qmatch.group(2)
    return int(params * _QUANT_BYTES_PER_PARAM.get(quant, _QUANT_BYTES_PER_PARAM[_DEFAULT_QUANT]))


def estimate_model_size(name: str) -> int:
    """Approximate download size in bytes; never fails."""

    base, tag = _split_name(name)
    key = f"{base}:{tag}" if tag else base
    if key in KNOWN_MODEL_SIZES:
        return KNOWN_MODEL_SIZES[key]

    estimate = _estimate_from_tag(base, tag)
    if estimate is not None:
        return estimate
    if tag is not None and base in KNOWN_MODEL_SIZES:
        return KNOWN_MODEL_SIZES[base]
    return DEFAULT_MODEL_SIZE


def format_size(num_bytes: int | float) -> str:
    """Human-readable decimal size, the way `ollama list` prints it."""

    value = float(max(0, num_bytes))
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1000:
            return f"{int(value)} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.1f} TB"


def _nearest_existing(path: Path) -> Path:
    candidate = path.expanduser()
    for parent in (candidate, *candidate.parents):
        if parent.exists():
            return parent
    return Path.home()


def get_available_disk_space(
    path: str | Path | None = None,
    *,
    settings: AppSettings | None = None,
) -> int:
    """Free bytes on the volume holding `path`.

    Without `path`, the configured models directory is used; it may not exist
    yet, so its nearest existing ancestor is queried instead. An explicit path
    is queried as-is and raises `FilesystemError` if it is inaccessible.
    """

    if path is None:
        settings = settings or AppSettings()
        target = _nearest_existing(settings.models_dir)
    else:
        target = Path(path).expanduser()

    try:
        usage = shutil.disk_usage(target)
    except OSError as exc:
        raise FilesystemError(f"cannot query free space for {target}: {exc}") from exc
    return max(0, int(usage.free))

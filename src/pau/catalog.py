"""Format catalog: output formats, channel layouts, containers and encoding constraints.

A closed table (format -> layouts, format -> containers) plus pure lookups.
Passing a value that is not a member of these enums is a programming error;
the lookups raise ``KeyError`` in that case rather than returning a default.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


class OutputFormat(Enum):
    """Target family of the enhanced mix."""
    PCM = "pcm"
    TRUEHD = "truehd"
    DTS = "dts"
    THX = "thx"

    @property
    def display_name(self) -> str:
        return _FORMAT_NAMES[self]


_FORMAT_NAMES: Dict[OutputFormat, str] = {
    OutputFormat.PCM: "PCM",
    OutputFormat.TRUEHD: "TrueHD",
    OutputFormat.DTS: "DTS",
    OutputFormat.THX: "THX",
}


@dataclass(frozen=True)
class _LayoutInfo:
    fmt: OutputFormat
    label: str
    ffmpeg_layout: str
    has_height: bool
    channels: int


class ChannelLayout(Enum):
    """Channel layout tied to exactly one output format."""
    PCM_2_0 = "pcm-2.0"
    PCM_5_1 = "pcm-5.1"
    PCM_7_1 = "pcm-7.1"
    PCM_7_1_4 = "pcm-7.1.4"
    TRUEHD_7_1 = "truehd-7.1"
    TRUEHD_7_1_4 = "truehd-7.1.4"
    DTS_5_1 = "dts-5.1"
    DTS_7_1 = "dts-7.1"
    THX_5_1 = "thx-5.1"
    THX_7_1 = "thx-7.1"
    THX_7_1_4 = "thx-7.1.4"

    @property
    def output_format(self) -> OutputFormat:
        return _LAYOUTS[self].fmt

    @property
    def label(self) -> str:
        """Channel-count label used in output file names ("5.1", "7.1.4", ...)."""
        return _LAYOUTS[self].label

    @property
    def ffmpeg_layout(self) -> str:
        return _LAYOUTS[self].ffmpeg_layout

    @property
    def has_height(self) -> bool:
        return _LAYOUTS[self].has_height

    @property
    def channels(self) -> int:
        return _LAYOUTS[self].channels


_LAYOUTS: Dict[ChannelLayout, _LayoutInfo] = {
    ChannelLayout.PCM_2_0: _LayoutInfo(OutputFormat.PCM, "2.0", "stereo", False, 2),
    ChannelLayout.PCM_5_1: _LayoutInfo(OutputFormat.PCM, "5.1", "5.1(side)", False, 6),
    ChannelLayout.PCM_7_1: _LayoutInfo(OutputFormat.PCM, "7.1", "7.1", False, 8),
    ChannelLayout.PCM_7_1_4: _LayoutInfo(OutputFormat.PCM, "7.1.4", "7.1.4", True, 12),
    ChannelLayout.TRUEHD_7_1: _LayoutInfo(OutputFormat.TRUEHD, "7.1", "7.1", False, 8),
    ChannelLayout.TRUEHD_7_1_4: _LayoutInfo(OutputFormat.TRUEHD, "7.1.4", "7.1.4", True, 12),
    ChannelLayout.DTS_5_1: _LayoutInfo(OutputFormat.DTS, "5.1", "5.1(side)", False, 6),
    ChannelLayout.DTS_7_1: _LayoutInfo(OutputFormat.DTS, "7.1", "7.1", False, 8),
    ChannelLayout.THX_5_1: _LayoutInfo(OutputFormat.THX, "5.1", "5.1(side)", False, 6),
    ChannelLayout.THX_7_1: _LayoutInfo(OutputFormat.THX, "7.1", "7.1", False, 8),
    ChannelLayout.THX_7_1_4: _LayoutInfo(OutputFormat.THX, "7.1.4", "7.1.4", True, 12),
}


class Quality(Enum):
    """PCM bit depth / sample rate pair."""
    CD = "16/48"
    STANDARD = "24/48"
    HIGH_RES = "24/96"
    AUDIOPHILE = "24/192"
    MAX_BIT = "32/48"
    MAX_BIT_HIGH = "32/96"
    MAX_BIT_ULTRA = "32/192"

    @property
    def bit_depth(self) -> int:
        return int(self.value.split("/")[0])

    @property
    def sample_rate(self) -> int:
        return int(self.value.split("/")[1]) * 1000

    @property
    def display_name(self) -> str:
        return f"{self.bit_depth}-bit / {self.sample_rate // 1000} kHz"


class ContainerFormat(Enum):
    """Output container/codec pair. Member order is the catalog order."""
    FLAC = "flac"
    ALAC = "alac"
    WAV = "wav"
    AIFF = "aiff"
    DTS = "dts"
    TRUEHD = "truehd"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def display_name(self) -> str:
        return _CONTAINER_NAMES[self]


_EXTENSIONS: Dict[ContainerFormat, str] = {
    ContainerFormat.FLAC: "flac",
    ContainerFormat.ALAC: "m4a",
    ContainerFormat.WAV: "wav",
    ContainerFormat.AIFF: "aiff",
    ContainerFormat.DTS: "dts",
    ContainerFormat.TRUEHD: "thd",
}

_CONTAINER_NAMES: Dict[ContainerFormat, str] = {
    ContainerFormat.FLAC: "FLAC",
    ContainerFormat.ALAC: "ALAC",
    ContainerFormat.WAV: "WAV",
    ContainerFormat.AIFF: "AIFF",
    ContainerFormat.DTS: "DTS",
    ContainerFormat.TRUEHD: "TrueHD",
}

_LOSSLESS_POOL: FrozenSet[ContainerFormat] = frozenset(
    {ContainerFormat.FLAC, ContainerFormat.ALAC, ContainerFormat.WAV, ContainerFormat.AIFF}
)

_CONTAINERS: Dict[OutputFormat, FrozenSet[ContainerFormat]] = {
    OutputFormat.PCM: _LOSSLESS_POOL,
    OutputFormat.THX: _LOSSLESS_POOL,
    OutputFormat.TRUEHD: frozenset({ContainerFormat.TRUEHD}),
    OutputFormat.DTS: frozenset({ContainerFormat.DTS}),
}

_DEFAULT_LAYOUTS: Dict[OutputFormat, ChannelLayout] = {
    OutputFormat.PCM: ChannelLayout.PCM_7_1,
    OutputFormat.TRUEHD: ChannelLayout.TRUEHD_7_1,
    OutputFormat.DTS: ChannelLayout.DTS_7_1,
    OutputFormat.THX: ChannelLayout.THX_7_1,
}


def allowed_layouts(fmt: OutputFormat) -> FrozenSet[ChannelLayout]:
    return frozenset(layout for layout, info in _LAYOUTS.items() if info.fmt is fmt)


def layouts_in_order(fmt: OutputFormat) -> Tuple[ChannelLayout, ...]:
    """Allowed layouts for `fmt` in declaration order (for menus)."""
    return tuple(layout for layout in ChannelLayout if _LAYOUTS[layout].fmt is fmt)


def allowed_containers(fmt: OutputFormat) -> FrozenSet[ContainerFormat]:
    return _CONTAINERS[fmt]


def is_compatible(container: ContainerFormat, fmt: OutputFormat) -> bool:
    return container in _CONTAINERS[fmt]


# ffmpeg's flac and alac encoders stop at 8 channels.
_MAX_CHANNELS: Dict[ContainerFormat, int] = {
    ContainerFormat.FLAC: 8,
    ContainerFormat.ALAC: 8,
}


def container_max_channels(container: ContainerFormat) -> Optional[int]:
    return _MAX_CHANNELS.get(container)


def fits_container(layout: ChannelLayout, container: ContainerFormat) -> bool:
    """False when `container`'s encoder cannot carry every channel of `layout`."""
    limit = _MAX_CHANNELS.get(container)
    return limit is None or layout.channels <= limit


def compatible_containers(fmt: OutputFormat) -> Tuple[ContainerFormat, ...]:
    """Compatible containers in catalog order."""
    pool = _CONTAINERS[fmt]
    return tuple(c for c in ContainerFormat if c in pool)


def first_compatible_container(fmt: OutputFormat) -> ContainerFormat:
    return compatible_containers(fmt)[0]


def auto_select_container(fmt: OutputFormat, current: Optional[ContainerFormat]) -> ContainerFormat:
    """Keep `current` when it still fits `fmt`; otherwise pick the first compatible one."""
    if current is not None and is_compatible(current, fmt):
        return current
    return first_compatible_container(fmt)


def default_layout(fmt: OutputFormat) -> ChannelLayout:
    return _DEFAULT_LAYOUTS[fmt]


def auto_select_layout(fmt: OutputFormat, current: Optional[ChannelLayout]) -> ChannelLayout:
    if current is not None and current in allowed_layouts(fmt):
        return current
    return default_layout(fmt)


def parse_format(name: str) -> OutputFormat:
    key = name.strip().lower()
    for fmt in OutputFormat:
        if key in (fmt.value, fmt.display_name.lower()):
            return fmt
    raise ValueError(f"Unknown output format: {name!r}")


def layout_for(fmt: OutputFormat, label: str) -> ChannelLayout:
    """Find the layout of `fmt` with the given channel-count label."""
    key = label.strip().lower()
    if key == "stereo":
        key = "2.0"
    for layout in layouts_in_order(fmt):
        if layout.label == key:
            return layout
    raise ValueError(f"Layout {label!r} is not available for {fmt.display_name}")


def parse_quality(name: str) -> Quality:
    key = name.strip()
    for q in Quality:
        if key == q.value or key.lower() == q.name.lower():
            return q
    raise ValueError(f"Unknown quality: {name!r}")


def parse_container(name: str) -> ContainerFormat:
    key = name.strip().lower()
    for c in ContainerFormat:
        if key in (c.value, c.extension):
            return c
    raise ValueError(f"Unknown container: {name!r}")


# ---------------------------------------------------------------------------
# Encoding parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EncodingParams:
    codec: str
    sample_rate: int
    sample_fmt: Optional[str] = None
    bitrate: Optional[str] = None
    strict_experimental: bool = False

    def to_args(self) -> List[str]:
        """Render as ffmpeg arguments following `-c:a <codec>`."""
        args: List[str] = []
        if self.sample_fmt:
            args += ["-sample_fmt", self.sample_fmt]
        if self.bitrate:
            args += ["-b:a", self.bitrate]
        args += ["-ar", str(self.sample_rate)]
        if self.strict_experimental:
            args += ["-strict", "experimental"]
        return args


# THX-style mixes are delivered at a fixed 24-bit / 48 kHz.
THX_QUALITY = Quality.STANDARD
DELIVERY_SAMPLE_RATE = 48000
DTS_BITRATE = "1536k"


def _lossless_codec(container: ContainerFormat, bit_depth: int) -> Tuple[str, str]:
    """Return (codec, sample_fmt) for a lossless container at `bit_depth`."""
    wide = bit_depth > 16
    if container is ContainerFormat.FLAC:
        return "flac", "s32" if wide else "s16"
    if container is ContainerFormat.ALAC:
        return "alac", "s32p" if wide else "s16p"
    if container is ContainerFormat.WAV:
        return f"pcm_s{bit_depth}le", "s32" if wide else "s16"
    if container is ContainerFormat.AIFF:
        return f"pcm_s{bit_depth}be", "s32" if wide else "s16"
    raise KeyError(container)


def encoding_params(fmt: OutputFormat, container: ContainerFormat, quality: Quality) -> EncodingParams:
    """Encoder parameters for a (format, container) pair.

    Only PCM honours `quality`; every other format uses its fixed values.
    """
    if fmt is OutputFormat.TRUEHD:
        return EncodingParams(codec="truehd", sample_rate=DELIVERY_SAMPLE_RATE, strict_experimental=True)
    if fmt is OutputFormat.DTS:
        return EncodingParams(
            codec="dca",
            sample_rate=DELIVERY_SAMPLE_RATE,
            bitrate=DTS_BITRATE,
            strict_experimental=True,
        )
    if fmt is OutputFormat.THX:
        codec, sample_fmt = _lossless_codec(container, THX_QUALITY.bit_depth)
        return EncodingParams(codec=codec, sample_rate=THX_QUALITY.sample_rate, sample_fmt=sample_fmt)
    if fmt is OutputFormat.PCM:
        codec, sample_fmt = _lossless_codec(container, quality.bit_depth)
        return EncodingParams(codec=codec, sample_rate=quality.sample_rate, sample_fmt=sample_fmt)
    raise KeyError(fmt)

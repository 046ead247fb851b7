"""Filter graph builder: (format, layout, quality, ai_mode) -> FilterGraphSpec.

Pure and deterministic. Numeric parameters are constants selected per format
(enhancement profile) and per layout (pan matrix); nothing is derived from the
audio. The pan matrices approximate a discrete surround mix with fixed linear
combinations of the two input channels, which is a known limitation of
upmixing rather than a defect.

Two kinds of spec are produced:

- ``chain``: a linear stage list for one stereo input, serialized for ``-af``.
- ``stem-mix``: a labelled graph over the four separated stems, serialized for
  ``-filter_complex``. Only the two-stage path in the orchestrator consumes it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from loguru import logger

from .catalog import ChannelLayout, OutputFormat, Quality, allowed_layouts, default_layout
from .separator import STEM_NAMES


KIND_CHAIN = "chain"
KIND_STEM_MIX = "stem-mix"


@dataclass(frozen=True)
class Stage:
    name: str
    filter: str
    args: str = ""
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    def render(self) -> str:
        labels_in = "".join(f"[{label}]" for label in self.inputs)
        labels_out = "".join(f"[{label}]" for label in self.outputs)
        body = f"{self.filter}={self.args}" if self.args else self.filter
        return f"{labels_in}{body}{labels_out}"


@dataclass(frozen=True)
class FilterGraphSpec:
    kind: str
    stages: Tuple[Stage, ...]
    output_layout: str
    inputs: Tuple[str, ...] = ()
    output_label: str = ""

    @property
    def is_stem_mix(self) -> bool:
        return self.kind == KIND_STEM_MIX

    def serialize(self) -> str:
        """Text for ``-af`` (chain) or ``-filter_complex`` (stem-mix)."""
        sep = ";" if self.is_stem_mix else ","
        return sep.join(stage.render() for stage in self.stages)

    def describe(self) -> List[str]:
        return [stage.name for stage in self.stages]


# ---------------------------------------------------------------------------
# Constant tables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnhancementProfile:
    widen: float            # extrastereo multiplier
    echo_delay_ms: int      # psychoacoustic pre-delay
    echo_decay: float
    norm_frame_ms: int      # dynaudnorm frame length
    norm_window: int        # dynaudnorm gaussian window (frames)
    clarity_gain_db: float
    clarity_freq_hz: int


_PROFILES: Dict[OutputFormat, EnhancementProfile] = {
    OutputFormat.PCM: EnhancementProfile(1.25, 20, 0.25, 150, 15, 1.5, 8000),
    OutputFormat.TRUEHD: EnhancementProfile(1.35, 18, 0.30, 200, 21, 2.0, 9000),
    OutputFormat.DTS: EnhancementProfile(1.30, 22, 0.28, 180, 17, 2.5, 7500),
    OutputFormat.THX: EnhancementProfile(1.40, 15, 0.32, 250, 25, 2.0, 10000),
}

# Per output channel: (gain on input FL, gain on input FR).
_PAN_5_1: Tuple[Tuple[str, float, float], ...] = (
    ("FL", 1.0, 0.0),
    ("FR", 0.0, 1.0),
    ("FC", 0.5, 0.5),
    ("LFE", 0.1, 0.1),
    ("SL", 0.5, 0.0),
    ("SR", 0.0, 0.5),
)

_PAN_7_1: Tuple[Tuple[str, float, float], ...] = (
    ("FL", 1.0, 0.0),
    ("FR", 0.0, 1.0),
    ("FC", 0.5, 0.5),
    ("LFE", 0.1, 0.1),
    ("BL", 0.3, 0.0),
    ("BR", 0.0, 0.3),
    ("SL", 0.7, 0.0),
    ("SR", 0.0, 0.7),
)

# Heights blend the front feed (TF*) and the rear surround feed (TB*).
_PAN_7_1_4: Tuple[Tuple[str, float, float], ...] = _PAN_7_1 + (
    ("TFL", 0.2, 0.0),
    ("TFR", 0.0, 0.2),
    ("TBL", 0.1, 0.0),
    ("TBR", 0.0, 0.1),
)

_PAN_MATRICES: Dict[str, Tuple[Tuple[str, float, float], ...]] = {
    "5.1": _PAN_5_1,
    "7.1": _PAN_7_1,
    "7.1.4": _PAN_7_1_4,
}

# Stem-mix constants
STEM_GAINS: Dict[str, float] = {"vocals": 1.0, "drums": 0.9, "bass": 1.0, "other": 0.85}
CENTER_WEIGHTS = (0.8, 0.2)        # vocals, bass
LFE_CUTOFF_HZ = 120
SURROUND_WIDEN = 1.6
SURROUND_DELAY_MS = 12
BACK_GAIN = 0.6
HEIGHT_WEIGHTS = (0.3, 0.7)        # vocals, other
HEIGHT_HIGHPASS_HZ = 500
HEIGHT_BACK_GAIN = 0.7


def _fmt(value: float) -> str:
    return f"{value:g}"


def _pan_term(gain: float, channel: str) -> str:
    return channel if gain == 1.0 else f"{_fmt(gain)}*{channel}"


def _pan_args(layout: ChannelLayout) -> str:
    parts = [layout.ffmpeg_layout]
    for out_ch, g_left, g_right in _PAN_MATRICES[layout.label]:
        terms = []
        if g_left:
            terms.append(_pan_term(g_left, "FL"))
        if g_right:
            terms.append(_pan_term(g_right, "FR"))
        parts.append(f"{out_ch}={'+'.join(terms)}")
    return "|".join(parts)


def _enhancement_stages(profile: EnhancementProfile) -> List[Stage]:
    return [
        Stage("widen", "extrastereo", f"m={_fmt(profile.widen)}"),
        Stage(
            "depth",
            "aecho",
            f"0.8:0.88:{profile.echo_delay_ms}:{_fmt(profile.echo_decay)}",
        ),
        Stage("normalize", "dynaudnorm", f"f={profile.norm_frame_ms}:g={profile.norm_window}"),
        Stage(
            "clarity",
            "treble",
            f"g={_fmt(profile.clarity_gain_db)}:f={profile.clarity_freq_hz}",
        ),
    ]


def _chain(fmt: OutputFormat, layout: ChannelLayout) -> FilterGraphSpec:
    stages = _enhancement_stages(_PROFILES[fmt])
    stages.append(Stage("pan", "pan", _pan_args(layout)))
    return FilterGraphSpec(kind=KIND_CHAIN, stages=tuple(stages), output_layout=layout.ffmpeg_layout)


def _identity(layout: ChannelLayout) -> FilterGraphSpec:
    stage = Stage("format", "aformat", f"channel_layouts={layout.ffmpeg_layout}")
    return FilterGraphSpec(kind=KIND_CHAIN, stages=(stage,), output_layout=layout.ffmpeg_layout)


def _stem_mix(layout: ChannelLayout) -> FilterGraphSpec:
    """Combine vocals/drums/bass/other into the 7.1.4 bed."""
    v, d, b, o = (f"{i}:a" for i in range(len(STEM_NAMES)))
    stages = [
        Stage("gain_vocals", "volume", _fmt(STEM_GAINS["vocals"]), (v,), ("voc",)),
        Stage("gain_drums", "volume", _fmt(STEM_GAINS["drums"]), (d,), ("drm",)),
        Stage("gain_bass", "volume", _fmt(STEM_GAINS["bass"]), (b,), ("bas",)),
        Stage("gain_other", "volume", _fmt(STEM_GAINS["other"]), (o,), ("oth",)),
        Stage("split_vocals", "asplit", "2", ("voc",), ("voc_c", "voc_h")),
        Stage("split_drums", "asplit", "2", ("drm",), ("drm_f", "drm_b")),
        Stage("split_bass", "asplit", "3", ("bas",), ("bas_f", "bas_c", "bas_l")),
        Stage("split_other", "asplit", "3", ("oth",), ("oth_f", "oth_s", "oth_h")),
        Stage("front", "amix", "inputs=3:normalize=0", ("drm_f", "bas_f", "oth_f"), ("front",)),
        Stage(
            "center",
            "amix",
            f"inputs=2:weights={_fmt(CENTER_WEIGHTS[0])} {_fmt(CENTER_WEIGHTS[1])}:normalize=0,"
            "pan=mono|c0=0.5*c0+0.5*c1",
            ("voc_c", "bas_c"),
            ("center",),
        ),
        Stage(
            "lfe",
            "lowpass",
            f"f={LFE_CUTOFF_HZ},pan=mono|c0=0.5*c0+0.5*c1",
            ("bas_l",),
            ("lfe",),
        ),
        Stage(
            "surround",
            "extrastereo",
            f"m={_fmt(SURROUND_WIDEN)},adelay={SURROUND_DELAY_MS}|{SURROUND_DELAY_MS},asplit=2",
            ("oth_s",),
            ("side", "sur_b"),
        ),
        Stage("back", "amix", f"inputs=2:normalize=0,volume={_fmt(BACK_GAIN)}", ("sur_b", "drm_b"), ("back",)),
        Stage(
            "height",
            "amix",
            f"inputs=2:weights={_fmt(HEIGHT_WEIGHTS[0])} {_fmt(HEIGHT_WEIGHTS[1])}:normalize=0,"
            f"highpass=f={HEIGHT_HIGHPASS_HZ},asplit=2",
            ("voc_h", "oth_h"),
            ("top_f", "top_b_raw"),
        ),
        Stage("height_back", "volume", _fmt(HEIGHT_BACK_GAIN), ("top_b_raw",), ("top_b",)),
        Stage(
            "merge",
            "join",
            f"inputs=7:channel_layout={layout.ffmpeg_layout}:map="
            "0.0-FL|0.1-FR|1.0-FC|2.0-LFE|3.0-BL|3.1-BR|4.0-SL|4.1-SR|"
            "5.0-TFL|5.1-TFR|6.0-TBL|6.1-TBR",
            ("front", "center", "lfe", "back", "side", "top_f", "top_b"),
            ("out",),
        ),
    ]
    return FilterGraphSpec(
        kind=KIND_STEM_MIX,
        stages=tuple(stages),
        output_layout=layout.ffmpeg_layout,
        inputs=STEM_NAMES,
        output_label="out",
    )


def build(fmt: OutputFormat, layout: ChannelLayout, quality: Quality, ai_mode: bool = False) -> FilterGraphSpec:
    """Build the processing spec for one configuration.

    `quality` does not change the graph; encoding parameters carry it.
    A layout that does not belong to `fmt` yields the format's 7.1 chain.
    """
    if layout not in allowed_layouts(fmt):
        fallback = default_layout(fmt)
        logger.warning(
            f"Layout {layout.label} is not offered for {fmt.display_name}; using {fallback.label} chain"
        )
        return _chain(fmt, fallback)
    if layout.label == "2.0":
        return _identity(layout)
    if layout.has_height and ai_mode:
        return _stem_mix(layout)
    return _chain(fmt, layout)

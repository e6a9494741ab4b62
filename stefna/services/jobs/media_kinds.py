"""
Media-kind table: one entry per generation mode.
Maps kind -> job table, provider cascade (cheap/fast first), cost and generation controls,
so that dedup, ledger and cascade logic is written once.
"""
from dataclasses import dataclass, field

from stefna.models.generation_job import JOB_MODELS, MediaKind
from stefna.services.generation.base import ProviderRef


@dataclass(frozen=True)
class MediaKindSpec:
    kind: MediaKind
    action: str  # ledger action label
    providers: tuple[ProviderRef, ...]
    cost: int = 2
    resource_type: str = "image"
    prompt_suffix: str = ""
    strength: float | None = 0.45
    guidance_scale: float | None = 7.5
    steps: int | None = 30
    aspect_ratio: str | None = None
    requires_source: bool = True
    extra_params: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def model(self) -> type:
        return JOB_MODELS[self.kind]


REPLICATE_FALLBACKS = (
    ProviderRef("replicate", "banian/realistic-vision-v51", {"strength": 0.3, "guidance_scale": 7.0}),
    ProviderRef("replicate", "lucataco/sdxl-img2img", {"strength": 0.4, "guidance_scale": 7.5}),
    ProviderRef("replicate", "segmind/realvisxl-v3-img2img", {"strength": 0.35, "guidance_scale": 7.0}),
)

PHOTO_FALLBACKS = (
    ProviderRef("aiml", "flux/dev/image-to-image"),
    ProviderRef("fal", "fal-ai/flux/schnell/redux"),
    ProviderRef("fal", "fal-ai/flux-1/schnell/redux"),
    ProviderRef("fal", "fal-ai/flux-pro/kontext"),
) + REPLICATE_FALLBACKS

PHOTO_CASCADE = (ProviderRef("bfl", "flux-pro-1.1"),) + PHOTO_FALLBACKS

EMOTION_CASCADE = (ProviderRef("bfl", "flux-pro-1.1-raw"),) + PHOTO_FALLBACKS

GHIBLI_CASCADE = (
    ProviderRef("bfl", "flux-pro-1.1-ultra"),
    ProviderRef("bfl", "flux-pro-1.1"),
    ProviderRef("aiml", "flux/dev/image-to-image"),
    ProviderRef("fal", "fal-ai/ghiblify"),
    ProviderRef("fal", "fal-ai/flux-pro/kontext"),
) + REPLICATE_FALLBACKS

NEO_GLITCH_CASCADE = (
    ProviderRef("stability", "core"),
    ProviderRef("stability", "sd3"),
    ProviderRef("stability", "ultra"),
) + REPLICATE_FALLBACKS

STORY_TIME_CASCADE = (
    ProviderRef("fal", "fal-ai/wan-pro/image-to-video"),
    ProviderRef("fal", "fal-ai/kling-video/v1.6/standard/image-to-video"),
    ProviderRef("fal", "fal-ai/pixverse/v4.5/image-to-video"),
    ProviderRef("fal", "fal-ai/kling-video/v1.6/pro/image-to-video"),
)


MEDIA_KINDS: dict[MediaKind, MediaKindSpec] = {
    MediaKind.PRESETS: MediaKindSpec(
        kind=MediaKind.PRESETS,
        action="presets_generation",
        providers=PHOTO_CASCADE,
        aspect_ratio="4:5",
    ),
    MediaKind.CUSTOM: MediaKindSpec(
        kind=MediaKind.CUSTOM,
        action="custom_prompt_generation",
        providers=PHOTO_CASCADE,
        aspect_ratio="4:5",
        requires_source=False,
    ),
    MediaKind.EMOTION_MASK: MediaKindSpec(
        kind=MediaKind.EMOTION_MASK,
        action="emotion_mask_generation",
        providers=EMOTION_CASCADE,
        aspect_ratio="4:5",
        prompt_suffix="preserve facial identity, keep the same person, natural skin texture",
    ),
    MediaKind.GHIBLI_REACTION: MediaKindSpec(
        kind=MediaKind.GHIBLI_REACTION,
        action="ghibli_reaction_generation",
        providers=GHIBLI_CASCADE,
        aspect_ratio="4:5",
        strength=0.35,
        guidance_scale=6.0,
        prompt_suffix="subtle ghibli-inspired lighting, soft pastel tones, keep the same face and expression",
    ),
    MediaKind.NEO_GLITCH: MediaKindSpec(
        kind=MediaKind.NEO_GLITCH,
        action="neo_glitch_generation",
        providers=NEO_GLITCH_CASCADE,
        aspect_ratio="16:9",
        prompt_suffix="neo tokyo glitch aesthetic, neon cyberpunk lighting, holographic distortion",
    ),
    MediaKind.STORY_TIME: MediaKindSpec(
        kind=MediaKind.STORY_TIME,
        action="story_time_generate",
        providers=STORY_TIME_CASCADE,
        resource_type="video",
        aspect_ratio="9:16",
        strength=None,
        guidance_scale=None,
        steps=None,
    ),
}


def parse_media_kind(value: str | MediaKind) -> MediaKind:
    """Accept enum values and the hyphenated/camel spellings clients send."""
    if isinstance(value, MediaKind):
        return value
    normalized = (value or "").strip().lower().replace("-", "_")
    aliases = {
        "custom_prompt": "custom",
        "emotionmask": "emotion_mask",
        "ghiblireaction": "ghibli_reaction",
        "neoglitch": "neo_glitch",
        "storytime": "story_time",
        "preset": "presets",
    }
    normalized = aliases.get(normalized, normalized)
    return MediaKind(normalized)


def get_media_kind_spec(kind: str | MediaKind) -> MediaKindSpec:
    return MEDIA_KINDS[parse_media_kind(kind)]


def build_prompt(spec: MediaKindSpec, prompt: str) -> str:
    prompt = prompt.strip()
    if spec.prompt_suffix:
        return f"{prompt}, {spec.prompt_suffix}"
    return prompt

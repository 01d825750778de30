"""
Static model catalog and style presets.
"""
from typing import Dict

from .models import ModelDescriptor

MODELS: Dict[str, ModelDescriptor] = {
    "backgroundRemover": ModelDescriptor(
        id="851-labs/background-remover",
        name="Background Remover",
    ),
    "aiEnhancer": ModelDescriptor(
        id="tencentarc/vqfr",
        name="VQFR Enhancer",
    ),
    "avatarCreator": ModelDescriptor(
        id="bytedance/pulid",
        name="Pulid Avatar",
    ),
    "textToImage": ModelDescriptor(
        id="bytedance/sdxl-lightning-4step",
        name="SDXL Lightning",
    ),
    "imageUpscale": ModelDescriptor(
        id="sczhou/codeformer",
        name="CodeFormer Upscale",
    ),
    "aiArt": ModelDescriptor(
        id="fofr/become-image",
        name="Become Image",
    ),
    "magicEraser": ModelDescriptor(
        id="stability-ai/stable-diffusion-inpainting:95a366c6de1b434f8c9b330b31b6b5b5b0c6a15aa0b12de8ffe033c4908939a5",
        name="Inpainting",
    ),
    "styleTransfer": ModelDescriptor(
        id="stability-ai/stable-diffusion:27b93a2413e7f36cd83da926f3656280b2931564ff050bf9575f1fdf9bcd7478",
        name="Style Transfer",
    ),
    "mockupGenerator": ModelDescriptor(
        id="bria/generate-background",
        name="Mockup Generator",
    ),
}

_SDXL_LIGHTNING = "lucataco/sdxl-lightning-4step:727e49a643e999d962a5a7c9b5cdf92ea7f63badacf55a5b4d5613b55b1f7c24"

STYLES: Dict[str, Dict[str, str]] = {
    "anime": {
        "name": "Anime Style",
        "description": "Transform your photo into anime artwork",
        "model": _SDXL_LIGHTNING,
        "prompt": "anime style, masterpiece, high quality, detailed face, vibrant colors",
    },
    "oil_painting": {
        "name": "Oil Painting",
        "description": "Classic oil painting style",
        "model": _SDXL_LIGHTNING,
        "prompt": "oil painting, classical art, brush strokes, masterpiece, framed",
    },
    "cyberpunk": {
        "name": "Cyberpunk",
        "description": "Futuristic neon cyberpunk style",
        "model": _SDXL_LIGHTNING,
        "prompt": "cyberpunk, neon lights, futuristic, sci-fi, detailed, night city",
    },
    "watercolor": {
        "name": "Watercolor",
        "description": "Beautiful watercolor painting effect",
        "model": _SDXL_LIGHTNING,
        "prompt": "watercolor painting, soft edges, artistic, beautiful colors",
    },
    "pixel_art": {
        "name": "Pixel Art",
        "description": "Retro pixel art style",
        "model": _SDXL_LIGHTNING,
        "prompt": "pixel art, 8-bit, retro video game style, low resolution",
    },
    "fantasy": {
        "name": "Fantasy Art",
        "description": "Magical fantasy artwork style",
        "model": _SDXL_LIGHTNING,
        "prompt": "fantasy art, magical, mystical, dragons, castles, detailed",
    },
}


def style_descriptor(style_key: str) -> ModelDescriptor:
    style = STYLES[style_key]
    return ModelDescriptor(id=style["model"], name=style["name"])

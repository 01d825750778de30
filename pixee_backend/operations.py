"""
Image operations built on the prediction pipeline.

Каждая операция описывается OperationSpec: модель, префикс имени файла,
допустимое количество входных изображений и параметры по умолчанию.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .catalog import MODELS, STYLES, style_descriptor
from .exceptions import InvalidRequest, PipelineError
from .files import cleanup_files
from .images import image_size, normalize_mask, normalize_source_image
from .models import ModelDescriptor, OperationResult
from .pipeline import ImageInput, PredictionPipeline

logger = logging.getLogger(__name__)

AVATAR_NEGATIVE_PROMPT = (
    "flaws in the eyes, flaws in the face, flaws, lowres, non-HDRi, low quality, worst quality, "
    "artifacts noise, text, watermark, glitch, deformed, mutated, ugly, disfigured, hands, "
    "low resolution, partially rendered objects, deformed or partially rendered eyes, deformed, "
    "deformed eyeballs, cross-eyed, blurry"
)


@dataclass(frozen=True)
class InputFile:
    """A staged upload handed over by the HTTP layer."""
    path: str
    mime_type: Optional[str] = None


@dataclass(frozen=True)
class OperationSpec:
    name: str
    model_key: str
    prefix: str
    message: str
    # Input key for each image position; its length is the maximum arity
    image_keys: Tuple[str, ...] = ("image",)
    min_images: int = 1
    # Extra input keys that receive a copy of an image reference
    aliases: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)
    multi_output: bool = False

    @property
    def max_images(self) -> int:
        return len(self.image_keys)


OPERATIONS: Dict[str, OperationSpec] = {
    spec.name: spec
    for spec in (
        OperationSpec(
            name="background_remover",
            model_key="backgroundRemover",
            prefix="no-bg",
            message="Background removed",
            defaults={"format": "png"},
        ),
        OperationSpec(
            name="enhancer",
            model_key="aiEnhancer",
            prefix="enhanced",
            message="Image enhanced",
            defaults={"scale": 2},
        ),
        OperationSpec(
            name="magic_eraser",
            model_key="magicEraser",
            prefix="erased",
            message="Object removed",
            image_keys=("image", "mask"),
            min_images=2,
        ),
        OperationSpec(
            name="avatar_creator",
            model_key="avatarCreator",
            prefix="avatar-creator",
            message="Avatar created successfully",
            image_keys=(
                "main_face_image",
                "auxiliary_face_image1",
                "auxiliary_face_image2",
                "auxiliary_face_image3",
            ),
            defaults={
                "prompt": "a portrait of a person",
                "cfg_scale": 1.2,
                "num_steps": 4,
                "num_samples": 4,
                "image_width": 1024,
                "image_height": 1024,
                "output_format": "webp",
                "identity_scale": 0.8,
                "mix_identities": False,
                "output_quality": 80,
                "generation_mode": "fidelity",
                "negative_prompt": AVATAR_NEGATIVE_PROMPT,
            },
            multi_output=True,
        ),
        OperationSpec(
            name="text_to_image",
            model_key="textToImage",
            prefix="text-to-image",
            message="Image generated",
            image_keys=(),
            min_images=0,
            defaults={
                "width": 1024,
                "height": 1024,
                "negative_prompt": "low quality",
                "num_outputs": 1,
            },
        ),
        OperationSpec(
            name="upscale",
            model_key="imageUpscale",
            prefix="upscaled",
            message="Image upscaled",
            aliases={"image": ("img", "image_url")},
            defaults={
                "scale": 4,
                "upscale": 4,
                "face_upsample": True,
                "background_enhance": True,
                "codeformer_fidelity": 0.1,
            },
        ),
        OperationSpec(
            name="style_transfer",
            model_key="styleTransfer",
            prefix="styled",
            message="Style applied",
            defaults={"prompt": "artistic style"},
        ),
        OperationSpec(
            name="mockup",
            model_key="mockupGenerator",
            prefix="mockup",
            message="Mockup created",
            defaults={"bg_prompt": "professional"},
        ),
        OperationSpec(
            name="ai_art",
            model_key="aiArt",
            prefix="ai-art",
            message="AI Art generated successfully",
            image_keys=("image", "image_to_become"),
            defaults={
                "prompt": "a person",
                "prompt_strength": 2.0,
                "number_of_images": 1,
                "denoising_strength": 1.0,
                "instant_id_strength": 1.0,
                "image_to_become_noise": 0.3,
                "control_depth_strength": 0.8,
                "image_to_become_strength": 0.75,
                "negative_prompt": "",
                "num_steps": 30,
                "cfg_scale": 1.5,
            },
        ),
    )
}


def _coerce(key: str, value: Any, default: Any) -> Any:
    if default is None or isinstance(value, type(default)) and not isinstance(value, bool):
        return value
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("true", "1", "yes", "on")
            return bool(value)
        if isinstance(default, int):
            return int(float(value))
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidRequest(f"Invalid value for '{key}': {value!r}") from e
    return value


def build_params(defaults: Mapping[str, Any], options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merge caller options over operation defaults.

    Values are coerced to the default's type (form fields arrive as strings);
    unknown keys are passed through untouched.
    """
    params = dict(defaults)
    for key, value in (options or {}).items():
        if value is None or value == "":
            continue
        params[key] = _coerce(key, value, defaults.get(key))
    return params


def check_arity(spec: OperationSpec, files: Sequence[InputFile]) -> None:
    if len(files) < spec.min_images:
        raise InvalidRequest(
            f"{spec.name} needs at least {spec.min_images} image(s), got {len(files)}", stage="prepare"
        )
    if len(files) > spec.max_images:
        raise InvalidRequest(
            f"{spec.name} accepts at most {spec.max_images} image(s), got {len(files)}", stage="prepare"
        )


async def execute(
    pipeline: PredictionPipeline,
    spec: OperationSpec,
    files: Sequence[InputFile],
    options: Optional[Mapping[str, Any]] = None,
    *,
    model: Optional[ModelDescriptor] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    handed_files: Optional[Sequence[InputFile]] = None,
    temp_files: Sequence[str] = (),
) -> OperationResult:
    """
    Shared upload -> submit -> poll -> extract -> persist flow.

    ``handed_files`` are the caller's staged inputs, deleted on failure
    (defaults to ``files``). ``temp_files`` were created for this request and
    are always deleted.
    """
    handed = list(handed_files if handed_files is not None else files)
    started = time.monotonic()
    try:
        check_arity(spec, files)
        params = build_params(spec.defaults, options)
        if overrides:
            params.update(overrides)

        image_inputs: Dict[str, ImageInput] = {}
        for key, input_file in zip(spec.image_keys, files):
            prepared = await pipeline.prepare_image(spec.name, input_file.path, input_file.mime_type)
            for target in (key,) + tuple(spec.aliases.get(key, ())):
                params[target] = prepared.reference
                image_inputs[target] = prepared

        prediction = await pipeline.run_prediction(
            spec.name, model or MODELS[spec.model_key], params, image_inputs
        )
        artifacts = await pipeline.persist_outputs(
            spec.name, prediction, spec.prefix, multi=spec.multi_output
        )
    except PipelineError as e:
        logger.error(
            "❌ [%s] %s at stage '%s': %s", spec.name, e.category, e.stage or "unknown", e.message
        )
        cleanup_files(f.path for f in handed)
        raise
    except Exception:
        logger.exception("❌ [%s] Unexpected error", spec.name)
        cleanup_files(f.path for f in handed)
        raise
    finally:
        cleanup_files(temp_files)

    logger.info(
        "✅ [%s] %d image(s) saved in %.2fs", spec.name, len(artifacts), time.monotonic() - started
    )
    return OperationResult(
        operation=spec.name,
        message=spec.message,
        artifacts=artifacts,
        prediction_id=prediction.id,
    )


async def remove_background(pipeline, image: InputFile, options=None) -> OperationResult:
    return await execute(pipeline, OPERATIONS["background_remover"], [image], options)


async def enhance_image(pipeline, image: InputFile, options=None) -> OperationResult:
    return await execute(pipeline, OPERATIONS["enhancer"], [image], options)


async def upscale_image(pipeline, image: InputFile, options=None) -> OperationResult:
    return await execute(pipeline, OPERATIONS["upscale"], [image], options)


async def create_mockup(pipeline, image: InputFile, options=None) -> OperationResult:
    return await execute(pipeline, OPERATIONS["mockup"], [image], options)


async def style_transfer(pipeline, image: InputFile, options=None) -> OperationResult:
    """Apply a style preset (``options["style"]``) or a free-form prompt."""
    spec = OPERATIONS["style_transfer"]
    options = dict(options or {})
    style_key = options.pop("style", None)

    model = None
    if style_key:
        if style_key not in STYLES:
            cleanup_files([image.path])
            raise InvalidRequest(f"Unknown style: {style_key}", stage="prepare")
        model = style_descriptor(style_key)
        options.setdefault("prompt", STYLES[style_key]["prompt"])
    return await execute(pipeline, spec, [image], options, model=model)


async def text_to_image(pipeline, options: Mapping[str, Any]) -> OperationResult:
    prompt = (options or {}).get("prompt")
    if not prompt or not str(prompt).strip():
        raise InvalidRequest("Prompt required", stage="prepare")
    return await execute(pipeline, OPERATIONS["text_to_image"], [], options)


async def create_avatar(pipeline, images: Sequence[InputFile], options=None) -> OperationResult:
    """Main face image first, then up to three auxiliary face images."""
    return await execute(pipeline, OPERATIONS["avatar_creator"], list(images), options)


async def ai_art(pipeline, images: Sequence[InputFile], options=None) -> OperationResult:
    """
    Source image plus the image to become, given either as a second upload
    or as ``options["image_to_become_url"]``.
    """
    spec = OPERATIONS["ai_art"]
    options = dict(options or {})
    target_url = options.pop("image_to_become_url", None)

    overrides = None
    if len(images) < 2:
        if not target_url:
            cleanup_files(f.path for f in images)
            raise InvalidRequest(
                "No target image provided (upload second image or provide image_to_become_url)",
                stage="prepare",
            )
        overrides = {"image_to_become": target_url}
    return await execute(pipeline, spec, list(images), options, overrides=overrides)


async def magic_eraser(pipeline, image: InputFile, mask: InputFile, options=None) -> OperationResult:
    """
    Inpainting: normalize the source to RGB JPEG and the mask to a binary
    PNG of the same size, then run the model on the pair.
    """
    spec = OPERATIONS["magic_eraser"]
    temp_files: List[str] = []

    source = image
    try:
        source = InputFile(normalize_source_image(image.path), "image/jpeg")
        temp_files.append(source.path)
    except Exception as e:
        logger.warning("[%s] Failed to normalize source image, using original: %s", spec.name, e)

    normalized_mask = mask
    size = image_size(image.path)
    if size:
        try:
            normalized_mask = InputFile(normalize_mask(mask.path, size), "image/png")
            temp_files.append(normalized_mask.path)
        except Exception as e:
            logger.warning("[%s] Failed to normalize mask, using original: %s", spec.name, e)
    else:
        logger.warning("[%s] Image dimensions unknown, mask left as uploaded", spec.name)

    return await execute(
        pipeline,
        spec,
        [source, normalized_mask],
        options,
        handed_files=[image, mask],
        temp_files=temp_files,
    )


async def run_operation(
    pipeline: PredictionPipeline,
    name: str,
    files: Sequence[InputFile] = (),
    options: Optional[Mapping[str, Any]] = None,
) -> OperationResult:
    """Dispatch by operation name."""
    files = list(files)
    if name not in OPERATIONS:
        raise InvalidRequest(f"Unknown operation: {name}")
    if name == "text_to_image":
        return await text_to_image(pipeline, options or {})
    if name == "magic_eraser":
        if len(files) != 2:
            cleanup_files(f.path for f in files)
            raise InvalidRequest("magic_eraser needs an image and a mask", stage="prepare")
        return await magic_eraser(pipeline, files[0], files[1], options)
    if name == "avatar_creator":
        return await create_avatar(pipeline, files, options)
    if name == "ai_art":
        return await ai_art(pipeline, files, options)
    if len(files) != 1:
        cleanup_files(f.path for f in files)
        raise InvalidRequest(f"{name} needs exactly one image", stage="prepare")

    handlers = {
        "background_remover": remove_background,
        "enhancer": enhance_image,
        "upscale": upscale_image,
        "style_transfer": style_transfer,
        "mockup": create_mockup,
    }
    return await handlers[name](pipeline, files[0], options)

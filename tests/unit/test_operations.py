import os
from unittest.mock import AsyncMock, Mock

import pytest

from pixee_backend.catalog import MODELS, STYLES
from pixee_backend.exceptions import (
    DownloadFailed,
    InvalidRequest,
    PredictionFailed,
    UpstreamError,
)
from pixee_backend.models import PersistedArtifact, Prediction
from pixee_backend.operations import (
    InputFile,
    ai_art,
    build_params,
    create_avatar,
    magic_eraser,
    remove_background,
    run_operation,
    style_transfer,
    text_to_image,
    upscale_image,
)
from pixee_backend.pipeline import PredictionPipeline, is_unsupported_reference_error

HOSTED = "https://api.replicate.com/v1/files/f1"


def artifact(name):
    return PersistedArtifact(filename=name, absolute_path=f"/tmp/{name}", public_path=f"/processed/{name}")


def succeeded(output="https://replicate.delivery/out.png"):
    return Prediction(id="p1", version="v1", status="succeeded", output=output)


@pytest.fixture
def pipeline():
    chain = Mock()
    chain.resolve_with_strategy = AsyncMock(return_value=(HOSTED, "remote"))
    runner = Mock()
    runner.run = AsyncMock(return_value=succeeded())
    persister = Mock()

    async def persist(reference, prefix):
        return artifact(f"{prefix}-1.png")

    persister.persist = AsyncMock(side_effect=persist)
    return PredictionPipeline(chain, runner, persister)


@pytest.fixture
def make_image(tmp_path, png_bytes):
    counter = iter(range(100))

    def factory(name=None):
        path = tmp_path / (name or f"upload-{next(counter)}.png")
        path.write_bytes(png_bytes)
        return InputFile(str(path), "image/png")

    return factory


class TestBuildParams:
    """Тесты слияния параметров"""

    def test_form_strings_are_coerced(self):
        """Тест приведения строк формы к типам параметров"""
        params = build_params(
            {"scale": 4, "face_upsample": True, "fidelity": 0.1, "prompt": "x"},
            {"scale": "2", "face_upsample": "false", "fidelity": "0.5", "extra": "kept"},
        )
        assert params == {"scale": 2, "face_upsample": False, "fidelity": 0.5, "prompt": "x", "extra": "kept"}

    def test_empty_values_keep_defaults(self):
        """Тест сохранения значений по умолчанию для пустых полей"""
        assert build_params({"scale": 4}, {"scale": ""}) == {"scale": 4}

    def test_invalid_number(self):
        """Тест ошибки при некорректном числе"""
        with pytest.raises(InvalidRequest):
            build_params({"scale": 4}, {"scale": "big"})


class TestSingleImageOperations:
    """Тесты операций с одним изображением"""

    @pytest.mark.asyncio
    async def test_remove_background(self, pipeline, make_image):
        """Тест операции удаления фона"""
        image = make_image()

        result = await remove_background(pipeline, image)

        model, params = pipeline.runner.run.await_args.args
        assert model == MODELS["backgroundRemover"]
        assert params == {"format": "png", "image": HOSTED}
        assert result.operation == "background_remover"
        assert result.download_url == "/processed/no-bg-1.png"
        assert result.prediction_id == "p1"
        # successful runs leave the caller's files alone
        assert os.path.exists(image.path)

    @pytest.mark.asyncio
    async def test_upscale_sends_image_under_all_keys(self, pipeline, make_image):
        """Тест передачи изображения под всеми ключами upscale"""
        await upscale_image(pipeline, make_image(), {"scale": "2"})

        _, params = pipeline.runner.run.await_args.args
        assert params["image"] == params["img"] == params["image_url"] == HOSTED
        assert params["scale"] == 2
        assert params["upscale"] == 4

    @pytest.mark.asyncio
    async def test_style_preset(self, pipeline, make_image):
        """Тест применения стилевого пресета"""
        await style_transfer(pipeline, make_image(), {"style": "anime"})

        model, params = pipeline.runner.run.await_args.args
        assert model.id == STYLES["anime"]["model"]
        assert params["prompt"] == STYLES["anime"]["prompt"]
        assert "style" not in params

    @pytest.mark.asyncio
    async def test_unknown_style(self, pipeline, make_image):
        """Тест ошибки для неизвестного стиля"""
        image = make_image()

        with pytest.raises(InvalidRequest):
            await style_transfer(pipeline, image, {"style": "baroque"})
        assert not os.path.exists(image.path)
        pipeline.runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_removes_inputs(self, pipeline, make_image):
        """Тест удаления входных файлов при ошибке"""
        pipeline.runner.run.return_value = Prediction(
            id="p1", version="v1", status="failed", error="NSFW content detected"
        )
        image = make_image()

        with pytest.raises(PredictionFailed) as exc_info:
            await remove_background(pipeline, image)

        assert exc_info.value.stage == "poll"
        assert "NSFW" in exc_info.value.message
        assert not os.path.exists(image.path)

    @pytest.mark.asyncio
    async def test_wrong_arity(self, pipeline, make_image):
        """Тест ошибки при неверном числе изображений"""
        with pytest.raises(InvalidRequest):
            await run_operation(pipeline, "enhancer", [make_image(), make_image()])

    @pytest.mark.asyncio
    async def test_unknown_operation(self, pipeline):
        """Тест ошибки для неизвестной операции"""
        with pytest.raises(InvalidRequest):
            await run_operation(pipeline, "object_detector", [])


class TestInlineResubmission:
    """Тесты повторной отправки с data URI"""

    def test_error_detection(self):
        """Тест распознавания ошибки неподдерживаемой ссылки"""
        assert is_unsupported_reference_error("Unsupported file type: application/octet-stream")
        assert is_unsupported_reference_error({"detail": "cannot identify image file"})
        assert not is_unsupported_reference_error("CUDA out of memory")
        assert not is_unsupported_reference_error(None)

    @pytest.mark.asyncio
    async def test_failed_job_resubmitted_inline(self, pipeline, make_image):
        """Тест повторной отправки с inline данными после сбоя задачи"""
        pipeline.runner.run.side_effect = [
            Prediction(id="p0", version="v1", status="failed", error="Unsupported image type"),
            succeeded(),
        ]

        result = await remove_background(pipeline, make_image())

        assert pipeline.runner.run.await_count == 2
        _, retry_params = pipeline.runner.run.await_args_list[1].args
        assert retry_params["image"].startswith("data:image/png;base64,")
        assert result.prediction_id == "p1"

    @pytest.mark.asyncio
    async def test_rejected_submission_resubmitted_inline(self, pipeline, make_image):
        """Тест повторной отправки с inline данными после отказа в приеме"""
        pipeline.runner.run.side_effect = [
            UpstreamError(422, {"detail": "Could not read the input image"}),
            succeeded(),
        ]

        await enhance(pipeline, make_image())

        assert pipeline.runner.run.await_count == 2

    @pytest.mark.asyncio
    async def test_no_resubmission_when_already_inline(self, pipeline, make_image):
        """Тест отсутствия повторной отправки для inline данных"""
        pipeline.chain.resolve_with_strategy.return_value = ("data:image/png;base64,AAAA", "inline")
        pipeline.runner.run.return_value = Prediction(
            id="p0", version="v1", status="failed", error="Unsupported file type"
        )

        with pytest.raises(PredictionFailed):
            await remove_background(pipeline, make_image())
        assert pipeline.runner.run.await_count == 1

    @pytest.mark.asyncio
    async def test_other_upstream_errors_propagate(self, pipeline, make_image):
        """Тест проброса прочих ошибок Replicate"""
        pipeline.runner.run.side_effect = UpstreamError(500, "internal error")

        with pytest.raises(UpstreamError):
            await remove_background(pipeline, make_image())
        assert pipeline.runner.run.await_count == 1


async def enhance(pipeline, image):
    return await run_operation(pipeline, "enhancer", [image])


class TestMultiImageOperations:
    """Тесты операций с несколькими изображениями"""

    @pytest.mark.asyncio
    async def test_avatar_keys(self, pipeline, make_image):
        """Тест ключей изображений для аватара"""
        images = [make_image() for _ in range(3)]

        await create_avatar(pipeline, images)

        _, params = pipeline.runner.run.await_args.args
        assert params["main_face_image"] == HOSTED
        assert params["auxiliary_face_image2"] == HOSTED
        assert "auxiliary_face_image3" not in params
        assert params["num_samples"] == 4

    @pytest.mark.asyncio
    async def test_avatar_too_many_images(self, pipeline, make_image):
        """Тест ошибки при слишком большом числе изображений"""
        images = [make_image() for _ in range(5)]

        with pytest.raises(InvalidRequest):
            await create_avatar(pipeline, images)
        assert not any(os.path.exists(i.path) for i in images)

    @pytest.mark.asyncio
    async def test_avatar_partial_success(self, pipeline, make_image):
        """Тест частичного успеха сохранения аватаров"""
        urls = [f"https://replicate.delivery/{i}.webp" for i in range(3)]
        pipeline.runner.run.return_value = succeeded(urls)
        pipeline.persister.persist.side_effect = [
            artifact("avatar-creator-1.webp"),
            DownloadFailed("HTTP 404"),
            artifact("avatar-creator-3.webp"),
        ]

        result = await create_avatar(pipeline, [make_image()])

        assert result.all_urls == ["/processed/avatar-creator-1.webp", "/processed/avatar-creator-3.webp"]
        prefixes = [call.args[1] for call in pipeline.persister.persist.await_args_list]
        assert prefixes == ["avatar-creator-1", "avatar-creator-2", "avatar-creator-3"]

    @pytest.mark.asyncio
    async def test_avatar_all_saves_fail(self, pipeline, make_image):
        """Тест ошибки, когда не сохранился ни один аватар"""
        pipeline.runner.run.return_value = succeeded(["https://a.test/1.png", "https://a.test/2.png"])
        pipeline.persister.persist.side_effect = [DownloadFailed("first"), DownloadFailed("second")]

        with pytest.raises(DownloadFailed) as exc_info:
            await create_avatar(pipeline, [make_image()])
        assert exc_info.value.message == "second"

    @pytest.mark.asyncio
    async def test_ai_art_with_target_url(self, pipeline, make_image):
        """Тест AI Art с целевым изображением по URL"""
        await ai_art(pipeline, [make_image()], {"image_to_become_url": "https://cdn.test/target.jpg"})

        _, params = pipeline.runner.run.await_args.args
        assert params["image"] == HOSTED
        assert params["image_to_become"] == "https://cdn.test/target.jpg"
        assert "image_to_become_url" not in params

    @pytest.mark.asyncio
    async def test_ai_art_without_target(self, pipeline, make_image):
        """Тест AI Art без целевого изображения"""
        image = make_image()

        with pytest.raises(InvalidRequest):
            await ai_art(pipeline, [image])
        assert not os.path.exists(image.path)

    @pytest.mark.asyncio
    async def test_text_to_image(self, pipeline):
        """Тест операции text-to-image"""
        result = await text_to_image(pipeline, {"prompt": "a red fox", "width": "512"})

        model, params = pipeline.runner.run.await_args.args
        assert model == MODELS["textToImage"]
        assert params["prompt"] == "a red fox"
        assert params["width"] == 512
        assert params["negative_prompt"] == "low quality"
        assert result.operation == "text_to_image"
        pipeline.chain.resolve_with_strategy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_to_image_requires_prompt(self, pipeline):
        """Тест обязательности промпта для text-to-image"""
        with pytest.raises(InvalidRequest):
            await text_to_image(pipeline, {"prompt": "   "})


class TestMagicEraser:
    """Тесты удаления объектов"""

    @pytest.mark.asyncio
    async def test_normalized_inputs_are_temporary(self, pipeline, make_image, monkeypatch, tmp_path):
        """Тест удаления нормализованных временных файлов"""
        monkeypatch.setattr("tempfile.tempdir", str(tmp_path))
        image, mask = make_image("image.png"), make_image("mask.png")

        await magic_eraser(pipeline, image, mask)

        resolved = [call.args for call in pipeline.chain.resolve_with_strategy.await_args_list]
        assert [mime for _, mime in resolved] == ["image/jpeg", "image/png"]
        # normalized copies are removed, the originals stay
        assert not any(os.path.exists(path) for path, _ in resolved)
        assert os.path.exists(image.path) and os.path.exists(mask.path)

        _, params = pipeline.runner.run.await_args.args
        assert params["image"] == params["mask"] == HOSTED

    @pytest.mark.asyncio
    async def test_requires_mask(self, pipeline, make_image):
        """Тест обязательности маски"""
        with pytest.raises(InvalidRequest):
            await run_operation(pipeline, "magic_eraser", [make_image()])

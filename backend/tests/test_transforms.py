import pytest

from gemini_fakes import image_response, text_response
from photo_studio import gemini, prompts, transforms
from photo_studio.transforms import BackgroundSpec, IdPhotoOptions, RestorationOptions


@pytest.fixture
def recorded_posts(monkeypatch):
    calls = []

    async def fake_post(_client, *, url, headers, payload):
        calls.append({"url": url, "payload": payload})
        return image_response()

    monkeypatch.setattr(gemini, "_gemini_post_json", fake_post)
    return calls


def _parts(call):
    return call["payload"]["contents"][0]["parts"]


def _image_data(call):
    return [p["inline_data"]["data"] for p in _parts(call) if "inline_data" in p]


@pytest.mark.asyncio
async def test_restore_sends_photo_then_clothing_then_reference(recorded_posts, credentials, settings, make_payload):
    photo = make_payload(b"photo")
    clothing = make_payload(b"clothing")
    reference = make_payload(b"reference")

    result = await transforms.restore_image(
        photo,
        RestorationOptions(custom_request="sepia tones"),
        clothing,
        reference,
        credentials=credentials,
        settings=settings,
    )

    assert result.ok
    call = recorded_posts[0]
    assert f"/models/{settings.image_model}:generateContent" in call["url"]
    assert _parts(call)[0]["text"].startswith(prompts.IDENTITY_DIRECTIVE)
    assert "sepia tones" in _parts(call)[0]["text"]
    assert _image_data(call) == [photo.data, clothing.data, reference.data]


@pytest.mark.asyncio
async def test_restore_skips_missing_optional_images(recorded_posts, credentials, settings, make_payload):
    photo = make_payload(b"photo")
    reference = make_payload(b"reference")

    await transforms.restore_image(photo, None, None, reference, credentials=credentials, settings=settings)

    assert _image_data(recorded_posts[0]) == [photo.data, reference.data]
    assert "Natural colors" in _parts(recorded_posts[0])[0]["text"]


@pytest.mark.asyncio
async def test_id_photo_prompt_has_directive_and_options(recorded_posts, credentials, settings, make_payload):
    await transforms.create_id_photo(
        make_payload(),
        IdPhotoOptions(background_color="blue", clothing_description="a white blouse"),
        credentials=credentials,
        settings=settings,
    )
    text = _parts(recorded_posts[0])[0]["text"]
    assert text.startswith(prompts.IDENTITY_DIRECTIVE)
    assert "blue background" in text
    assert "a white blouse" in text


@pytest.mark.asyncio
async def test_mimic_style_sends_subject_before_style(recorded_posts, credentials, settings, make_payload):
    subject = make_payload(b"subject")
    style = make_payload(b"style")

    await transforms.mimic_image_style(subject, style, credentials=credentials, settings=settings)

    assert _image_data(recorded_posts[0]) == [subject.data, style.data]


@pytest.mark.asyncio
async def test_remove_object_sends_mask_as_png(recorded_posts, credentials, settings, make_payload):
    photo = make_payload(b"photo", "image/jpeg")

    await transforms.remove_object(photo, "TUFTSw==", credentials=credentials, settings=settings)

    blobs = [p["inline_data"] for p in _parts(recorded_posts[0]) if "inline_data" in p]
    assert blobs[1] == {"mime_type": "image/png", "data": "TUFTSw=="}


@pytest.mark.asyncio
async def test_remove_object_passes_mask_type_through(recorded_posts, credentials, settings, make_payload):
    await transforms.remove_object(
        make_payload(b"photo"), "TUFTSw==", "image/webp", credentials=credentials, settings=settings
    )

    blobs = [p["inline_data"] for p in _parts(recorded_posts[0]) if "inline_data" in p]
    assert blobs[1]["mime_type"] == "image/webp"


@pytest.mark.asyncio
async def test_subject_background_prompt_goes_into_text(recorded_posts, credentials, settings, make_payload):
    subject = make_payload(b"subject")

    await transforms.change_subject_background(
        subject, BackgroundSpec(kind="prompt", value="a beach at sunset"), credentials=credentials, settings=settings
    )

    call = recorded_posts[0]
    assert "a beach at sunset" in _parts(call)[0]["text"]
    assert _image_data(call) == [subject.data]


@pytest.mark.asyncio
async def test_subject_background_image_is_sent_after_subject(recorded_posts, credentials, settings, make_payload):
    subject = make_payload(b"subject")
    backdrop = make_payload(b"backdrop")

    await transforms.change_subject_background(
        subject, BackgroundSpec(kind="image", value=backdrop), credentials=credentials, settings=settings
    )

    assert _image_data(recorded_posts[0]) == [subject.data, backdrop.data]


@pytest.mark.asyncio
async def test_invalid_arguments_fail_without_calling_gemini(recorded_posts, credentials, settings, make_payload):
    photo = make_payload()

    bad_color = await transforms.change_image_background(photo, "green", credentials=credentials, settings=settings)
    bad_factor = await transforms.upscale_image(photo, 0, credentials=credentials, settings=settings)
    bad_background = await transforms.change_subject_background(
        photo, BackgroundSpec(kind="image", value="not an image"), credentials=credentials, settings=settings
    )

    assert bad_color.error and not bad_color.ok
    assert bad_factor.error and not bad_factor.ok
    assert bad_background.error and not bad_background.ok
    assert recorded_posts == []


@pytest.mark.asyncio
async def test_upscale_prompt_mentions_factor(recorded_posts, credentials, settings, make_payload):
    await transforms.upscale_image(make_payload(), 4, credentials=credentials, settings=settings)
    assert "x4" in _parts(recorded_posts[0])[0]["text"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "call, failure",
    [
        (lambda img, kw: transforms.apply_pro_color(img, **kw), transforms.PRO_COLOR_FAILED),
        (lambda img, kw: transforms.recolor_image(img, "vintage film", **kw), transforms.RECOLOR_FAILED),
        (lambda img, kw: transforms.apply_artistic_style(img, "oil painting", **kw), transforms.STYLE_FAILED),
        (lambda img, kw: transforms.blur_background(img, "strong", **kw), transforms.BLUR_FAILED),
        (lambda img, kw: transforms.restore_document(img, **kw), transforms.DOCUMENT_FAILED),
        (lambda img, kw: transforms.generate_styled_image(img, "a poster", **kw), transforms.GENERATE_FAILED),
    ],
)
async def test_each_operation_reports_its_own_failure(monkeypatch, credentials, settings, make_payload, call, failure):
    async def fake_post(_client, *, url, headers, payload):
        return text_response("sorry")

    monkeypatch.setattr(gemini, "_gemini_post_json", fake_post)

    result = await call(make_payload(), {"credentials": credentials, "settings": settings})
    assert result.as_dict() == {"image": None, "error": failure}


def test_operations_registry_covers_every_endpoint():
    assert set(transforms.OPERATIONS) == {
        "restore",
        "id-photo",
        "change-background",
        "upscale",
        "remove-object",
        "pro-color",
        "recolor",
        "artistic-style",
        "blur-background",
        "restore-document",
        "mimic-style",
        "generate",
        "subject-background",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("name, value", [("GEMINI_TIMEOUT_S", "abc"), ("VIDEO_POLL_INTERVAL_S", "0")])
async def test_bad_environment_settings_come_back_as_error(
    recorded_posts, credentials, make_payload, monkeypatch, name, value
):
    monkeypatch.setenv(name, value)

    result = await transforms.apply_pro_color(make_payload(), credentials=credentials)

    assert not result.ok
    assert result.error
    assert recorded_posts == []


@pytest.mark.asyncio
async def test_invoker_resolves_bad_settings_inside_its_boundary(recorded_posts, credentials, make_payload, monkeypatch):
    monkeypatch.setenv("GEMINI_TIMEOUT_S", "abc")

    result = await gemini.invoke_image_transform(
        "m", gemini.build_parts("x", make_payload()), failure_message="f", credentials=credentials
    )

    assert result.image is None
    assert "abc" in result.error

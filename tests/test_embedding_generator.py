import os
import sys
import types
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config_manager import ConfigManager  # noqa: E402
from embedding_generator import (  # noqa: E402
    DEFAULT_MODEL,
    HuggingFaceApiGenerator,
    NullGenerator,
    PLACEHOLDER_API_KEY,
    SentenceTransformerGenerator,
    count_tokens,
    create_generator,
    synthetic_embedding,
)
from exceptions import GenerationError  # noqa: E402


def _response(status_code=200, body=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = body
    return response


def _generator(response=None, side_effect=None):
    session = MagicMock()
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        session.post.return_value = response
    return HuggingFaceApiGenerator("hf_testtoken123", session=session), session


# ------------------------------------------------------------------
# Synthetic fallback
# ------------------------------------------------------------------

def test_synthetic_is_deterministic_and_unit_length():
    a = synthetic_embedding("queen", 384)
    b = synthetic_embedding("queen", 384)
    np.testing.assert_array_equal(a, b)
    assert a.shape == (384,)
    assert np.linalg.norm(a) == pytest.approx(1.0)


def test_synthetic_differs_for_anagrams():
    assert not np.allclose(synthetic_embedding("listen", 16), synthetic_embedding("silent", 16))


def test_synthetic_rejects_empty_text():
    with pytest.raises(ValueError):
        synthetic_embedding("", 8)


def test_count_tokens():
    assert count_tokens("a") == 1
    assert count_tokens("abcdefgh") == 2


# ------------------------------------------------------------------
# Hugging Face API
# ------------------------------------------------------------------

def test_posts_expected_request():
    generator, session = _generator(_response(body=[0.1, 0.2, 0.3]))
    vector = generator.generate("queen")

    np.testing.assert_allclose(vector, [0.1, 0.2, 0.3])
    url = session.post.call_args.args[0]
    kwargs = session.post.call_args.kwargs
    assert url == f"https://api-inference.huggingface.co/models/{DEFAULT_MODEL}"
    assert kwargs["headers"]["Authorization"] == "Bearer hf_testtoken123"
    assert kwargs["json"] == {"inputs": "queen", "options": {"wait_for_model": True}}
    assert kwargs["timeout"] == 10.0


@pytest.mark.parametrize("body,expected", [
    ([[1.0, 2.0]], [1.0, 2.0]),
    ([[[1.0, 2.0], [3.0, 4.0]]], [2.0, 3.0]),
])
def test_nested_response_shapes(body, expected):
    generator, _ = _generator(_response(body=body))
    np.testing.assert_allclose(generator.generate("queen"), expected)


def test_non_200_raises_with_status():
    generator, _ = _generator(_response(status_code=503, text="loading"))
    with pytest.raises(GenerationError) as exc_info:
        generator.generate("queen")
    assert exc_info.value.status_code == 503
    assert exc_info.value.provider == "huggingface"


def test_transport_error_is_wrapped():
    generator, _ = _generator(side_effect=requests.ConnectionError("refused"))
    with pytest.raises(GenerationError) as exc_info:
        generator.generate("queen")
    assert isinstance(exc_info.value.__cause__, requests.ConnectionError)


@pytest.mark.parametrize("body", [{"error": "bad"}, "text", 5, [[[[1.0]]]]])
def test_malformed_body(body):
    generator, _ = _generator(_response(body=body))
    with pytest.raises(GenerationError):
        generator.generate("queen")


def test_missing_or_placeholder_key_is_not_configured():
    assert not HuggingFaceApiGenerator(None).is_configured
    assert not HuggingFaceApiGenerator(PLACEHOLDER_API_KEY).is_configured
    with pytest.raises(GenerationError):
        HuggingFaceApiGenerator(None, session=MagicMock()).generate("queen")


def test_key_read_from_environment(monkeypatch):
    monkeypatch.setenv("HUGGINGFACE_API_KEY", "hf_fromenvironment")
    assert HuggingFaceApiGenerator().is_configured


# ------------------------------------------------------------------
# Local model and factory
# ------------------------------------------------------------------

def test_local_generator_loads_model_once():
    model = MagicMock()
    model.encode.return_value = np.array([0.5, 0.5], dtype=np.float32)
    fake_module = types.SimpleNamespace(SentenceTransformer=MagicMock(return_value=model))

    with patch.dict(sys.modules, {"sentence_transformers": fake_module}):
        generator = SentenceTransformerGenerator("some/model")
        generator.generate("queen")
        vector = generator.generate("king")

    fake_module.SentenceTransformer.assert_called_once_with("some/model", cache_folder=None)
    assert vector.dtype == np.float64


def test_local_generator_wraps_failures():
    fake_module = types.SimpleNamespace(SentenceTransformer=MagicMock(side_effect=OSError("no model")))
    with patch.dict(sys.modules, {"sentence_transformers": fake_module}):
        with pytest.raises(GenerationError):
            SentenceTransformerGenerator("missing/model").generate("queen")


def test_null_generator():
    generator = NullGenerator()
    assert not generator.is_configured
    with pytest.raises(GenerationError):
        generator.generate("queen")


def test_create_generator_providers(monkeypatch):
    config = ConfigManager.in_memory({"api": {"huggingface": {"api_key": "hf_configuredkey"}}})
    generator = create_generator(config)
    assert isinstance(generator, HuggingFaceApiGenerator)
    assert generator.is_configured

    config.set("embedding.provider", "local", save=False)
    assert isinstance(create_generator(config), SentenceTransformerGenerator)

    config.set("embedding.provider", "none", save=False)
    assert isinstance(create_generator(config), NullGenerator)

    config.set("embedding.provider", "mystery", save=False)
    assert isinstance(create_generator(config), NullGenerator)

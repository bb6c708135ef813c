import numpy as np
import pytest

from core.errors import UnknownModelError, UnsupportedInputKindError
from embeddings import models
from embeddings.models import (
    HuggingFaceInferenceEmbeddingModel,
    ModelRegistry,
    SentenceTransformerEmbeddingModel,
    check_input_kind,
    require_capability,
)


class DummySentenceTransformer:
    def __init__(self, dims=3):
        self.dims = dims
        self.encoded = []

    def get_sentence_embedding_dimension(self):
        return self.dims

    def encode(self, texts, convert_to_numpy=True, show_progress_bar=False):
        self.encoded.append(list(texts))
        return np.array(
            [[float(len(t)), 1.0, 0.0][: self.dims] for t in texts], dtype="float32"
        )


class DummyInferenceClient:
    def __init__(self):
        self.calls = []

    def feature_extraction(self, text):
        self.calls.append(text)
        # Token-level output: two tokens of three features
        return np.array([[1.0, 2.0, 3.0], [3.0, 2.0, 1.0]], dtype="float32")


@pytest.mark.unit
def test_embed_multi_is_lazy_and_ordered(fake_model):
    fake_model.batch_size = 2
    stream = fake_model.embed_multi(["a", "b", "c"])
    assert fake_model.calls == []
    first = next(stream)
    assert fake_model.calls == [["a", "b"]]
    rest = list(stream)
    assert len(rest) == 2
    assert fake_model.calls == [["a", "b"], ["c"]]
    assert first == fake_model.embed("a")


@pytest.mark.unit
def test_embed_multi_caller_batch_size_overrides(fake_model):
    fake_model.batch_size = 2
    list(fake_model.embed_multi(["a", "b", "c", "d"], batch_size=3))
    assert [len(call) for call in fake_model.calls] == [3, 1]


@pytest.mark.unit
def test_embed_multi_checks_vector_count(fake_model, monkeypatch):
    monkeypatch.setattr(fake_model, "embed_batch", lambda items: [[0.0] * 16])
    with pytest.raises(ValueError):
        list(fake_model.embed_multi(["a", "b"]))


@pytest.mark.unit
def test_capability_checks(fake_model, binary_model):
    check_input_kind(fake_model, "text")
    check_input_kind(binary_model, b"bytes")
    with pytest.raises(UnsupportedInputKindError):
        check_input_kind(fake_model, b"bytes")
    with pytest.raises(UnsupportedInputKindError):
        check_input_kind(binary_model, "text")
    with pytest.raises(UnsupportedInputKindError):
        require_capability(fake_model, binary=True)
    with pytest.raises(UnsupportedInputKindError):
        fake_model.embed(b"\x00")


@pytest.mark.unit
def test_sentence_transformer_model_loads_lazily(monkeypatch):
    dummy = DummySentenceTransformer()
    loaded = []

    def fake_load(model_name, device):
        loaded.append((model_name, device))
        return dummy

    monkeypatch.setattr(models, "load_embedding_model", fake_load)
    model = SentenceTransformerEmbeddingModel("tiny-model")
    assert model.model_id == "sentence-transformers/tiny-model"
    assert loaded == []

    vectors = list(model.embed_multi(["ab", "abcd"]))
    assert vectors == [[2.0, 1.0, 0.0], [4.0, 1.0, 0.0]]
    assert model.dimensions == 3
    assert loaded == [("tiny-model", "cpu")]


@pytest.mark.unit
def test_hf_inference_model_mean_pools_tokens():
    client = DummyInferenceClient()
    model = HuggingFaceInferenceEmbeddingModel("org/model", api_token="", client=client)
    assert model.dimensions is None
    vector = model.embed("hello")
    assert vector == [2.0, 2.0, 2.0]
    assert model.dimensions == 3
    assert client.calls == ["hello"]


@pytest.mark.unit
def test_hf_inference_model_requires_token():
    with pytest.raises(ValueError):
        HuggingFaceInferenceEmbeddingModel("org/model", api_token="")


@pytest.mark.unit
def test_registry_resolves_registered_and_prefixed(fake_model, monkeypatch):
    registry = ModelRegistry([fake_model])
    assert "fake-words" in registry
    assert registry.get("fake-words") is fake_model

    monkeypatch.setattr(
        models, "load_embedding_model", lambda model_name, device: DummySentenceTransformer()
    )
    resolved = registry.get("sentence-transformers/all-MiniLM-L6-v2")
    assert isinstance(resolved, SentenceTransformerEmbeddingModel)
    assert resolved.model_name == "all-MiniLM-L6-v2"
    assert registry.get("sentence-transformers/all-MiniLM-L6-v2") is resolved
    assert registry.model_ids() == [
        "fake-words",
        "sentence-transformers/all-MiniLM-L6-v2",
    ]

    with pytest.raises(UnknownModelError):
        registry.get("missing")


@pytest.mark.unit
def test_registry_keeps_first_registration(model_factory):
    first = model_factory()
    registry = ModelRegistry()
    registry.register(first)
    assert registry.register(model_factory()) is first

"""Tests for environment configuration and client config validation."""

import pytest

from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama


def test_string_values_are_stripped_and_blank_means_unset(helper_config, monkeypatch):
    monkeypatch.setenv("SOME_NAME", "  docintel ")
    monkeypatch.setenv("BLANK_NAME", "   ")

    assert helper_config.get_string_val("some_name") == "docintel"
    assert helper_config.get_string_val("BLANK_NAME", default="fallback") == "fallback"
    with pytest.raises(ValueError, match="BLANK_NAME"):
        helper_config.get_string_val("BLANK_NAME")


def test_numbers_keep_int_and_float(helper_config, monkeypatch):
    monkeypatch.setenv("SOME_INT", "42")
    monkeypatch.setenv("SOME_FLOAT", "0.25")
    monkeypatch.setenv("SOME_WORD", "many")

    assert helper_config.get_number_val("SOME_INT") == 42
    assert isinstance(helper_config.get_number_val("SOME_INT"), int)
    assert helper_config.get_number_val("SOME_FLOAT") == 0.25
    assert helper_config.get_number_val("UNSET_NUMBER", default=7) == 7
    with pytest.raises(ValueError, match="not a valid number"):
        helper_config.get_number_val("SOME_WORD")


@pytest.mark.parametrize("raw, expected", [("true", True), ("YES", True), ("1", True), ("off", False), ("nope", False)])
def test_bool_values(helper_config, monkeypatch, raw, expected):
    monkeypatch.setenv("SOME_FLAG", raw)

    assert helper_config.get_bool_val("SOME_FLAG") is expected


def test_list_values(helper_config, monkeypatch):
    monkeypatch.setenv("SOME_LIST", "[pdf, docx ,txt]")
    monkeypatch.setenv("SOME_NUMBERS", "[1,2,3]")
    monkeypatch.setenv("EMPTY_LIST", "[]")
    monkeypatch.setenv("BAD_LIST", "pdf,docx")

    assert helper_config.get_list_val("SOME_LIST") == ["pdf", "docx", "txt"]
    assert helper_config.get_list_val("SOME_NUMBERS", element_type=int) == [1, 2, 3]
    assert helper_config.get_list_val("EMPTY_LIST") == []
    with pytest.raises(ValueError, match="must look like"):
        helper_config.get_list_val("BAD_LIST")
    with pytest.raises(ValueError, match="not a int"):
        helper_config.get_list_val("SOME_LIST", element_type=int)


def test_pipeline_settings_read_from_environment(helper_config, monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "300")
    monkeypatch.setenv("DOC_SIMILARITY_REUSE_VECTORS", "true")

    settings = helper_config.get_pipeline_settings()

    assert settings.chunk_size == 300
    assert settings.chunk_overlap == 50
    assert settings.embed_dimensions == 16
    assert settings.doc_similarity_reuse_vectors is True
    assert helper_config.get_pipeline_settings() is settings


def test_overlap_must_be_smaller_than_chunk_size(helper_config, monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "40")
    monkeypatch.setenv("CHUNK_OVERLAP", "40")

    with pytest.raises(ValueError, match="CHUNK_OVERLAP"):
        helper_config.get_pipeline_settings()


def test_client_keys_are_namespaced(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_KEEP_ALIVE", "30m")
    monkeypatch.setenv("EMBED_OLLAMA_API_KEY", "secret")
    client = EmbedClientOllama(helper_config=helper_config)

    assert client.get_embed_payload(["a"])["keep_alive"] == "30m"
    assert client._get_auth_header() == {"Authorization": "Bearer secret"}
    assert client.get_config_val("BASE_URL") == "http://embed.test"

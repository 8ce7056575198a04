"""Tests for the Bedrock embedding and LLM wrappers with a mocked runtime client."""

import io
import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from postcard.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError, EmbeddingDimensionError, validate_embedding
from postcard.utils.bedrock_llm import BedrockLLM, BedrockLLMError
from postcard.utils.config import BedrockEmbedConfig, BedrockLLMConfig

THROTTLED = ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'Rate exceeded'}}, 'InvokeModel')


def embed_config(model_id='amazon.titan-embed-text-v2:0', dimension=384):
    return BedrockEmbedConfig(region='us-east-1', model_id=model_id, dimension=dimension, retry_attempts=3,
                              retry_delay=0.0)


def invoke_response(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode())}


@pytest.fixture
def runtime():
    with patch('postcard.utils.bedrock_embed.boto3') as embed_boto3, \
            patch('postcard.utils.bedrock_llm.boto3') as llm_boto3, \
            patch('time.sleep'):
        client = MagicMock()
        embed_boto3.client.return_value = client
        llm_boto3.client.return_value = client
        yield client


def test_validate_embedding():
    assert validate_embedding([1, 2.5, 0], 3) == [1.0, 2.5, 0.0]
    with pytest.raises(EmbeddingDimensionError):
        validate_embedding([0.1, 0.2], 3)
    with pytest.raises(EmbeddingDimensionError):
        validate_embedding({'values': [1, 2, 3]}, 3)
    with pytest.raises(EmbeddingDimensionError):
        validate_embedding([1.0, 'x', 2.0], 3)
    with pytest.raises(EmbeddingDimensionError):
        validate_embedding([True, 1.0, 2.0], 3)
    with pytest.raises(EmbeddingDimensionError):
        validate_embedding(None, 3)


def test_titan_request_and_response(runtime):
    runtime.invoke_model.return_value = invoke_response({'embedding': [0.5] * 384})

    values = BedrockEmbed(embed_config()).embed_document('hello')

    assert len(values) == 384
    body = json.loads(runtime.invoke_model.call_args.kwargs['body'])
    assert body == {'inputText': 'hello', 'dimensions': 384, 'normalize': True}


def test_cohere_uses_input_type(runtime):
    runtime.invoke_model.return_value = invoke_response({'embeddings': [[0.1] * 384]})

    BedrockEmbed(embed_config(model_id='cohere.embed-english-v3')).embed_query('what')

    body = json.loads(runtime.invoke_model.call_args.kwargs['body'])
    assert body == {'input_type': 'search_query', 'texts': ['what']}


def test_wrong_dimension_is_rejected(runtime):
    runtime.invoke_model.return_value = invoke_response({'embedding': [0.5] * 1024})

    with pytest.raises(EmbeddingDimensionError, match='dimension 384, got 1024'):
        BedrockEmbed(embed_config()).embed_document('hello')


def test_missing_embedding_is_rejected(runtime):
    runtime.invoke_model.return_value = invoke_response({'message': 'no vector'})

    with pytest.raises(BedrockEmbedError):
        BedrockEmbed(embed_config()).embed_document('hello')


def test_empty_text_is_rejected_without_calling_bedrock(runtime):
    with pytest.raises(BedrockEmbedError):
        BedrockEmbed(embed_config()).embed_document('   ')
    runtime.invoke_model.assert_not_called()


def test_embed_retries_transient_errors(runtime):
    runtime.invoke_model.side_effect = [THROTTLED, invoke_response({'embedding': [0.0] * 384})]

    assert len(BedrockEmbed(embed_config()).embed_document('hello')) == 384
    assert runtime.invoke_model.call_count == 2


def test_embed_gives_up_after_retry_attempts(runtime):
    runtime.invoke_model.side_effect = THROTTLED

    with pytest.raises(BedrockEmbedError, match='after 3 attempts'):
        BedrockEmbed(embed_config()).embed_document('hello')
    assert runtime.invoke_model.call_count == 3


def llm_config():
    return BedrockLLMConfig(region='us-east-1', model_id='anthropic.claude-3-haiku-20240307-v1:0', max_tokens=512,
                            temperature=0.0, retry_attempts=2, retry_delay=0.0)


def stream_of(*chunks):
    events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
    events.append({'metadata': {'usage': {'inputTokens': 10, 'outputTokens': 5}, 'metrics': {'latencyMs': 120}}})
    return {'stream': events}


def test_generate_text_joins_stream_and_prefill(runtime):
    runtime.converse_stream.return_value = stream_of('"processed_text": ', '"x"}')

    text = BedrockLLM(llm_config()).generate_text('prompt', system_prompt='system', prefill='{')

    assert text == '{"processed_text": "x"}'
    messages = runtime.converse_stream.call_args.kwargs['messages']
    assert messages[-1] == {'role': 'assistant', 'content': [{'text': '{'}]}
    assert runtime.converse_stream.call_args.kwargs['inferenceConfig']['maxTokens'] == 512


def test_generate_response_returns_metrics(runtime):
    runtime.converse_stream.return_value = stream_of('Hello')

    text, metrics = BedrockLLM(llm_config()).generate_response([{'role': 'user', 'content': [{'text': 'hi'}]}], 'sys')

    assert text == 'Hello'
    assert metrics == {'inputTokens': 10, 'outputTokens': 5, 'latencyMs': 120}


def test_llm_retries_then_fails(runtime):
    runtime.converse_stream.side_effect = THROTTLED

    with pytest.raises(BedrockLLMError):
        BedrockLLM(llm_config()).generate_text('prompt', system_prompt='system')
    assert runtime.converse_stream.call_count == 2


def test_llm_unexpected_error_is_wrapped(runtime):
    runtime.converse_stream.side_effect = ValueError('bad model id')

    with pytest.raises(BedrockLLMError, match='bad model id'):
        BedrockLLM(llm_config()).generate_text('prompt', system_prompt='system')
    assert runtime.converse_stream.call_count == 1


def test_llm_client_uses_configured_timeouts():
    config = llm_config()
    config.connect_timeout, config.read_timeout = 5.0, 30.0

    with patch('postcard.utils.bedrock_llm.boto3') as boto3:
        BedrockLLM(config)

    boto_config = boto3.client.call_args.kwargs['config']
    assert boto_config.connect_timeout == 5.0
    assert boto_config.read_timeout == 30.0
    assert boto_config.retries == {'max_attempts': 0}


def test_llm_recovers_after_throttling(runtime):
    runtime.converse_stream.side_effect = [THROTTLED, stream_of('OK')]

    assert BedrockLLM(llm_config()).generate_text('prompt', system_prompt='system') == 'OK'
    assert runtime.converse_stream.call_count == 2


def test_llm_health_check_reports_failure(runtime):
    runtime.converse_stream.side_effect = THROTTLED

    assert BedrockLLM(llm_config()).health_check() is False

"""Tests for the serverless enrichment entry point."""

import base64
import json
from unittest.mock import patch

import pytest

from postcard import lambda_handler
from postcard.utils.config import ConfigError


@pytest.fixture
def service(enrichment):
    with patch.object(lambda_handler, 'get_service', return_value=enrichment):
        yield enrichment


def body_of(response):
    return json.loads(response['body'])


def test_proxy_event_with_string_body(service, entry_store):
    entry = entry_store.add('Fixed the login bug in AuthService')
    event = {'httpMethod': 'POST', 'body': json.dumps({'type': 'INSERT', 'record': {'id': entry.id}})}

    response = lambda_handler.handler(event, None)

    assert response['statusCode'] == 200
    assert response['headers']['Content-Type'] == 'application/json'
    assert body_of(response) == {'success': True, 'entryId': entry.id}


def test_http_api_v2_event(service, entry_store):
    entry = entry_store.add('note')
    event = {'requestContext': {'http': {'method': 'post'}}, 'body': json.dumps({'id': entry.id})}

    assert lambda_handler.handler(event)['statusCode'] == 200


def test_direct_invocation_payload(service, entry_store):
    entry = entry_store.add('note')

    response = lambda_handler.handler({'record': {'id': entry.id}})

    assert body_of(response)['entryId'] == entry.id


@pytest.mark.parametrize('method', ['GET', 'PUT', 'DELETE'])
def test_non_post_is_405(service, method):
    response = lambda_handler.handler({'httpMethod': method, 'body': None})

    assert response['statusCode'] == 405
    assert response['headers']['Allow'] == 'POST'
    assert body_of(response) == {'error': 'Method Not Allowed'}


def test_invalid_json_is_400(service):
    response = lambda_handler.handler({'httpMethod': 'POST', 'body': '{not json'})

    assert response['statusCode'] == 400


def test_base64_encoded_body(service, entry_store):
    entry = entry_store.add('Fixed the login bug in AuthService')
    body = base64.b64encode(json.dumps({'record': {'id': entry.id}}).encode('utf-8')).decode('ascii')

    response = lambda_handler.handler({'httpMethod': 'POST', 'body': body, 'isBase64Encoded': True})

    assert response['statusCode'] == 200
    assert body_of(response) == {'success': True, 'entryId': entry.id}


def test_invalid_base64_body_is_400(service):
    response = lambda_handler.handler({'httpMethod': 'POST', 'body': '{"id": "e1"}', 'isBase64Encoded': True})

    assert response['statusCode'] == 400
    assert body_of(response)['error'].startswith('Invalid request body')


def test_empty_body_is_acknowledged(service):
    response = lambda_handler.handler({'httpMethod': 'POST', 'body': ''})

    assert response['statusCode'] == 200
    assert body_of(response)['message'] == 'Payload received, but no entry ID found.'


def test_fatal_step_is_500(service, entry_store):
    entry = entry_store.add('note')
    entry_store.fail_update = True

    response = lambda_handler.handler({'httpMethod': 'POST', 'body': json.dumps({'record': {'id': entry.id}})})

    assert response['statusCode'] == 500
    assert body_of(response) == {'error': 'Failed to update entry: write rejected'}


def test_missing_configuration_is_500():
    with patch.object(lambda_handler, 'get_service', side_effect=ConfigError('Missing required configuration: NEPTUNE_ENDPOINT')):
        response = lambda_handler.handler({'httpMethod': 'POST', 'body': '{"id": "x"}'})

    assert response['statusCode'] == 500
    assert 'NEPTUNE_ENDPOINT' in body_of(response)['error']

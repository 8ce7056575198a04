"""
Serverless entry point for the enrichment pipeline.

Handles API Gateway proxy events (JSON string body, base64-encoded when
isBase64Encoded is set) as well as direct invocations where the event is
the trigger payload itself.
"""

import base64
import json
from typing import Any, Dict, Optional

from .services.enrichment import EnrichmentService
from .utils.config import ConfigError, require_config
from .utils.logging_config import get_logger

logger = get_logger(__name__)

_service: Optional[EnrichmentService] = None


def get_service() -> EnrichmentService:
    """Reuse one service per container across warm invocations."""
    global _service
    if _service is None:
        require_config()
        _service = EnrichmentService()
    return _service


def _response(status_code: int, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            **(headers or {})
        },
        'body': json.dumps(body)
    }


def _http_method(event: Dict[str, Any]) -> Optional[str]:
    method = event.get('httpMethod')
    if method is None:
        method = event.get('requestContext', {}).get('http', {}).get('method')
    return method.upper() if isinstance(method, str) else None


def _payload(event: Any) -> Any:
    """Decode the trigger payload from a proxy event or return the event itself."""
    if not isinstance(event, dict) or 'body' not in event:
        return event

    body = event['body']
    if isinstance(body, str) and event.get('isBase64Encoded'):
        body = base64.b64decode(body, validate=True).decode('utf-8')
    if isinstance(body, str):
        return json.loads(body) if body.strip() else None
    return body


def handler(event: Any, context: Any = None) -> Dict[str, Any]:
    """Process one entry enrichment trigger.

    Args:
        event: Lambda event
        context: Lambda context (unused)

    Returns:
        Proxy-style response dict
    """
    if isinstance(event, dict):
        method = _http_method(event)
        if method is not None and method != 'POST':
            return _response(405, {'error': 'Method Not Allowed'}, headers={'Allow': 'POST'})

    try:
        payload = _payload(event)
    except ValueError as e:
        # JSONDecodeError, binascii.Error and UnicodeDecodeError are all ValueErrors
        logger.warning(f'Invalid request body: {e}')
        return _response(400, {'error': f'Invalid request body: {e}'})

    try:
        result = get_service().process_payload(payload)
    except ConfigError as e:
        logger.error(str(e))
        return _response(500, {'error': str(e)})
    except Exception as e:
        logger.error(f'Critical error in process-entry handler: {e}')
        return _response(500, {'error': str(e) or 'Internal Server Error'})

    return _response(result.status_code, result.to_response())

"""
Unit tests for the HTTP messaging dispatcher.
"""

import pytest
import requests
from unittest.mock import Mock, patch

from coach_sequences.services.dispatch import HttpMessageDispatcher, MessageDispatcher
from coach_sequences.utils.error_handling import DispatchError


@pytest.fixture
def dispatcher():
    return HttpMessageDispatcher(base_url='https://gateway.example.com/api/', api_key='secret', timeout=5)


def make_response(json_data=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.text = str(json_data)
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Error", response=response
        )
    else:
        response.raise_for_status.return_value = None
    return response


class TestHttpMessageDispatcher:
    """Test HttpMessageDispatcher."""

    @patch('coach_sequences.services.dispatch.requests.request')
    def test_send_message(self, mock_request, dispatcher):
        """Test a successful send returns the gateway's id."""
        mock_request.return_value = make_response({'id': 'msg-123'})

        dispatch_id = dispatcher.send_message('c1', 'Hello', 'en')

        assert dispatch_id == 'msg-123'
        mock_request.assert_called_once_with(
            'POST',
            'https://gateway.example.com/api/messages',
            headers={'Content-Type': 'application/json', 'X-API-KEY': 'secret'},
            timeout=5,
            json={'client_id': 'c1', 'text': 'Hello', 'locale': 'en'}
        )

    @patch('coach_sequences.services.dispatch.requests.request')
    def test_message_id_field(self, mock_request, dispatcher):
        mock_request.return_value = make_response({'message_id': 77})
        assert dispatcher.send_message('c1', 'Hello', 'en') == '77'

    @patch('coach_sequences.services.dispatch.requests.request')
    def test_http_error(self, mock_request, dispatcher):
        """Test that gateway errors become DispatchError with the status code."""
        mock_request.return_value = make_response({'error': 'rate limited'}, status_code=429)

        with pytest.raises(DispatchError) as exc_info:
            dispatcher.send_message('c1', 'Hello', 'en')

        assert exc_info.value.status_code == 429

    @patch('coach_sequences.services.dispatch.requests.request')
    def test_timeout(self, mock_request, dispatcher):
        mock_request.side_effect = requests.exceptions.Timeout("timed out")

        with pytest.raises(DispatchError) as exc_info:
            dispatcher.send_message('c1', 'Hello', 'en')

        assert exc_info.value.status_code is None

    @patch('coach_sequences.services.dispatch.requests.request')
    def test_invalid_json(self, mock_request, dispatcher):
        response = make_response()
        response.json.side_effect = ValueError("no JSON")
        mock_request.return_value = response

        with pytest.raises(DispatchError):
            dispatcher.send_message('c1', 'Hello', 'en')

    @patch('coach_sequences.services.dispatch.requests.request')
    def test_missing_id(self, mock_request, dispatcher):
        mock_request.return_value = make_response({'status': 'queued'})

        with pytest.raises(DispatchError):
            dispatcher.send_message('c1', 'Hello', 'en')

    def test_missing_base_url(self, app):
        app.config['MESSAGING_API_BASE_URL'] = None
        with patch.dict('os.environ', {}, clear=True):
            dispatcher = HttpMessageDispatcher()

        with pytest.raises(DispatchError):
            dispatcher.send_message('c1', 'Hello', 'en')

    def test_settings_from_app_config(self, app):
        app.config['MESSAGING_API_BASE_URL'] = 'https://config.example.com'
        app.config['DISPATCH_TIMEOUT_SECONDS'] = 7
        with patch.dict('os.environ', {}, clear=True):
            dispatcher = HttpMessageDispatcher()

        assert dispatcher.base_url == 'https://config.example.com'
        assert dispatcher.timeout == 7

    def test_environment_overrides_config(self, app):
        app.config['MESSAGING_API_BASE_URL'] = 'https://config.example.com'
        with patch.dict('os.environ', {'MESSAGING_API_BASE_URL': 'https://env.example.com'}):
            dispatcher = HttpMessageDispatcher()

        assert dispatcher.base_url == 'https://env.example.com'


def test_dispatcher_interface():
    with pytest.raises(NotImplementedError):
        MessageDispatcher().send_message('c1', 'Hello', 'en')

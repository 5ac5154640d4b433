import os
import logging
import requests
from flask import current_app

from coach_sequences.utils.error_handling import DispatchError

logger = logging.getLogger(__name__)


class MessageDispatcher:
    """Interface for the messaging channel that delivers message steps.

    Implementations return a dispatch id on success and raise DispatchError on
    failure. The engine does not know whether delivery is push, SMS or chat.
    """

    def send_message(self, client_id, rendered_text, locale):
        raise NotImplementedError


class HttpMessageDispatcher(MessageDispatcher):
    """Dispatcher that posts messages to an HTTP messaging gateway."""

    def __init__(self, base_url=None, api_key=None, timeout=None):
        self.base_url = base_url or self._get_setting('MESSAGING_API_BASE_URL')
        self.api_key = api_key or self._get_setting('MESSAGING_API_KEY')
        self.timeout = timeout or int(self._get_setting('DISPATCH_TIMEOUT_SECONDS') or 10)

        if not self.base_url:
            logger.warning("No messaging gateway URL configured")

    def _get_setting(self, name):
        """Get a setting from environment or Flask config."""
        # Try environment variable first
        value = os.environ.get(name)
        if value:
            return value

        # Try Flask config if available
        try:
            if current_app:
                return current_app.config.get(name)
        except RuntimeError:
            # No application context
            pass

        return None

    def _make_request(self, method, endpoint, **kwargs):
        """Make a request to the messaging gateway."""
        if not self.base_url:
            raise DispatchError("No messaging gateway URL available")

        url = f"{self.base_url.rstrip('/')}{endpoint}"
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['X-API-KEY'] = self.api_key

        try:
            response = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Messaging gateway request failed: {str(e)}")
            if hasattr(e, 'response') and e.response is not None:
                logger.error(f"Response status: {e.response.status_code}")
                raise DispatchError(
                    f"Messaging gateway request failed: {str(e)}",
                    status_code=e.response.status_code,
                    response_data=e.response.text
                )
            raise DispatchError(f"Messaging gateway request failed: {str(e)}")
        except ValueError as e:
            raise DispatchError(f"Messaging gateway returned invalid JSON: {str(e)}")

    def send_message(self, client_id, rendered_text, locale):
        """Send a message to a client and return the gateway's dispatch id."""
        payload = {
            'client_id': client_id,
            'text': rendered_text,
            'locale': locale
        }
        result = self._make_request('POST', '/messages', json=payload)
        dispatch_id = result.get('id') or result.get('message_id')
        if not dispatch_id:
            raise DispatchError("Messaging gateway response did not include a message id", response_data=result)
        logger.info(f"Message dispatched to client {client_id}: {dispatch_id}")
        return str(dispatch_id)

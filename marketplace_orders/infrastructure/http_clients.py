import httpx
import logging

from marketplace_orders.application.interfaces import EmailSender

logger = logging.getLogger(__name__)


class EmailJSClient(EmailSender):
    """Transactional template email over the EmailJS REST API. One attempt per message."""

    def __init__(self, api_url: str, service_id: str, public_key: str, timeout: float = 10.0):
        self._api_url = api_url
        self._service_id = service_id
        self._public_key = public_key
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._public_key and self._service_id)

    async def send_template(self, template_id: str, params: dict) -> bool:
        if not self.configured:
            logger.warning(f"Email not configured, skipping template {template_id} (mock mode)")
            return True

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._api_url,
                    json={
                        "service_id": self._service_id,
                        "template_id": template_id,
                        "user_id": self._public_key,
                        "template_params": params
                    },
                    timeout=self._timeout
                )

                if response.status_code == 200:
                    logger.info(f"Email sent with template {template_id}")
                    return True
                logger.error(f"Email API returned {response.status_code}: {response.text}")
                return False

        except httpx.RequestError as e:
            logger.error(f"Email API unreachable: {e}")
            return False

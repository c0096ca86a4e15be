import httpx
import logging
from typing import Optional

from storefront.application.interfaces import IdentityService
from storefront.domain.exceptions import IdentityServiceError

logger = logging.getLogger(__name__)


class HTTPIdentityClient(IdentityService):
    """Проверка bearer-токена во внешнем сервисе авторизации"""

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    async def verify_token(self, token: str) -> Optional[str]:
        if not token:
            return None
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self._base_url}/auth/v1/user",
                    headers={
                        "Authorization": f"Bearer {token}",
                        "apikey": self._api_key
                    },
                    timeout=self._timeout
                )

                if response.status_code == 200:
                    user_id = response.json().get("id")
                    return str(user_id) if user_id else None
                elif response.status_code in (401, 403):
                    return None
                else:
                    raise IdentityServiceError(f"Auth service ошибка: {response.status_code}")

        except httpx.RequestError as e:
            logger.error(f"Auth service ошибка подключения: {e}")
            raise IdentityServiceError(f"Auth service не доступен: {str(e)}")

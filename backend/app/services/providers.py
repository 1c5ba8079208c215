"""
Outbound provider clients.

Supports:
- Payment provider (checkout creation, subscription cancellation)
- Training provider (LoRA training runs with webhook callbacks)
- Image generation provider (synchronous predictions)

All clients share one retry policy: transient transport failures and timeouts
are retried with exponential backoff, HTTP error responses are not.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when a provider call fails or keeps failing after retries."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProviderClient:
    """Base class wrapping an httpx.AsyncClient with bounded retries."""

    name = "provider"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries if max_retries is not None else settings.provider_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.provider_backoff_seconds
        )
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.provider_timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Send a request with retry on timeouts and transport errors.

        Args:
            method: HTTP method
            path: Path relative to the client's base URL
            json: Optional JSON body
            headers: Extra request headers

        Returns:
            Decoded JSON body (None for empty responses)

        Raises:
            ProviderError: On an error response or once retries are exhausted
        """
        last_exception = None
        for attempt in range(self.max_retries):
            try:
                response = await self.client.request(method, path, json=json, headers=headers)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    # Exponential backoff
                    wait_time = self.backoff_seconds * (2**attempt)
                    logger.warning(
                        f"{self.name} {method} {path} failed ({type(e).__name__}), "
                        f"retry {attempt + 1}/{self.max_retries - 1} in {wait_time:.1f}s"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                break

            if response.status_code >= 400:
                logger.error(f"{self.name} {method} {path} returned {response.status_code}: {response.text[:500]}")
                raise ProviderError(
                    self.name,
                    f"{method} {path} returned HTTP {response.status_code}",
                    status_code=response.status_code,
                )

            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise ProviderError(self.name, f"{method} {path} returned invalid JSON") from e

        logger.error(f"{self.name} {method} {path} failed after {self.max_retries} attempts: {last_exception}")
        raise ProviderError(self.name, f"{method} {path} failed after {self.max_retries} attempts") from last_exception

    async def fetch_bytes(self, url: str) -> bytes:
        """Download an absolute URL (e.g. a generated image) with the same retry policy."""
        last_exception = None
        for attempt in range(self.max_retries):
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                return response.content
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.backoff_seconds * (2**attempt))
                    continue
            except httpx.HTTPStatusError as e:
                raise ProviderError(self.name, f"GET {url} returned HTTP {e.response.status_code}",
                                    status_code=e.response.status_code) from e
        raise ProviderError(self.name, f"GET {url} failed after {self.max_retries} attempts") from last_exception


class PaymentProviderClient(ProviderClient):
    """Payment provider API client (subscriptions and checkout links)."""

    name = "payment"

    def __init__(self, **kwargs):
        super().__init__(settings.payment_api_base_url, token=settings.payment_api_key, **kwargs)

    async def create_checkout(
        self,
        product_id: str,
        email: str,
        name: Optional[str],
        return_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a provider subscription with a hosted payment link.

        Returns:
            Dict with subscription_id and payment_link
        """
        body = {
            "product_id": product_id,
            "quantity": 1,
            "payment_link": True,
            "customer": {"email": email, "name": name or email},
            "billing": {"country": "US"},
        }
        if return_url:
            body["return_url"] = return_url

        data = await self._request("POST", "/subscriptions", json=body) or {}
        if not data.get("subscription_id"):
            raise ProviderError(self.name, "checkout response is missing subscription_id")

        logger.info(f"Created checkout for product {product_id}: {data['subscription_id']}")
        return {"subscription_id": data["subscription_id"], "payment_link": data.get("payment_link")}

    async def cancel_subscription(self, subscription_id: str, at_period_end: bool = True) -> Dict[str, Any]:
        """Cancel a subscription immediately or at the end of the billing period."""
        if at_period_end:
            body = {"cancel_at_next_billing_date": True}
        else:
            body = {"status": "cancelled"}
        data = await self._request("PATCH", f"/subscriptions/{subscription_id}", json=body)
        logger.info(f"Requested cancellation of {subscription_id} (at_period_end={at_period_end})")
        return data or {}


class TrainingProviderClient(ProviderClient):
    """Training provider API client."""

    name = "training"

    def __init__(self, **kwargs):
        super().__init__(settings.training_api_base_url, token=settings.training_api_token, **kwargs)

    async def create_training(
        self,
        destination: str,
        input_images_url: str,
        trigger_word: str,
        webhook_url: str,
    ) -> Dict[str, Any]:
        """
        Start a training run.

        Args:
            destination: "owner/model" that receives the trained version
            input_images_url: Public URL of the training data zip
            trigger_word: Token the trained model associates with the subject
            webhook_url: Callback URL for status updates

        Returns:
            Provider training object (id, status, ...)
        """
        path = (
            f"/models/{settings.training_trainer_owner}/{settings.training_trainer_name}"
            f"/versions/{settings.training_trainer_version}/trainings"
        )
        body = {
            "destination": destination,
            "input": {
                "input_images": input_images_url,
                "trigger_word": trigger_word,
                "steps": 1000,
            },
            "webhook": webhook_url,
            "webhook_events_filter": ["start", "output", "logs", "completed"],
        }
        data = await self._request("POST", path, json=body) or {}
        if not data.get("id"):
            raise ProviderError(self.name, "training response is missing id")
        logger.info(f"Started training {data['id']} for destination {destination}")
        return data

    async def delete_model(self, model_id: str, version: str) -> bool:
        """
        Delete a trained version and then its model at the provider.

        Failures are logged and not raised, so local cleanup can go ahead.

        Returns:
            True if both deletions succeeded
        """
        model_path = f"/models/{settings.training_destination_owner}/{model_id}"
        deleted = True
        for path in (f"{model_path}/versions/{version}", model_path):
            try:
                await self._request("DELETE", path)
            except ProviderError as e:
                logger.error(f"Failed to delete {path} at training provider: {e}")
                deleted = False
        return deleted


class ImageProviderClient(ProviderClient):
    """Image generation API client."""

    name = "image"

    def __init__(self, **kwargs):
        super().__init__(settings.image_api_base_url, token=settings.image_api_token, **kwargs)

    async def generate(self, model: str, input_params: Dict[str, Any]) -> List[str]:
        """
        Run a prediction and wait for its output.

        Args:
            model: "owner/name" of the model
            input_params: Model input

        Returns:
            Image URLs produced by the model
        """
        data = await self._request(
            "POST",
            f"/models/{model}/predictions",
            json={"input": input_params},
            headers={"Prefer": "wait"},
        ) or {}

        if data.get("status") == "failed" or data.get("error"):
            raise ProviderError(self.name, f"prediction failed: {data.get('error')}")

        urls = extract_image_urls(data.get("output"))
        if not urls:
            raise ProviderError(self.name, "prediction returned no images")
        return urls


def extract_image_urls(output: Any) -> List[str]:
    """Collect image URLs from a prediction output (string, list, or dicts carrying a url)."""
    if output is None:
        return []
    if isinstance(output, str):
        return [output]
    if isinstance(output, dict):
        url = output.get("url")
        return [url] if isinstance(url, str) else []
    if isinstance(output, list):
        urls = []
        for item in output:
            urls.extend(extract_image_urls(item))
        return urls
    return []

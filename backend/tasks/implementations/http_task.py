"""HTTP request step.

Method, URL, headers and body are templated against the run's variables.
The response body is parsed as JSON when possible and kept as text otherwise.
Any HTTP status is a successful step (branch on ``$step.ok`` / ``$step.status``);
network errors, timeouts and cancellation fail it.
"""

import json
from typing import Any, Dict

import httpx
import structlog

from app.config import get_settings
from core.utils import parse_duration
from tasks.base_task import BaseTask, StepContext
from workflow.models import HttpConfig

logger = structlog.get_logger(__name__)


class HttpRequestTask(BaseTask):
    """Execute HTTP requests to external services.

    Config:
        url: Target URL (required)
        method: HTTP method (default: GET)
        headers: Dict of HTTP headers
        body: Request body; dicts/lists are sent as JSON, strings as-is
        timeout: Request timeout (default: HTTP_TIMEOUT)
    """

    step_type = "http"
    display_name = "HTTP Request"
    description = "Make HTTP requests to APIs and web services"
    config_model = HttpConfig

    async def execute(self, config: HttpConfig, ctx: StepContext) -> Dict[str, Any]:
        url = ctx.resolve(config.url or "")
        if not url:
            raise ValueError("Missing required config: url")

        method = (config.method or "GET").upper()
        headers = {str(k): str(v) for k, v in ctx.resolve_deep(config.headers or {}).items()}
        timeout = parse_duration(config.timeout, None) or parse_duration(get_settings().HTTP_TIMEOUT, 30.0)

        kwargs: Dict[str, Any] = {"method": method, "url": url, "headers": headers}
        if config.body is not None:
            body = ctx.resolve_deep(config.body)
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)
                headers.setdefault("Content-Type", "application/json")

        scope = ctx.cancel.child(timeout=timeout)
        try:
            async with httpx.AsyncClient(transport=ctx.services.http_transport, timeout=timeout) as client:
                response = await scope.guard(client.request(**kwargs))
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Request timed out after {timeout:g}s") from e
        finally:
            scope.close()

        text = response.text
        try:
            body_out: Any = json.loads(text)
        except ValueError:
            body_out = text

        logger.debug("HTTP step response", step_id=ctx.step_id, status=response.status_code, url=url)
        return {
            "status": response.status_code,
            "ok": response.is_success,
            "body": body_out,
        }


HTTP_TASK_TYPES = {
    "http": HttpRequestTask,
}

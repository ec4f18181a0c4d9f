#!/usr/bin/env python3
"""
Replicate 图像生成服务

通过 predictions API 提交任务：先用 `Prefer: wait` 同步等待，
未完成时轮询 urls.get，直到终态或超时。
超时/失败一律抛 UpstreamUnavailable，调用方据此不写生成记录。
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Any

import httpx
from loguru import logger

from imagegen_app.config import settings
from imagegen_app.utils.errors import UpstreamUnavailable

TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}

# 分辨率档位 -> 边长（像素）
RESOLUTION_SIZES = {
    "standard": 768,
    "high": 1024,
    "hd": 1024,
}
DEFAULT_SIZE = 768
_SIZE_PATTERN = re.compile(r"^\s*(\d{3,4})\s*[x×]\s*(\d{3,4})\s*$")


def resolution_to_size(resolution: str | None) -> tuple[int, int]:
    """把套餐的分辨率档位换算为 (width, height)"""
    if not resolution:
        return DEFAULT_SIZE, DEFAULT_SIZE
    match = _SIZE_PATTERN.match(resolution)
    if match:
        return int(match.group(1)), int(match.group(2))
    size = RESOLUTION_SIZES.get(resolution.strip().lower(), DEFAULT_SIZE)
    return size, size


class ReplicateService:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        poll_interval: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or settings.REPLICATE_API_KEY
        self.base_url = (base_url or settings.REPLICATE_API_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.REPLICATE_TIMEOUT_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else settings.REPLICATE_POLL_INTERVAL_SECONDS
        self._transport = transport

    def build_input(self, prompt: str, resolution: str | None = None) -> dict[str, Any]:
        width, height = resolution_to_size(resolution)
        return {
            "prompt": prompt,
            "width": width,
            "height": height,
            "num_inference_steps": settings.GENERATION_STEPS,
            "apply_watermark": False,
            "refine": "expert_ensemble_refiner",
        }

    def _prediction_request(self, model_ref: str, model_input: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        # "owner/name:version" 走版本化接口，"owner/name" 走官方模型接口
        if ":" in model_ref:
            _, version = model_ref.split(":", 1)
            return f"{self.base_url}/predictions", {"version": version, "input": model_input}
        return f"{self.base_url}/models/{model_ref}/predictions", {"input": model_input}

    async def run(self, model_ref: str, model_input: dict[str, Any]) -> list[str]:
        """提交预测并等待结果，返回输出图片 URL 列表"""
        try:
            return await asyncio.wait_for(self._run(model_ref, model_input), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(f"Replicate 生成超时（{self.timeout_seconds}s）")
            raise UpstreamUnavailable("Image generation timed out, please retry") from e
        except httpx.HTTPError as e:
            logger.error(f"Replicate 请求失败: {e}")
            raise UpstreamUnavailable("Image generation service temporarily unavailable") from e
        except ValueError as e:
            logger.error(f"Replicate 响应解析失败: {e}")
            raise UpstreamUnavailable("Image generation service returned an invalid response") from e

    async def _run(self, model_ref: str, model_input: dict[str, Any]) -> list[str]:
        url, payload = self._prediction_request(model_ref, model_input)
        wait_seconds = max(1, min(60, int(self.timeout_seconds)))
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Prefer": f"wait={wait_seconds}",
        }
        started = time.monotonic()
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            resp = await client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
            prediction = resp.json()
            logger.info(f"Replicate 预测已创建: id={prediction.get('id')} status={prediction.get('status')}")

            while prediction.get("status") not in TERMINAL_STATUSES:
                poll_url = (prediction.get("urls") or {}).get("get")
                if not poll_url:
                    raise UpstreamUnavailable("Image generation service returned a prediction that cannot be polled")
                await asyncio.sleep(self.poll_interval)
                resp = await client.get(poll_url, headers={"Authorization": f"Bearer {self.api_key}"})
                resp.raise_for_status()
                prediction = resp.json()

        elapsed = time.monotonic() - started
        if prediction.get("status") != "succeeded":
            logger.error(f"Replicate 预测失败: id={prediction.get('id')} status={prediction.get('status')} error={prediction.get('error')}")
            raise UpstreamUnavailable("Image generation failed, please retry")

        output = prediction.get("output")
        if isinstance(output, str):
            output = [output]
        if not output:
            raise UpstreamUnavailable("Image generation service returned no output")
        logger.info(f"Replicate 预测完成: id={prediction.get('id')} 用时 {elapsed:.1f}s, 输出 {len(output)} 张")
        return [str(item) for item in output]


_replicate_service: ReplicateService | None = None


def get_replicate_service() -> ReplicateService:
    global _replicate_service
    if _replicate_service is None:
        _replicate_service = ReplicateService()
    return _replicate_service

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
生成准入服务

每次图像生成必须经过这里：解析权益 -> 检查剩余配额 -> 调用生成服务 -> 记录用量。
检查与记录之间不加锁（软配额），同一用户并发请求可能少量超额，这是可接受的。
只有生成成功才写入生成记录。
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from imagegen_app.config import settings
from imagegen_app.models.auth import UserInfo
from imagegen_app.models.subscription import Entitlement, GenerationRecord
from imagegen_app.services.entitlement_service import EntitlementService, get_entitlement_service
from imagegen_app.services.replicate_service import ReplicateService, get_replicate_service
from imagegen_app.services.usage_service import UsageService, get_usage_service
from imagegen_app.utils.errors import InvalidInput, QuotaExceeded, UpstreamUnavailable

MAX_PROMPT_LENGTH = 2000


@dataclass
class AdmissionResult:
    output: list[str]
    entitlement: Entitlement
    record: Optional[GenerationRecord] = None


class AdmissionService:
    def __init__(
        self,
        entitlements: EntitlementService,
        usage: UsageService,
        generator: ReplicateService,
        model_ref: str | None = None,
    ):
        self.entitlements = entitlements
        self.usage = usage
        self.generator = generator
        self.model_ref = model_ref or settings.REPLICATE_MODEL

    @staticmethod
    def validate_prompt(prompt: str | None) -> str:
        if prompt is None or not prompt.strip():
            raise InvalidInput("Prompt must not be empty")
        prompt = prompt.strip()
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise InvalidInput(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters")
        return prompt

    async def admit(self, user: UserInfo, prompt: str | None) -> AdmissionResult:
        prompt = self.validate_prompt(prompt)

        entitlement = await self.entitlements.resolve(user.id)
        if entitlement.exhausted:
            limit = entitlement.tier.features.images_per_month or 0
            logger.info(f"用户 {user.id} 本月配额已用完: {entitlement.used_this_period}/{limit} ({entitlement.tier.name})")
            raise QuotaExceeded(
                tier_name=entitlement.tier.name,
                used=entitlement.used_this_period,
                limit=limit,
                reset_at=self.usage.next_period_start().isoformat(),
            )

        logger.info(f"用户 {user.id} 准入生成 ({entitlement.tier.name}, 剩余 {entitlement.remaining})")
        model_input = self.generator.build_input(prompt, entitlement.tier.features.resolution)
        output = await self.generator.run(self.model_ref, model_input)

        record = None
        try:
            record = await self.usage.record_generation(user.id, prompt)
        except UpstreamUnavailable as e:
            # 图已生成必须返回给用户；少记一次用量只记录日志
            logger.error(f"生成成功但写入生成记录失败，用量将少计: user={user.id}: {e}")

        return AdmissionResult(output=output, entitlement=entitlement, record=record)


_admission_service: Optional[AdmissionService] = None


async def get_admission_service() -> AdmissionService:
    global _admission_service
    if _admission_service is None:
        _admission_service = AdmissionService(
            await get_entitlement_service(),
            await get_usage_service(),
            get_replicate_service(),
        )
    return _admission_service

"""Premium resource catalog seeded into every new store."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Tuple

from .models import AdRequirement, PremiumResource
from .repositories import Store

logger = logging.getLogger("adscronos.catalog")


PREMIUM_CATALOG: Tuple[PremiumResource, ...] = (
    PremiumResource(
        id="premium-analysis-1",
        title="Advanced Market Analysis Report",
        description="Comprehensive market analysis with AI insights",
        category="research",
        tags=["market", "analysis", "ai"],
        ad_requirement=AdRequirement(min_view_duration=30, ad_type="video", cost=Decimal("5.00")),
        price="5000000",
        preview_content="This premium analysis reveals key market trends...",
        content=(
            "# Advanced Market Analysis\n\n"
            "Market growth: 15.2%\n\n"
            "Key trends: AI adoption, remote work, sustainability.\n\n"
            "## Recommendations\n"
            "- Invest in AI infrastructure\n"
            "- Focus on remote-first solutions\n"
            "- Prioritize sustainable practices\n"
        ),
        estimated_read_time=12,
    ),
    PremiumResource(
        id="premium-template-1",
        title="Professional Business Plan Template",
        description="Comprehensive business plan template with examples",
        category="templates",
        tags=["business", "template"],
        ad_requirement=AdRequirement(min_view_duration=45, ad_type="video", cost=Decimal("10.00")),
        price="10000000",
        preview_content="Executive Summary, Market Analysis, Financial Projections...",
        content=(
            "# Business Plan Template\n\n"
            "1. Executive Summary\n"
            "2. Market Analysis\n"
            "3. Financial Projections\n"
            "4. Marketing Strategy\n"
        ),
        estimated_read_time=20,
    ),
    PremiumResource(
        id="getting-started",
        title="Getting Started with Sponsored Content",
        description="How ad-supported access works",
        category="guides",
        tags=["guide"],
        is_public=True,
        preview_content="Watch a short ad or pay once to unlock premium resources.",
        content="Watch a short ad or pay once with x402 to unlock premium resources for 24 hours.",
        estimated_read_time=2,
    ),
)


async def seed_catalog(store: Store, catalog: Tuple[PremiumResource, ...] = PREMIUM_CATALOG) -> int:
    """Insert catalog entries that are not present yet. Returns how many were added."""
    added = 0
    for resource in catalog:
        if await store.resources.get(resource.id) is None:
            await store.resources.save(resource)
            added += 1
    if added:
        logger.info("Seeded %d premium resources", added)
    return added

"""
quotagate/features/catalog/service.py

Catalog accessor: read-only lookups of plans and feature entitlements.

Handles:
- Plan lookup by id and free-plan lookup by product family
- Entitlement resolution as a tagged union keyed on feature kind
- Default catalog seeding for development and tests
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from sqlalchemy import select, insert
from sqlalchemy.orm import Session

from quotagate.core.database import plans, features, feature_entitlements
from quotagate.models.plan import (
    FeatureKind,
    Plan,
    PlanEntitlement,
    ToggleEntitlement,
    QuotaEntitlement,
    MeteredEntitlement,
    UnsupportedEntitlement,
)


FREE_TIER = "free"
FREE_INTERVAL = "monthly"

# Default catalog (recruitment platform)
DEFAULT_FEATURES = {
    "job_posts": {"name": "Job posts", "kind": FeatureKind.QUOTA, "unit": "post"},
    "ai_screenings": {"name": "AI candidate screenings", "kind": FeatureKind.QUOTA, "unit": "screening"},
    "cv_downloads": {"name": "CV downloads", "kind": FeatureKind.QUOTA, "unit": "download"},
    "cv_builder": {"name": "CV builder", "kind": FeatureKind.TOGGLE, "unit": None},
    "talent_search": {"name": "Talent pool search", "kind": FeatureKind.TOGGLE, "unit": None},
    "seo_generation": {"name": "AI SEO generation", "kind": FeatureKind.METERED, "unit": "generation"},
}

DEFAULT_PLANS = {
    "individual-free": {
        "product": "individual",
        "tier": "free",
        "interval": "monthly",
        "price_cents": 0,
        "entitlements": {
            "cv_builder": {"enabled": True},
            "ai_screenings": {"enabled": True, "monthly_cap": 3},
        },
    },
    "recruiter-free": {
        "product": "recruiter",
        "tier": "free",
        "interval": "monthly",
        "price_cents": 0,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 3},
            "ai_screenings": {"enabled": True, "monthly_cap": 10},
            "talent_search": {"enabled": False},
        },
    },
    "recruiter-pro": {
        "product": "recruiter",
        "tier": "pro",
        "interval": "monthly",
        "price_cents": 99900,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 50},
            "ai_screenings": {"enabled": True, "monthly_cap": 200},
            "cv_downloads": {"enabled": True, "monthly_cap": 500},
            "talent_search": {"enabled": True},
            "seo_generation": {"enabled": True, "overage_unit_cents": 250},
        },
    },
    "corporate-free": {
        "product": "corporate",
        "tier": "free",
        "interval": "monthly",
        "price_cents": 0,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 2},
            "ai_screenings": {"enabled": True, "monthly_cap": 20},
            "talent_search": {"enabled": False},
        },
    },
    "corporate-pro": {
        "product": "corporate",
        "tier": "pro",
        "interval": "annual",
        "price_cents": 1499900,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 100},
            "ai_screenings": {"enabled": True, "monthly_cap": 1000},
            "cv_downloads": {"enabled": True, "monthly_cap": 2000},
            "talent_search": {"enabled": True},
            "seo_generation": {"enabled": True, "overage_unit_cents": 200},
        },
    },
}


def _row_to_plan(row) -> Plan:
    return Plan(
        id=row.id,
        product=row.product,
        tier=row.tier,
        interval=row.interval,
        price_cents=row.price_cents,
        currency=row.currency,
        is_public=bool(row.is_public),
        version=row.version,
    )


def _row_to_entitlement(row) -> PlanEntitlement:
    common = {
        "plan_id": row.plan_id,
        "feature_key": row.feature_key,
        "feature_name": row.feature_name,
        "enabled": bool(row.enabled),
    }
    if row.kind == FeatureKind.TOGGLE:
        return ToggleEntitlement(**common)
    if row.kind == FeatureKind.QUOTA:
        return QuotaEntitlement(monthly_cap=row.monthly_cap, **common)
    if row.kind == FeatureKind.METERED:
        return MeteredEntitlement(unit=row.unit, overage_unit_cents=row.overage_unit_cents, **common)
    return UnsupportedEntitlement(kind=row.kind, **common)


def _entitlement_query():
    return (
        select(
            feature_entitlements.c.plan_id,
            feature_entitlements.c.feature_key,
            feature_entitlements.c.enabled,
            feature_entitlements.c.monthly_cap,
            feature_entitlements.c.overage_unit_cents,
            features.c.name.label("feature_name"),
            features.c.kind,
            features.c.unit,
        )
        .select_from(
            feature_entitlements.join(features, feature_entitlements.c.feature_key == features.c.key)
        )
    )


def get_plan(session: Session, plan_id: str) -> Optional[Plan]:
    """Get plan by ID."""
    row = session.execute(select(plans).where(plans.c.id == plan_id)).first()
    if not row:
        return None
    return _row_to_plan(row)


def get_free_plan(session: Session, product: str) -> Optional[Plan]:
    """Get the free monthly plan for a product family, if configured."""
    row = session.execute(
        select(plans)
        .where(plans.c.product == product)
        .where(plans.c.tier == FREE_TIER)
        .where(plans.c.interval == FREE_INTERVAL)
        .order_by(plans.c.version.desc())
        .limit(1)
    ).first()
    if not row:
        return None
    return _row_to_plan(row)


def get_entitlement(session: Session, plan_id: str, feature_key: str) -> Optional[PlanEntitlement]:
    """
    Get what a plan grants for one feature.

    Returns:
        Entitlement variant for the feature's kind, or None if the plan does
        not define the feature.
    """
    row = session.execute(
        _entitlement_query()
        .where(feature_entitlements.c.plan_id == plan_id)
        .where(feature_entitlements.c.feature_key == feature_key)
        .limit(1)
    ).first()
    if not row:
        return None
    return _row_to_entitlement(row)


def list_plan_entitlements(session: Session, plan_id: str) -> List[PlanEntitlement]:
    """All entitlements a plan defines, ordered by feature key."""
    rows = session.execute(
        _entitlement_query()
        .where(feature_entitlements.c.plan_id == plan_id)
        .order_by(feature_entitlements.c.feature_key)
    ).all()
    return [_row_to_entitlement(row) for row in rows]


def seed_catalog(
    session: Session,
    plan_config: Optional[Dict[str, dict]] = None,
    feature_config: Optional[Dict[str, dict]] = None,
) -> None:
    """
    Seed plans, features and entitlements (idempotent).

    Existing rows are left untouched; only missing ones are inserted.
    """
    plan_config = plan_config if plan_config is not None else DEFAULT_PLANS
    feature_config = feature_config if feature_config is not None else DEFAULT_FEATURES
    now = datetime.now(timezone.utc)

    for key, config in feature_config.items():
        existing = session.execute(select(features.c.key).where(features.c.key == key)).first()
        if not existing:
            session.execute(
                insert(features).values(
                    key=key,
                    name=config["name"],
                    description=config.get("description", ""),
                    kind=config["kind"],
                    unit=config.get("unit"),
                    created_at=now,
                    updated_at=now,
                )
            )

    for plan_id, config in plan_config.items():
        existing = session.execute(select(plans.c.id).where(plans.c.id == plan_id)).first()
        if existing:
            continue
        session.execute(
            insert(plans).values(
                id=plan_id,
                product=config["product"],
                tier=config["tier"],
                interval=config["interval"],
                price_cents=config["price_cents"],
                currency=config.get("currency", "ZAR"),
                is_public=config.get("is_public", True),
                version=config.get("version", 1),
                created_at=now,
                updated_at=now,
            )
        )
        for feature_key, grant in config["entitlements"].items():
            session.execute(
                insert(feature_entitlements).values(
                    plan_id=plan_id,
                    feature_key=feature_key,
                    enabled=grant.get("enabled", False),
                    monthly_cap=grant.get("monthly_cap"),
                    overage_unit_cents=grant.get("overage_unit_cents"),
                    created_at=now,
                    updated_at=now,
                )
            )
